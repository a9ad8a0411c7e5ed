"""
Well-known endpoints and defaults used across the library.
"""

LAUNCHER_NAME = "craftkit"

# Official distribution
VERSION_MANIFEST_URL = (
    "https://piston-meta.mojang.com/mc/game/version_manifest_v2.json"
)
LIBRARIES_URL = "https://libraries.minecraft.net/"
RESOURCES_URL = "https://resources.download.minecraft.net/"

# Microsoft identity platform and the Xbox Live token chain
MICROSOFT_AUTHORITY_URL = "https://login.microsoftonline.com/consumers/oauth2/v2.0"
MICROSOFT_SCOPE = "XboxLive.signin offline_access"
DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"
XBOX_LIVE_AUTH_URL = "https://user.auth.xboxlive.com/user/authenticate"
XSTS_AUTH_URL = "https://xsts.auth.xboxlive.com/xsts/authorize"
GAME_SERVICES_URL = "https://api.minecraftservices.com"
XBOX_RELYING_PARTY = "http://auth.xboxlive.com"
GAME_RELYING_PARTY = "rp://api.minecraftservices.com/"

# Loader metadata
FABRIC_META_URL = "https://meta.fabricmc.net/v2"
QUILT_META_URL = "https://meta.quiltmc.org/v3"
FORGE_MAVEN_URL = "https://maven.minecraftforge.net/net/minecraftforge"
FORGE_PROMOTIONS_URL = (
    "https://files.minecraftforge.net/net/minecraftforge/forge/promotions_slim.json"
)
NEOFORGE_MAVEN_URL = "https://maven.neoforged.net/releases/net/neoforged"

# Statuses considered transient by default
RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})

# Third-party Yggdrasil servers
AUTHLIB_INJECTOR_LATEST_URL = (
    "https://authlib-injector.yushi.moe/artifact/latest.json"
)
AUTHLIB_INJECTOR_API_HEADER = "X-Authlib-Injector-API-Location"
