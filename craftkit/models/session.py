"""
The authenticated account session handed to launch-command synthesis.
"""

import hashlib
import time
import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict


class DisplayProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    skin_url: Optional[str] = None


class AuthSession(BaseModel):
    """
    An immutable snapshot of an account session. Sessions are replaced, never
    mutated; `expires_at` is an absolute UNIX timestamp, None for sessions
    that never expire. Yggdrasil sessions carry the API root they were
    issued by and are checked against it instead of expiring.
    """

    model_config = ConfigDict(frozen=True)

    account_id: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None
    profile: DisplayProfile
    user_type: str = "msa"
    xuid: Optional[str] = None
    # Yggdrasil (authlib-injector) accounts only
    api_url: Optional[str] = None
    server_name: Optional[str] = None
    client_token: Optional[str] = None

    @property
    def is_yggdrasil(self) -> bool:
        return self.api_url is not None

    def is_expired(self, now: Optional[float] = None, skew: float = 60.0) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now + skew >= self.expires_at

    @classmethod
    def offline(cls, name: str) -> "AuthSession":
        """Builds a local session whose UUID is derived from the player name."""
        digest = hashlib.md5(f"OfflinePlayer:{name}".encode()).digest()  # noqa: S324
        player_id = uuid.UUID(bytes=digest, version=3).hex
        return cls(
            account_id=player_id,
            access_token=player_id,
            profile=DisplayProfile(id=player_id, name=name),
            user_type="legacy",
        )
