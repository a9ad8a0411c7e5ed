"""
Yggdrasil accounts: password sign-in against a third-party authentication
server, used in game through the authlib-injector agent.

The server is addressed by its API root. Sessions issued by it never expire
on their own; they are validated before use and refreshed when rejected.
"""

import asyncio
import base64
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urljoin

import aiohttp

from craftkit import constants
from craftkit.exceptions import AuthError, InvalidGrant, NetworkError
from craftkit.models.session import AuthSession, DisplayProfile

from .auth import JsonEndpointClient
from .client import MetaClient

log = logging.getLogger(__name__)

AGENT = {"name": "Minecraft", "version": 1}


@dataclass(frozen=True)
class AgentRelease:
    """A published authlib-injector build."""

    version: str
    download_url: str
    sha256: str

    @property
    def file_name(self) -> str:
        return f"authlib-injector-{self.version}.jar"


def agent_arguments(agent_jar: str, api_url: str, metadata: bytes) -> list[str]:
    """
    JVM arguments that load the agent for `api_url`. The server metadata is
    handed over prefetched so the game does not fetch it again.
    """
    prefetched = base64.b64encode(metadata).decode("ascii")
    return [
        f"-javaagent:{agent_jar}={api_url}",
        f"-Dauthlibinjector.yggdrasil.prefetched={prefetched}",
    ]


class YggdrasilClient(JsonEndpointClient):
    """Talks to one Yggdrasil server, identified by its API root."""

    def __init__(self, http: MetaClient, api_url: str):
        super().__init__(http)
        self.api_url = api_url.rstrip("/")

    def _endpoint(self, path: str) -> str:
        return f"{self.api_url}/authserver/{path}"

    @classmethod
    async def discover(cls, http: MetaClient, url: str) -> "YggdrasilClient":
        """
        Resolves a user-supplied address to the API root it advertises through
        the authlib-injector location header, if any.

        Raises:
            NetworkError: The address could not be reached.
        """
        session = await http.get_session()
        try:
            async with session.get(url) as r:
                location = r.headers.get(constants.AUTHLIB_INJECTOR_API_HEADER)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(
                f"Could not reach {url}: {e}", url=url, retryable=True
            ) from e
        if location:
            resolved = urljoin(url, location)
            if resolved.rstrip("/") != url.rstrip("/"):
                log.debug(f"{url} advertises its API at {resolved}")
            url = resolved
        return cls(http, url)

    async def metadata(self) -> tuple[bytes, dict[str, Any]]:
        """Returns the raw metadata document and its decoded form."""
        raw = await self.http.get_bytes(self.api_url)
        try:
            document = json.loads(raw)
        except ValueError as e:
            raise AuthError(
                f"{self.api_url} did not answer with Yggdrasil metadata.", "metadata"
            ) from e
        if not isinstance(document, dict):
            raise AuthError(
                f"{self.api_url} did not answer with Yggdrasil metadata.", "metadata"
            )
        return raw, document

    async def server_name(self) -> str:
        _, document = await self.metadata()
        meta = document.get("meta") or {}
        return meta.get("serverName") or self.api_url

    @staticmethod
    def _error(hop: str, status: int, body: dict[str, Any]) -> AuthError:
        message = body.get("errorMessage") or body.get("error") or f"HTTP {status}"
        if status == 403 or body.get("error") == "ForbiddenOperationException":
            return InvalidGrant(message, hop)
        return AuthError(f"{hop} failed: {message}", hop)

    @staticmethod
    def _profile(raw: Any) -> DisplayProfile:
        try:
            return DisplayProfile(id=raw["id"], name=raw["name"])
        except (KeyError, TypeError) as e:
            raise AuthError("Malformed profile in server response.", "profile") from e

    def _session(
        self, body: dict[str, Any], profile: DisplayProfile, server_name: str
    ) -> AuthSession:
        return AuthSession(
            account_id=profile.id,
            access_token=body["accessToken"],
            profile=profile,
            user_type="mojang",
            api_url=self.api_url,
            server_name=server_name,
            client_token=body.get("clientToken"),
        )

    async def authenticate(
        self,
        username: str,
        password: str,
        profile_name: Optional[str] = None,
        client_token: Optional[str] = None,
    ) -> AuthSession:
        """
        Signs in with a password and binds a game profile to the token.

        The server's selected profile is used when it has one. Otherwise the
        only available profile is taken, or the one called `profile_name`.

        Raises:
            InvalidGrant: The credentials were rejected.
            AuthError: No profile could be chosen, or the server answered
                with something unexpected.
        """
        server_name = await self.server_name()
        status, body = await self._call(
            "authenticate",
            "POST",
            self._endpoint("authenticate"),
            json={
                "agent": AGENT,
                "username": username,
                "password": password,
                "clientToken": client_token or uuid.uuid4().hex,
                "requestUser": True,
            },
        )
        if status != 200 or "accessToken" not in body:
            raise self._error("authenticate", status, body)

        if body.get("selectedProfile"):
            profile = self._profile(body["selectedProfile"])
            return self._session(body, profile, server_name)

        available = [self._profile(p) for p in body.get("availableProfiles") or []]
        if not available:
            raise AuthError(
                f"No game profile on {server_name} for this account.", "profile"
            )
        if profile_name is not None:
            chosen = next((p for p in available if p.name == profile_name), None)
        elif len(available) == 1:
            chosen = available[0]
        else:
            chosen = None
        if chosen is None:
            names = ", ".join(p.name for p in available)
            raise AuthError(f"Choose one of the profiles: {names}.", "profile")

        bound = self._session(body, chosen, server_name)
        return await self.refresh(bound, select=chosen)

    async def validate(self, session: AuthSession) -> bool:
        """True when the server still accepts the session's access token."""
        payload = {"accessToken": session.access_token}
        if session.client_token:
            payload["clientToken"] = session.client_token
        status, _ = await self._call(
            "validate", "POST", self._endpoint("validate"), json=payload
        )
        return status in (200, 204)

    async def refresh(
        self, session: AuthSession, select: Optional[DisplayProfile] = None
    ) -> AuthSession:
        """
        Exchanges the session's token for a new one, optionally binding the
        `select` profile.

        Raises:
            InvalidGrant: The token can no longer be refreshed.
        """
        payload: dict[str, Any] = {
            "accessToken": session.access_token,
            "requestUser": True,
        }
        if session.client_token:
            payload["clientToken"] = session.client_token
        if select is not None:
            payload["selectedProfile"] = {"id": select.id, "name": select.name}
        status, body = await self._call(
            "refresh", "POST", self._endpoint("refresh"), json=payload
        )
        if status != 200 or "accessToken" not in body:
            raise self._error("refresh", status, body)
        profile = (
            self._profile(body["selectedProfile"])
            if body.get("selectedProfile")
            else session.profile
        )
        body.setdefault("clientToken", session.client_token)
        return self._session(body, profile, session.server_name or self.api_url)


class AuthlibInjector:
    """Looks up the latest authlib-injector release."""

    def __init__(
        self, http: MetaClient, latest_url: str = constants.AUTHLIB_INJECTOR_LATEST_URL
    ):
        self.http = http
        self.latest_url = latest_url

    async def latest(self) -> AgentRelease:
        data = await self.http.get_json(self.latest_url, cache_ttl=3600)
        try:
            return AgentRelease(
                version=str(data["version"]),
                download_url=data["download_url"],
                sha256=data["checksums"]["sha256"],
            )
        except (KeyError, TypeError) as e:
            raise AuthError(
                "authlib-injector release information is malformed.", "agent"
            ) from e
