"""
HTTP side of account authentication: the Microsoft device-code grant and the
token exchange chain (Xbox Live, XSTS, game services, profile).

Every call maps failures onto the exception hierarchy with the name of the
hop that failed. Transport problems and 5xx answers become retryable
`NetworkError`s so callers can tell them apart from rejected credentials.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from craftkit import constants
from craftkit.exceptions import (
    AuthError,
    ExpiredDeviceCode,
    InvalidGrant,
    NetworkError,
    UserDeclined,
)
from craftkit.models.session import AuthSession, DisplayProfile

from .client import MetaClient

log = logging.getLogger(__name__)

# Well-known XSTS error codes
XSTS_ERRORS = {
    2148916233: "This Microsoft account has no Xbox profile.",
    2148916235: "Xbox Live is not available in this account's country.",
    2148916236: "This account needs adult verification (South Korea).",
    2148916237: "This account needs adult verification (South Korea).",
    2148916238: "Child accounts must be added to a Family by an adult.",
}


class AuthorizationPending(AuthError):
    """The user has not completed the device-code step yet."""


class SlowDown(AuthorizationPending):
    """The token endpoint asks for a longer polling interval."""


@dataclass(frozen=True)
class AuthEndpoints:
    authority: str = constants.MICROSOFT_AUTHORITY_URL
    xbox_live: str = constants.XBOX_LIVE_AUTH_URL
    xsts: str = constants.XSTS_AUTH_URL
    game_services: str = constants.GAME_SERVICES_URL


@dataclass(frozen=True)
class DeviceCodeChallenge:
    """What the user must be shown to complete the device-code flow."""

    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int
    interval: int
    message: str = ""


@dataclass(frozen=True)
class OAuthTokens:
    access_token: str
    refresh_token: Optional[str]
    expires_in: int


class JsonEndpointClient:
    """JSON requests over the metadata client's session and retry policy."""

    def __init__(self, http: MetaClient):
        self.http = http

    async def _call(
        self,
        hop: str,
        method: str,
        url: str,
        *,
        data: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> tuple[int, dict[str, Any]]:
        """
        Sends a request and returns its status and decoded JSON body. Transient
        faults are retried with the metadata client's backoff policy.

        Raises:
            NetworkError: Transport failures and 5xx/429 answers outlasted
                every attempt (retryable).
        """
        policy = self.http.retry_policy
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._call_once(
                    hop, method, url, data=data, json=json, token=token
                )
            except NetworkError as e:
                if not e.retryable or attempt >= policy.max_attempts:
                    raise
                delay = policy.delay(attempt)
                log.debug(
                    f"{hop} request {attempt}/{policy.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
            await self.http.sleep(delay)

    async def _call_once(
        self,
        hop: str,
        method: str,
        url: str,
        *,
        data: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> tuple[int, dict[str, Any]]:
        session = await self.http.get_session()
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            async with session.request(
                method, url, data=data, json=json, headers=headers
            ) as r:
                if r.status >= 500 or r.status == 429:
                    raise NetworkError(
                        f"{hop}: HTTP {r.status} from {url}",
                        url=url,
                        status=r.status,
                        retryable=True,
                    )
                try:
                    body = await r.json(content_type=None)
                except ValueError:
                    body = None
                return r.status, body if isinstance(body, dict) else {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(
                f"{hop}: request failed: {e}", url=url, retryable=True
            ) from e


class IdentityClient(JsonEndpointClient):
    """Performs the individual identity and token-exchange requests."""

    def __init__(
        self,
        http: MetaClient,
        client_id: str,
        endpoints: Optional[AuthEndpoints] = None,
    ):
        super().__init__(http)
        self.client_id = client_id
        self.endpoints = endpoints or AuthEndpoints()

    def _require_client_id(self) -> None:
        if not self.client_id:
            raise AuthError(
                "No OAuth client id configured for Microsoft sign-in.",
                hop="device_code",
            )

    async def request_device_code(self) -> DeviceCodeChallenge:
        self._require_client_id()
        status, body = await self._call(
            "device_code",
            "POST",
            f"{self.endpoints.authority}/devicecode",
            data={"client_id": self.client_id, "scope": constants.MICROSOFT_SCOPE},
        )
        if status != 200 or "device_code" not in body:
            reason = body.get("error_description") or f"HTTP {status}"
            raise AuthError(
                f"Device code request rejected: {reason}", hop="device_code"
            )
        return DeviceCodeChallenge(
            device_code=body["device_code"],
            user_code=body["user_code"],
            verification_uri=body["verification_uri"],
            expires_in=int(body.get("expires_in", 900)),
            interval=int(body.get("interval", 5)),
            message=body.get("message", ""),
        )

    def _token_error(self, hop: str, body: dict[str, Any]) -> AuthError:
        error = body.get("error", "unknown_error")
        description = body.get("error_description", error)
        if error == "slow_down":
            return SlowDown(description, hop)
        if error == "authorization_pending":
            return AuthorizationPending(description, hop)
        if error in ("expired_token", "code_expired"):
            return ExpiredDeviceCode("The device code expired before sign-in.", hop)
        if error in ("authorization_declined", "access_denied"):
            return UserDeclined("The sign-in request was declined.", hop)
        if error == "invalid_grant":
            return InvalidGrant(f"The grant was rejected: {description}", hop)
        return AuthError(f"Token endpoint error '{error}': {description}", hop)

    def _parse_tokens(
        self, hop: str, status: int, body: dict[str, Any]
    ) -> OAuthTokens:
        if status != 200 or "access_token" not in body:
            raise self._token_error(hop, body)
        return OAuthTokens(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_in=int(body.get("expires_in", 3600)),
        )

    async def poll_device_token(self, device_code: str) -> OAuthTokens:
        """
        Polls the token endpoint once.

        Raises:
            AuthorizationPending: Keep polling (`SlowDown`: with a longer interval).
            ExpiredDeviceCode, UserDeclined, InvalidGrant: Terminal outcomes.
        """
        status, body = await self._call(
            "device_code",
            "POST",
            f"{self.endpoints.authority}/token",
            data={
                "grant_type": constants.DEVICE_CODE_GRANT,
                "client_id": self.client_id,
                "device_code": device_code,
            },
        )
        return self._parse_tokens("device_code", status, body)

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        self._require_client_id()
        status, body = await self._call(
            "refresh",
            "POST",
            f"{self.endpoints.authority}/token",
            data={
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "refresh_token": refresh_token,
                "scope": constants.MICROSOFT_SCOPE,
            },
        )
        return self._parse_tokens("refresh", status, body)

    async def authenticate_xbox_live(self, access_token: str) -> tuple[str, str]:
        """Returns the Xbox Live user token and user hash."""
        status, body = await self._call(
            "xbox_live",
            "POST",
            self.endpoints.xbox_live,
            json={
                "Properties": {
                    "AuthMethod": "RPS",
                    "SiteName": "user.auth.xboxlive.com",
                    "RpsTicket": f"d={access_token}",
                },
                "RelyingParty": constants.XBOX_RELYING_PARTY,
                "TokenType": "JWT",
            },
        )
        return self._xbox_token("xbox_live", status, body)

    async def authorize_xsts(self, user_token: str) -> tuple[str, str]:
        """Returns the XSTS token and user hash for the game services."""
        status, body = await self._call(
            "xsts",
            "POST",
            self.endpoints.xsts,
            json={
                "Properties": {"SandboxId": "RETAIL", "UserTokens": [user_token]},
                "RelyingParty": constants.GAME_RELYING_PARTY,
                "TokenType": "JWT",
            },
        )
        if status == 401:
            code = body.get("XErr")
            raise AuthError(
                XSTS_ERRORS.get(code, f"XSTS authorization denied (XErr {code})."),
                hop="xsts",
            )
        return self._xbox_token("xsts", status, body)

    @staticmethod
    def _xbox_token(hop: str, status: int, body: dict[str, Any]) -> tuple[str, str]:
        try:
            if status != 200:
                raise KeyError(status)
            return body["Token"], body["DisplayClaims"]["xui"][0]["uhs"]
        except (KeyError, IndexError, TypeError) as e:
            raise AuthError(f"Unexpected {hop} response (HTTP {status}).", hop) from e

    async def login_game_service(self, user_hash: str, xsts_token: str) -> OAuthTokens:
        status, body = await self._call(
            "game_service",
            "POST",
            f"{self.endpoints.game_services}/authentication/login_with_xbox",
            json={"identityToken": f"XBL3.0 x={user_hash};{xsts_token}"},
        )
        if status != 200 or "access_token" not in body:
            raise AuthError(
                f"Game service login failed (HTTP {status}).", hop="game_service"
            )
        return OAuthTokens(
            access_token=body["access_token"],
            refresh_token=None,
            expires_in=int(body.get("expires_in", 86400)),
        )

    async def fetch_profile(self, access_token: str) -> DisplayProfile:
        status, body = await self._call(
            "profile",
            "GET",
            f"{self.endpoints.game_services}/minecraft/profile",
            token=access_token,
        )
        if status == 404 or "error" in body:
            raise AuthError("This account does not own the game.", hop="profile")
        if status != 200 or "id" not in body:
            raise AuthError(f"Profile request failed (HTTP {status}).", hop="profile")
        skin_url = next(
            (
                skin.get("url")
                for skin in body.get("skins", [])
                if skin.get("state") == "ACTIVE"
            ),
            None,
        )
        return DisplayProfile(id=body["id"], name=body["name"], skin_url=skin_url)

    async def exchange(
        self,
        tokens: OAuthTokens,
        now: Optional[float] = None,
        previous_refresh_token: Optional[str] = None,
    ) -> AuthSession:
        """
        Runs the full chain from an identity token to a game session. Nothing
        is returned unless every hop succeeded.

        Token endpoints may omit the refresh token on renewal; the previous one
        then stays valid and is kept.
        """
        now = time.time() if now is None else now
        user_token, _ = await self.authenticate_xbox_live(tokens.access_token)
        xsts_token, user_hash = await self.authorize_xsts(user_token)
        game = await self.login_game_service(user_hash, xsts_token)
        profile = await self.fetch_profile(game.access_token)
        log.debug(f"Token chain completed for {profile.name}")
        return AuthSession(
            account_id=profile.id,
            access_token=game.access_token,
            refresh_token=tokens.refresh_token or previous_refresh_token,
            expires_at=now + game.expires_in,
            profile=profile,
            user_type="msa",
            xuid=user_hash,
        )
