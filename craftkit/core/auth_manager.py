"""
Account session lifecycle: device-code sign-in, token exchange and renewal,
plus password sign-in to Yggdrasil servers.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from craftkit.api.auth import (
    AuthorizationPending,
    DeviceCodeChallenge,
    IdentityClient,
    SlowDown,
)
from craftkit.api.yggdrasil import YggdrasilClient
from craftkit.exceptions import (
    ExpiredDeviceCode,
    InvalidGrant,
    NetworkError,
    NotAuthenticated,
    RefreshFailed,
)
from craftkit.models.config import RetryPolicy
from craftkit.models.session import AuthSession
from craftkit.storage.session_store import SessionStore

log = logging.getLogger(__name__)

SLOW_DOWN_STEP = 5.0

YggdrasilFactory = Callable[[str], YggdrasilClient]
ChallengeCallback = Callable[[DeviceCodeChallenge], Union[None, Awaitable[None]]]


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    DEVICE_CODE_PENDING = "device_code_pending"
    POLLING = "polling"
    TOKEN_EXCHANGING = "token_exchanging"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    REFRESHING = "refreshing"
    REFRESH_FAILED = "refresh_failed"


class AuthenticationManager:
    """
    Owns the current `AuthSession` and every transition between sign-in states.

    Sessions are replaced, never mutated. Concurrent `get_session()` calls
    during renewal all wait on the same refresh.
    """

    def __init__(
        self,
        identity: IdentityClient,
        store: Optional[SessionStore] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        skew: float = 60.0,
        retry_policy: Optional[RetryPolicy] = None,
        yggdrasil: Optional[YggdrasilFactory] = None,
    ):
        self.identity = identity
        self._yggdrasil = yggdrasil
        self._validated: Optional[str] = None
        self.retry_policy = retry_policy or RetryPolicy()
        self.store = store
        self._clock = clock
        self._sleep = sleep
        self._skew = skew
        self._session: Optional[AuthSession] = store.load() if store else None
        self._state = (
            AuthState.AUTHENTICATED if self._session else AuthState.UNAUTHENTICATED
        )
        self._refresh_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> AuthState:
        if self._state == AuthState.AUTHENTICATED and self._is_expired():
            return AuthState.EXPIRED
        return self._state

    @property
    def session(self) -> Optional[AuthSession]:
        """The current session snapshot, expired or not."""
        return self._session

    def _is_expired(self) -> bool:
        return self._session is None or self._session.is_expired(
            self._clock(), self._skew
        )

    def yggdrasil_client(self, api_url: str) -> YggdrasilClient:
        if self._yggdrasil is not None:
            return self._yggdrasil(api_url)
        return YggdrasilClient(self.identity.http, api_url)

    def _commit(self, session: AuthSession) -> AuthSession:
        self._session = session
        self._validated = session.access_token if session.is_yggdrasil else None
        self._state = AuthState.AUTHENTICATED
        if self.store is not None:
            self.store.save(session)
        return session

    def _reset(self) -> None:
        self._session = None
        self._validated = None
        self._state = AuthState.UNAUTHENTICATED
        if self.store is not None:
            self.store.clear()

    async def begin_device_flow(self) -> DeviceCodeChallenge:
        """Requests a device code; show the returned challenge to the user."""
        challenge = await self.identity.request_device_code()
        self._state = AuthState.DEVICE_CODE_PENDING
        log.debug(f"Device code issued, expires in {challenge.expires_in}s")
        return challenge

    async def complete_device_flow(
        self,
        challenge: DeviceCodeChallenge,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AuthSession:
        """
        Polls until the user finishes signing in, then runs the token exchange.

        Raises:
            ExpiredDeviceCode: The code expired (server-side or local deadline).
            UserDeclined: The user refused the request.
            AuthError: A hop of the token exchange failed.
            asyncio.CancelledError: `cancel_event` was set between attempts.
        """
        deadline = self._clock() + challenge.expires_in
        interval = float(max(1, challenge.interval))
        failures = 0
        self._state = AuthState.POLLING
        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    log.info("Sign-in cancelled.")
                    raise asyncio.CancelledError()
                if self._clock() >= deadline:
                    raise ExpiredDeviceCode(
                        "The device code expired before sign-in.", "device_code"
                    )
                try:
                    tokens = await self.identity.poll_device_token(
                        challenge.device_code
                    )
                    break
                except NetworkError as e:
                    if not e.retryable:
                        raise
                    failures += 1
                    delay = max(interval, self.retry_policy.delay(failures))
                    log.debug(f"Polling failed: {e}. Retrying in {delay:.1f}s...")
                    await self._sleep(delay)
                    continue
                except SlowDown:
                    interval += SLOW_DOWN_STEP
                    log.debug(f"Polling slowed down to every {interval:.0f}s")
                except AuthorizationPending:
                    pass
                failures = 0
                await self._sleep(interval)

            self._state = AuthState.TOKEN_EXCHANGING
            session = await self.identity.exchange(tokens, now=self._clock())
        except BaseException:
            self._state = (
                AuthState.AUTHENTICATED if self._session else AuthState.UNAUTHENTICATED
            )
            raise
        log.info(f"Signed in as [cyan]{session.profile.name}[/cyan]")
        return self._commit(session)

    async def _refresh(self, current: AuthSession) -> AuthSession:
        self._state = AuthState.REFRESHING
        try:
            if current.is_yggdrasil:
                client = self.yggdrasil_client(current.api_url)
                session = await client.refresh(current)
            else:
                tokens = await self.identity.refresh(current.refresh_token or "")
                session = await self.identity.exchange(
                    tokens,
                    now=self._clock(),
                    previous_refresh_token=current.refresh_token,
                )
        except InvalidGrant as e:
            self._state = AuthState.REFRESH_FAILED
            log.warning("[yellow]Stored sign-in was rejected; sign in again.[/yellow]")
            self._reset()
            raise RefreshFailed(f"Session refresh was rejected: {e}", "refresh") from e
        except BaseException:
            self._state = AuthState.AUTHENTICATED
            raise
        log.debug(f"Session refreshed for {session.profile.name}")
        return self._commit(session)

    async def _still_accepted(self, session: AuthSession) -> bool:
        """Yggdrasil tokens are checked with their server once per manager."""
        if not session.is_yggdrasil or session.access_token == self._validated:
            return True
        client = self.yggdrasil_client(session.api_url)
        if await client.validate(session):
            self._validated = session.access_token
            return True
        log.debug(f"{session.server_name} no longer accepts the stored token")
        return False

    async def get_session(self) -> AuthSession:
        """
        Returns a valid session, renewing an expired one (or one its Yggdrasil
        server no longer accepts) first.

        Raises:
            NotAuthenticated: No session and nothing to renew.
            RefreshFailed: The refresh token was rejected; the session is gone.
            NetworkError: Renewal hit a transient fault; the session stays expired.
        """
        async with self._lock:
            current = self._session
            if current is None:
                raise NotAuthenticated("Not signed in.", "session")
            if not self._is_expired() and await self._still_accepted(current):
                return current
            if not current.refresh_token and not current.is_yggdrasil:
                self._reset()
                raise RefreshFailed("Session expired and cannot be renewed.", "refresh")
            if self._refresh_task is None or self._refresh_task.done():
                self._refresh_task = asyncio.create_task(self._refresh(current))
            task = self._refresh_task
        return await asyncio.shield(task)

    async def authenticate(
        self, on_challenge: Optional[ChallengeCallback] = None
    ) -> AuthSession:
        """
        Returns a usable session: the stored one, a renewed one, or a new one
        from the device-code flow (`on_challenge` displays the code).

        A rejected Yggdrasil session is not replaced by a Microsoft sign-in;
        its `RefreshFailed` propagates.
        """
        if self._session is not None:
            yggdrasil = self._session.is_yggdrasil
            try:
                return await self.get_session()
            except RefreshFailed:
                if yggdrasil:
                    raise
                log.info("Starting a new sign-in.")
        challenge = await self.begin_device_flow()
        if on_challenge is not None:
            result = on_challenge(challenge)
            if asyncio.iscoroutine(result):
                await result
        return await self.complete_device_flow(challenge)

    async def sign_in_yggdrasil(
        self,
        api_url: str,
        username: str,
        password: str,
        profile_name: Optional[str] = None,
    ) -> AuthSession:
        """
        Signs in to a Yggdrasil server with a password. `api_url` may be any
        address that advertises the API root.

        Raises:
            InvalidGrant: The server rejected the credentials.
            AuthError: No game profile could be chosen.
        """
        if self._yggdrasil is not None:
            client = self._yggdrasil(api_url)
        else:
            client = await YggdrasilClient.discover(self.identity.http, api_url)
        session = await client.authenticate(username, password, profile_name)
        log.info(
            f"Signed in as [cyan]{session.profile.name}[/cyan] "
            f"on {session.server_name}"
        )
        return self._commit(session)

    def logout(self) -> None:
        self._reset()
        log.info("Signed out.")
