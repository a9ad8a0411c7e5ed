"""
Circuit breaker protecting metadata endpoints from repeated failing calls.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional

from craftkit.exceptions import CircuitOpenError

log = logging.getLogger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker to prevent cascading failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: Too many failures, requests blocked
    - HALF_OPEN: Testing recovery, limited requests allowed

    Only exceptions accepted by `is_failure` trip the breaker, so definitive
    answers such as a 404 are not held against the endpoint.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        success_threshold: int = 2,
        is_failure: Optional[Callable[[BaseException], bool]] = None,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            recovery_timeout: Seconds to wait before attempting recovery
            success_threshold: Consecutive successes needed to close circuit
            is_failure: Predicate selecting the exceptions that count as failures
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.is_failure = is_failure or (lambda exc: isinstance(exc, Exception))

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        """Current circuit state."""
        return self._state

    def _check_state(self) -> None:
        """Check if circuit should transition from OPEN to HALF_OPEN."""
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return
        elapsed = time.monotonic() - self._last_failure_time
        if elapsed >= self.recovery_timeout:
            log.info(
                f"[yellow]Circuit breaker transitioning to HALF_OPEN "
                f"(testing recovery after {elapsed:.0f}s)[/yellow]"
            )
            self._state = CircuitState.HALF_OPEN
            self._success_count = 0

    async def _on_success(self) -> None:
        async with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    log.info("[green]Circuit breaker recovered (CLOSED).[/green]")
                    self._state = CircuitState.CLOSED
                    self._success_count = 0

    async def _on_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = time.monotonic()

            if self._state == CircuitState.HALF_OPEN:
                log.warning(
                    "[yellow]Circuit breaker: recovery test failed, "
                    "returning to OPEN.[/yellow]"
                )
                self._state = CircuitState.OPEN
                self._failure_count = 0
                self._success_count = 0
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                log.error(
                    f"[red]Circuit breaker OPENED after {self._failure_count} "
                    f"consecutive failures. Requests blocked for "
                    f"{self.recovery_timeout}s.[/red]"
                )
                self._state = CircuitState.OPEN

    async def __aenter__(self):
        """Enter context, check if circuit is open."""
        async with self._lock:
            self._check_state()
            if self._state == CircuitState.OPEN:
                raise CircuitOpenError(
                    f"Circuit is open. Will try to recover after "
                    f"{self.recovery_timeout} seconds."
                )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit context, handle success or failure."""
        if exc_type is None:
            await self._on_success()
        elif self.is_failure(exc_val):
            await self._on_failure()
