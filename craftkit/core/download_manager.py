"""
The orchestrator for fetching and verifying batches of artifacts.

Downloads run on a fixed pool of workers. Every file is streamed into a
temporary sibling, hashed while being written, and only renamed into place
once its digest and size are confirmed.
"""

import asyncio
import logging
import os
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

import aiohttp

from craftkit.artifacts.downloader import Downloader
from craftkit.artifacts.integrity import SUPPORTED_ALGORITHMS, HashVerifier
from craftkit.exceptions import IntegrityError, NetworkError
from craftkit.models.config import RetryPolicy
from craftkit.models.events import EventKind, ProgressCallback, ProgressEvent

log = logging.getLogger(__name__)


class DownloadStatus(str, Enum):
    DOWNLOADED = "downloaded"
    SATISFIED = "satisfied"
    FAILED = "failed"


@dataclass(frozen=True)
class DownloadTask:
    """
    An artifact to fetch. Tasks are immutable; retries are recorded on the
    outcome instead. `max_attempts` overrides the orchestrator's retry policy.
    """

    url: str
    destination: Path
    digest: Optional[str] = None
    algorithm: str = "sha1"
    size: Optional[int] = None
    max_attempts: Optional[int] = None

    def __post_init__(self):
        if self.algorithm.lower() not in SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"Unsupported digest algorithm '{self.algorithm}' for {self.url}. "
                f"Expected one of: {', '.join(SUPPORTED_ALGORITHMS)}"
            )


@dataclass(frozen=True)
class AttemptRecord:
    attempt: int
    error: str
    retryable: bool


@dataclass
class DownloadOutcome:
    task: DownloadTask
    status: DownloadStatus
    attempts: list[AttemptRecord] = field(default_factory=list)
    error: Optional[Exception] = None
    bytes_downloaded: int = 0


@dataclass
class DownloadReport:
    """One outcome per submitted task, in submission order."""

    outcomes: list[DownloadOutcome] = field(default_factory=list)

    def _with_status(self, status: DownloadStatus) -> list[DownloadOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def downloaded(self) -> list[DownloadOutcome]:
        return self._with_status(DownloadStatus.DOWNLOADED)

    @property
    def satisfied(self) -> list[DownloadOutcome]:
        return self._with_status(DownloadStatus.SATISFIED)

    @property
    def failed(self) -> list[DownloadOutcome]:
        return self._with_status(DownloadStatus.FAILED)

    @property
    def bytes_downloaded(self) -> int:
        return sum(o.bytes_downloaded for o in self.outcomes)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: "DownloadReport") -> "DownloadReport":
        return DownloadReport(self.outcomes + other.outcomes)

    def raise_for_failures(self) -> None:
        """Raises the error of the first failed task, if any."""
        for outcome in self.failed:
            if outcome.error is not None:
                raise outcome.error


class DownloadOrchestrator:
    """
    Bounded-concurrency fetch-and-verify engine.

    Tasks writing the same destination are serialized; the later one re-checks
    the file before fetching and is usually satisfied without a transfer.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        max_workers: int = 8,
        retry_policy: Optional[RetryPolicy] = None,
        on_event: Optional[ProgressCallback] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_workers = max_workers
        self.retry_policy = retry_policy or RetryPolicy()
        self.on_event = on_event
        self._downloader = Downloader(session, self.retry_policy.retryable_statuses)
        self._sleep = sleep
        self._path_locks: dict[str, tuple[asyncio.Lock, int]] = {}

    def _emit(self, kind: EventKind, task: DownloadTask, detail: str = "") -> None:
        if self.on_event:
            self.on_event(
                ProgressEvent(
                    stage="download",
                    kind=kind,
                    key=str(task.destination),
                    detail=detail or task.url,
                    size=task.size or 0,
                )
            )

    @asynccontextmanager
    async def _destination_lock(self, destination: Path):
        """Per-destination lock, dropped once no task refers to it anymore."""
        key = os.path.normcase(os.path.abspath(destination))
        lock, users = self._path_locks.get(key, (asyncio.Lock(), 0))
        self._path_locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._path_locks[key]
            if users <= 1:
                del self._path_locks[key]
            else:
                self._path_locks[key] = (lock, users - 1)

    async def run(
        self, tasks: Iterable[DownloadTask], concurrency: Optional[int] = None
    ) -> DownloadReport:
        """
        Runs all tasks and reports each outcome. Task failures are collected,
        not raised; cancellation propagates after every worker has cleaned up.
        """
        tasks = list(tasks)
        if not tasks:
            return DownloadReport()

        outcomes: list[Optional[DownloadOutcome]] = [None] * len(tasks)
        queue: asyncio.Queue[tuple[int, DownloadTask]] = asyncio.Queue()
        for item in enumerate(tasks):
            queue.put_nowait(item)

        async def worker() -> None:
            while True:
                try:
                    index, task = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                outcomes[index] = await self._process(task)

        pool_size = max(1, min(concurrency or self.max_workers, len(tasks)))
        log.debug(f"Downloading {len(tasks)} artifacts with {pool_size} workers.")
        workers = [asyncio.create_task(worker()) for _ in range(pool_size)]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        return DownloadReport([o for o in outcomes if o is not None])

    async def _process(self, task: DownloadTask) -> DownloadOutcome:
        async with self._destination_lock(task.destination):
            self._emit(EventKind.STARTED, task)
            if await HashVerifier.verify_file(
                task.destination, task.digest, task.algorithm, task.size
            ):
                self._emit(EventKind.SKIPPED, task, "already verified")
                return DownloadOutcome(task, DownloadStatus.SATISFIED)
            outcome = await self._fetch_with_retries(task)
        if outcome.status == DownloadStatus.FAILED:
            self._emit(EventKind.FAILED, task, str(outcome.error))
        else:
            self._emit(EventKind.COMPLETED, task)
        return outcome

    async def _fetch_with_retries(self, task: DownloadTask) -> DownloadOutcome:
        budget = task.max_attempts or self.retry_policy.max_attempts
        destination = task.destination
        attempts: list[AttemptRecord] = []
        mismatches = 0
        attempt = 0

        try:
            await asyncio.to_thread(
                destination.parent.mkdir, parents=True, exist_ok=True
            )
        except OSError as e:
            return DownloadOutcome(task, DownloadStatus.FAILED, attempts, e)

        while True:
            attempt += 1
            delay = None
            temp = destination.with_name(
                f".{destination.name}.{uuid.uuid4().hex[:8]}.part"
            )
            try:
                verifier = await self._downloader.fetch(task.url, temp, task.algorithm)
                size_ok = task.size is None or verifier.size == task.size
                if size_ok and verifier.matches(task.digest):
                    await asyncio.to_thread(os.replace, temp, destination)
                    return DownloadOutcome(
                        task,
                        DownloadStatus.DOWNLOADED,
                        attempts,
                        bytes_downloaded=verifier.size,
                    )

                mismatches += 1
                error = IntegrityError(
                    f"Integrity check failed for '{destination.name}': expected "
                    f"{task.algorithm} {task.digest} ({task.size} bytes), got "
                    f"{verifier.hexdigest()} ({verifier.size} bytes)",
                    path=str(destination),
                    url=task.url,
                    expected=task.digest,
                    actual=verifier.hexdigest(),
                )
                final = mismatches >= 2 or attempt >= budget
                attempts.append(AttemptRecord(attempt, str(error), not final))
                if final:
                    log.warning(f"[yellow]{error}[/yellow]")
                    return DownloadOutcome(task, DownloadStatus.FAILED, attempts, error)
                log.debug(f"Digest mismatch for {task.url}, downloading again.")

            except NetworkError as e:
                attempts.append(AttemptRecord(attempt, str(e), e.retryable))
                if not e.retryable or attempt >= budget:
                    log.debug(f"Giving up on {task.url} after {attempt} attempts: {e}")
                    return DownloadOutcome(task, DownloadStatus.FAILED, attempts, e)
                delay = self.retry_policy.delay(attempt)
                log.debug(
                    f"Download attempt {attempt}/{budget} for '{destination.name}' "
                    f"failed: {e}. Retrying in {delay:.1f}s..."
                )
            except OSError as e:
                attempts.append(AttemptRecord(attempt, str(e), False))
                return DownloadOutcome(task, DownloadStatus.FAILED, attempts, e)
            finally:
                if temp.exists():
                    temp.unlink()

            if delay:
                await self._sleep(delay)


async def download_all(
    orchestrator: DownloadOrchestrator, tasks: Iterable[DownloadTask]
) -> DownloadReport:
    """Runs `tasks` and raises the first failure, for callers that need all of them."""
    report = await orchestrator.run(tasks)
    report.raise_for_failures()
    return report
