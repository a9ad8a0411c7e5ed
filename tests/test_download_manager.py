"""
Tests for the fetch-and-verify orchestrator.
"""

import asyncio

import pytest

from craftkit.core.download_manager import (
    DownloadStatus,
    DownloadTask,
    download_all,
)
from craftkit.exceptions import IntegrityError, NetworkError
from craftkit.models.events import EventKind

from .helpers import sha1

BODY = b"library bytes" * 512


class TestDownloadOrchestrator:
    """Tests for DownloadOrchestrator.run."""

    @pytest.mark.asyncio
    async def test_downloads_and_verifies(self, orchestrator, file_server, tmp_path):
        url = file_server.add("/lib.jar", BODY)
        destination = tmp_path / "libs" / "lib.jar"

        report = await orchestrator.run(
            [DownloadTask(url, destination, sha1(BODY), size=len(BODY))]
        )

        assert report.ok
        assert [o.status for o in report.outcomes] == [DownloadStatus.DOWNLOADED]
        assert report.bytes_downloaded == len(BODY)
        assert destination.read_bytes() == BODY
        assert list(destination.parent.glob("*.part")) == []

    @pytest.mark.asyncio
    async def test_verified_file_is_not_fetched_again(
        self, orchestrator, file_server, tmp_path
    ):
        url = file_server.add("/lib.jar", BODY)
        task = DownloadTask(url, tmp_path / "lib.jar", sha1(BODY), size=len(BODY))

        await orchestrator.run([task])
        report = await orchestrator.run([task])

        assert report.outcomes[0].status == DownloadStatus.SATISFIED
        assert file_server.hits["/lib.jar"] == 1

    @pytest.mark.asyncio
    async def test_corrupt_file_is_replaced(self, orchestrator, file_server, tmp_path):
        url = file_server.add("/lib.jar", BODY)
        destination = tmp_path / "lib.jar"
        destination.write_bytes(b"stale")

        report = await orchestrator.run([DownloadTask(url, destination, sha1(BODY))])

        assert report.outcomes[0].status == DownloadStatus.DOWNLOADED
        assert destination.read_bytes() == BODY

    @pytest.mark.asyncio
    async def test_digest_mismatch_fails_after_second_attempt(
        self, orchestrator, file_server, tmp_path
    ):
        url = file_server.add("/lib.jar", BODY)
        destination = tmp_path / "lib.jar"

        report = await orchestrator.run([DownloadTask(url, destination, "0" * 40)])

        outcome = report.outcomes[0]
        assert outcome.status == DownloadStatus.FAILED
        assert isinstance(outcome.error, IntegrityError)
        assert outcome.error.expected == "0" * 40
        assert file_server.hits["/lib.jar"] == 2
        assert not destination.exists()
        assert list(tmp_path.glob("*.part")) == []

    @pytest.mark.asyncio
    async def test_size_mismatch_is_an_integrity_failure(
        self, orchestrator, file_server, tmp_path
    ):
        url = file_server.add("/lib.jar", BODY)

        report = await orchestrator.run(
            [DownloadTask(url, tmp_path / "lib.jar", size=len(BODY) - 1)]
        )

        assert isinstance(report.outcomes[0].error, IntegrityError)

    @pytest.mark.asyncio
    async def test_transient_status_is_retried_with_backoff(
        self, orchestrator, file_server, fake_sleep, tmp_path
    ):
        url = file_server.add("/lib.jar", BODY)
        file_server.fail("/lib.jar", 503)

        report = await orchestrator.run([DownloadTask(url, tmp_path / "lib.jar")])

        outcome = report.outcomes[0]
        assert outcome.status == DownloadStatus.DOWNLOADED
        assert len(outcome.attempts) == 1
        assert outcome.attempts[0].retryable
        assert fake_sleep.delays == [1.0]
        assert file_server.hits["/lib.jar"] == 2

    @pytest.mark.asyncio
    async def test_retry_budget_is_bounded(
        self, orchestrator, file_server, fake_sleep, tmp_path
    ):
        url = file_server.add("/lib.jar", BODY)
        file_server.fail("/lib.jar", 503, 502, 504, 503)

        report = await orchestrator.run([DownloadTask(url, tmp_path / "lib.jar")])

        outcome = report.outcomes[0]
        assert outcome.status == DownloadStatus.FAILED
        assert isinstance(outcome.error, NetworkError)
        assert file_server.hits["/lib.jar"] == 3
        assert fake_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_task_attempt_override(self, orchestrator, file_server, tmp_path):
        url = file_server.add("/lib.jar", BODY)
        file_server.fail("/lib.jar", 503)

        report = await orchestrator.run(
            [DownloadTask(url, tmp_path / "lib.jar", max_attempts=1)]
        )

        assert report.outcomes[0].status == DownloadStatus.FAILED
        assert file_server.hits["/lib.jar"] == 1

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(
        self, orchestrator, file_server, fake_sleep, tmp_path
    ):
        report = await orchestrator.run(
            [DownloadTask(file_server.url("/missing.jar"), tmp_path / "missing.jar")]
        )

        error = report.outcomes[0].error
        assert isinstance(error, NetworkError)
        assert error.status == 404
        assert not error.retryable
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_same_destination_is_fetched_once(
        self, orchestrator, file_server, tmp_path
    ):
        url = file_server.add("/lib.jar", BODY)
        task = DownloadTask(url, tmp_path / "lib.jar", sha1(BODY))

        report = await orchestrator.run([task, task])

        statuses = sorted(o.status.value for o in report.outcomes)
        assert statuses == ["downloaded", "satisfied"]
        assert file_server.hits["/lib.jar"] == 1

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_other_tasks(
        self, orchestrator, file_server, tmp_path
    ):
        good = file_server.add("/good.jar", BODY)
        tasks = [
            DownloadTask(file_server.url("/bad.jar"), tmp_path / "bad.jar"),
            DownloadTask(good, tmp_path / "good.jar", sha1(BODY)),
        ]

        report = await orchestrator.run(tasks)

        assert [o.task for o in report.outcomes] == tasks
        assert len(report.failed) == 1
        assert len(report.downloaded) == 1
        assert not report.ok

    @pytest.mark.asyncio
    async def test_emits_progress_events(
        self, orchestrator, file_server, events, tmp_path
    ):
        url = file_server.add("/lib.jar", BODY)
        destination = tmp_path / "lib.jar"

        await orchestrator.run([DownloadTask(url, destination, size=len(BODY))])

        assert [e.kind for e in events] == [EventKind.STARTED, EventKind.COMPLETED]
        assert all(e.stage == "download" for e in events)
        assert events[0].key == str(destination)
        assert events[0].size == len(BODY)

    @pytest.mark.asyncio
    async def test_cancellation_mid_stream_leaves_no_files(
        self, orchestrator, file_server, tmp_path
    ):
        url = file_server.stall("/big.jar", b"x" * 4096)
        destination = tmp_path / "big.jar"
        run = asyncio.create_task(
            orchestrator.run([DownloadTask(url, destination, "0" * 40)])
        )

        await asyncio.wait_for(file_server.streaming.wait(), timeout=5)
        for _ in range(200):
            if list(tmp_path.glob("*.part")):
                break
            await asyncio.sleep(0.01)
        assert list(tmp_path.glob("*.part"))
        run.cancel()

        with pytest.raises(asyncio.CancelledError):
            await run
        assert not destination.exists()
        assert list(tmp_path.glob("*.part")) == []

    @pytest.mark.asyncio
    async def test_unsupported_algorithm_is_rejected_up_front(self, tmp_path):
        with pytest.raises(ValueError, match="Unsupported digest algorithm"):
            DownloadTask("http://example.invalid/a", tmp_path / "a", "x", "blake3")

    @pytest.mark.asyncio
    async def test_empty_batch(self, orchestrator):
        report = await orchestrator.run([])
        assert report.outcomes == []
        assert report.ok


class TestDownloadAll:
    """Tests for the raising helper."""

    @pytest.mark.asyncio
    async def test_raises_first_failure(self, orchestrator, file_server, tmp_path):
        with pytest.raises(NetworkError):
            await download_all(
                orchestrator,
                [DownloadTask(file_server.url("/nope.jar"), tmp_path / "nope.jar")],
            )
