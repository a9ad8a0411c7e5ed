"""
Tests for the small shared helpers: formatting, task groups, rate limiting and
structured event logs.
"""

import asyncio
import json
import logging

import pytest

from craftkit.api.rate_limiter import AdaptiveRateLimiter, parse_retry_after
from craftkit.models.events import EventKind, ProgressEvent
from craftkit.utils.formatting import format_duration, format_size, mask_secret
from craftkit.utils.structured_logger import StructuredLogger, create_structured_logger
from craftkit.utils.tasks import gather_cancelling


class TestFormatting:
    @pytest.mark.parametrize(
        "size, expected",
        [(0, "0 B"), (512, "512.0 B"), (1536, "1.5 KB"), (3 * 1024**3, "3.0 GB")],
    )
    def test_format_size(self, size, expected):
        assert format_size(size) == expected

    @pytest.mark.parametrize(
        "seconds, expected",
        [(0, "0s"), (59.9, "59s"), (3600, "1h"), (9252, "2h 34m 12s")],
    )
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected

    def test_mask_secret(self):
        assert mask_secret("secret-token") == "secr********"
        assert mask_secret("abc") == "***"


class TestGatherCancelling:
    @pytest.mark.asyncio
    async def test_returns_results_in_order(self):
        async def value(v, delay):
            await asyncio.sleep(delay)
            return v

        assert await gather_cancelling(value(1, 0.02), value(2, 0)) == [1, 2]

    @pytest.mark.asyncio
    async def test_failure_cancels_siblings(self):
        started = asyncio.Event()
        cancelled = []

        async def slow():
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        async def failing():
            await started.wait()
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await gather_cancelling(slow(), failing())
        assert cancelled == [True]


class TestAdaptiveRateLimiter:
    @pytest.mark.asyncio
    async def test_429_halves_rate(self):
        limiter = AdaptiveRateLimiter(initial_calls_per_second=10.0)
        await limiter.on_429()
        assert limiter.rate == 5.0

    @pytest.mark.asyncio
    async def test_rate_never_drops_below_one(self):
        limiter = AdaptiveRateLimiter(initial_calls_per_second=1.5)
        await limiter.on_429()
        await limiter.on_429()
        assert limiter.rate == 1.0

    @pytest.mark.parametrize(
        "header, expected",
        [
            ("2.5", 2.5),
            ("-1", 0.0),
            ("Wed, 21 Oct 2026 07:28:00 GMT", None),
            (None, None),
        ],
    )
    def test_parse_retry_after(self, header, expected):
        assert parse_retry_after(header) == expected


class TestStructuredLogger:
    def _records(self, log_dir):
        files = list(log_dir.glob("craftkit_*.jsonl"))
        assert len(files) == 1
        lines = files[0].read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines]

    def test_writes_json_lines(self, tmp_path):
        with StructuredLogger("craftkit.test", log_dir=tmp_path) as logger:
            logger.set_session_context(instance="main")
            logger.info("artifact_downloaded", path="libraries/a.jar", size=1024)

        (record,) = self._records(tmp_path)
        assert record["event"] == "artifact_downloaded"
        assert record["level"] == "INFO"
        assert record["size"] == 1024
        assert record["instance"] == "main"
        assert "session_id" in record

    def test_forwards_to_standard_logging(self, caplog):
        caplog.set_level(logging.INFO, logger="craftkit.test")
        logger = StructuredLogger("craftkit.test")

        logger.info("install_started", version_id="1.20.1")

        assert "[install_started] version_id=1.20.1" in caplog.text

    def test_progress_events(self, tmp_path):
        base, events, _ = create_structured_logger(tmp_path, enable_json=True)
        events(ProgressEvent("download", EventKind.COMPLETED, "a.jar", size=10))
        events(
            ProgressEvent("download", EventKind.FAILED, "b.jar", detail="mismatch")
        )
        base.close()

        completed, failed = self._records(tmp_path)
        assert completed["event"] == "download_completed"
        assert completed["level"] == "DEBUG"
        assert completed["size"] == 10
        assert failed["event"] == "download_failed"
        assert failed["level"] == "ERROR"
        assert failed["detail"] == "mismatch"

    def test_json_disabled_without_directory(self, tmp_path):
        base, _, session = create_structured_logger(None, enable_json=True)
        session.install_started("1.20.1", None, 8)
        base.close()

        assert not base.enable_json
        assert list(tmp_path.iterdir()) == []
