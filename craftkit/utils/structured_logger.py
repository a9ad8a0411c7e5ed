"""
Structured logging for later analysis of installation runs.
Writes JSON-lines records next to the regular console log.
"""

import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from craftkit.models.events import EventKind, ProgressEvent


class StructuredLogger:
    """
    Logger that outputs both human-readable and machine-parseable records.

    Usage:
        logger = StructuredLogger("craftkit", log_dir=Path("logs"))
        logger.info("artifact_downloaded", path="libraries/a.jar", size=1024)
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            log_dir: Directory for JSON log files (None = disabled)
            enable_json: Enable JSON file logging
            enable_console: Forward records to the standard logger as well
        """
        self.name = name
        self.log_dir = log_dir
        self.enable_json = enable_json and log_dir is not None
        self.enable_console = enable_console
        self._logger = logging.getLogger(name)

        self._json_file = None
        if self.enable_json:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            json_log_path = log_dir / f"craftkit_{timestamp}.jsonl"
            self._json_file = open(json_log_path, "a", encoding="utf-8")  # noqa: SIM115

        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
            "start_time": datetime.now().isoformat(),
        }

    def set_session_context(self, **kwargs) -> None:
        """Set session-level context that appears in all records."""
        self._session_context.update(kwargs)

    def _format_message(self, event: str, **context) -> str:
        parts = [f"[{event}]"]
        parts.extend(f"{key}={value}" for key, value in context.items())
        return " ".join(parts)

    def _write_json(self, level: str, event: str, **context) -> None:
        if not self._json_file or self._json_file.closed:
            return
        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }
        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except OSError as e:
            print(f"JSON logging failed: {e}", file=sys.stderr)

    def _log(self, level: int, event: str, **context) -> None:
        if self.enable_console:
            self._logger.log(level, self._format_message(event, **context))
        if self.enable_json:
            self._write_json(logging.getLevelName(level), event, **context)

    def debug(self, event: str, **context) -> None:
        self._log(logging.DEBUG, event, **context)

    def info(self, event: str, **context) -> None:
        self._log(logging.INFO, event, **context)

    def warning(self, event: str, **context) -> None:
        self._log(logging.WARNING, event, **context)

    def error(self, event: str, **context) -> None:
        self._log(logging.ERROR, event, **context)

    def close(self) -> None:
        """Close JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class ProgressEventLogger:
    """
    Progress callback that records every event. Failures are logged as errors,
    everything else at debug level so the console stays quiet.
    """

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def __call__(self, event: ProgressEvent) -> None:
        context = {"stage": event.stage, "key": event.key}
        if event.detail:
            context["detail"] = event.detail
        if event.size:
            context["size"] = event.size
        name = f"{event.stage}_{event.kind.value}"
        if event.kind is EventKind.FAILED:
            self.logger.error(name, **context)
        else:
            self.logger.debug(name, **context)


class SessionLogger:
    """Records the start and end of top-level operations."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def install_started(self, version_id: str, loader: str | None, workers: int):
        self.logger.info(
            "install_started", version_id=version_id, loader=loader, workers=workers
        )

    def install_completed(
        self,
        version_id: str,
        duration_s: float,
        downloaded: int,
        satisfied: int,
        failed: int,
        bytes_downloaded: int,
    ):
        self.logger.info(
            "install_completed",
            version_id=version_id,
            duration_s=round(duration_s, 2),
            downloaded=downloaded,
            satisfied=satisfied,
            failed=failed,
            size_mb=round(bytes_downloaded / (1024 * 1024), 2),
        )


def create_structured_logger(
    log_dir: Path | None = None, enable_json: bool = False
) -> tuple[StructuredLogger, ProgressEventLogger, SessionLogger]:
    """
    Create all structured loggers.

    Returns:
        Tuple of (base_logger, progress_logger, session_logger)
    """
    base = StructuredLogger(
        "craftkit.events", log_dir=log_dir, enable_json=enable_json
    )
    return base, ProgressEventLogger(base), SessionLogger(base)
