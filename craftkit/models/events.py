"""
Progress events emitted by long-running operations.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable


class EventKind(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    """
    A single progress notification.

    `stage` names the producer ("download", "natives", "step", "auth", ...),
    `key` identifies the unit of work within it (usually a path or step index).
    """

    stage: str
    kind: EventKind
    key: str
    detail: str = ""
    size: int = 0


ProgressCallback = Callable[[ProgressEvent], None]
