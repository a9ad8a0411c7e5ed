"""
Dataclass for tracking installation statistics.
"""

import time
from dataclasses import dataclass, field


@dataclass
class InstallStats:
    """Counts what an installation run did."""

    downloaded: int = 0
    satisfied: int = 0
    failed: int = 0
    bytes_downloaded: int = 0
    natives_extracted: int = 0
    started_at: float = field(default_factory=time.monotonic, repr=False)

    @property
    def total(self) -> int:
        return self.downloaded + self.satisfied + self.failed

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at
