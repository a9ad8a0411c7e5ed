"""
Pydantic model for launcher configuration.
Provides validation for all settings and derives the network policies from them.
"""

import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from craftkit import __version__
from craftkit.constants import RETRYABLE_STATUSES


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter for transient network failures."""

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.25
    retryable_statuses: frozenset[int] = field(default=RETRYABLE_STATUSES)

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)  # noqa: S311
        return delay

    def is_retryable(self, status: Optional[int]) -> bool:
        return status is None or status in self.retryable_statuses


@dataclass(frozen=True)
class TimeoutPolicy:
    connect: float = 15.0
    read: float = 60.0


class LauncherConfig(BaseModel):
    """A validated configuration model for the launcher."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Instance & identity
    root_dir: str = "~/.craftkit"
    client_id: str = ""

    # Network
    max_workers: int = 8
    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.25
    retryable_statuses: list[int] = Field(
        default_factory=lambda: sorted(RETRYABLE_STATUSES)
    )
    connect_timeout: float = 15.0
    read_timeout: float = 60.0
    user_agent: str = f"craftkit/{__version__}"

    # Runtime
    java_path: str = "java"
    min_memory_mb: int = 512
    max_memory_mb: int = 2048

    # Internal fields not loaded from INI file
    config_path: str = Field(default="", repr=False)

    @field_validator("root_dir")
    @classmethod
    def validate_root_dir(cls, v: str) -> str:
        if not v:
            raise ValueError("Root directory cannot be empty.")
        return str(Path(v).expanduser())

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of workers."""
        if v < 1 or v > 64:
            raise ValueError("Max workers must be between 1 and 64.")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("At least one download attempt is required.")
        return v

    @field_validator("retryable_statuses")
    @classmethod
    def validate_statuses(cls, v: list[int]) -> list[int]:
        bad = [status for status in v if not 100 <= status <= 599]
        if bad:
            raise ValueError(f"Invalid HTTP status codes: {bad}")
        return v

    @model_validator(mode="after")
    def validate_memory(self) -> "LauncherConfig":
        if self.min_memory_mb < 1 or self.max_memory_mb < self.min_memory_mb:
            raise ValueError(
                "Memory settings must satisfy 0 < min_memory_mb <= max_memory_mb."
            )
        return self

    @property
    def root_path(self) -> Path:
        return Path(self.root_dir)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
            retryable_statuses=frozenset(self.retryable_statuses),
        )

    def timeout_policy(self) -> TimeoutPolicy:
        return TimeoutPolicy(connect=self.connect_timeout, read=self.read_timeout)

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
