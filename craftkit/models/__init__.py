"""
Data models for the launcher.

Descriptors, sessions and configuration are pydantic models; in-process value
objects are frozen dataclasses.
"""

from .config import LauncherConfig, RetryPolicy, TimeoutPolicy
from .events import EventKind, ProgressCallback, ProgressEvent
from .loader import InstallProfile, InstallStep, LoaderProfile, LoaderVersion
from .session import AuthSession, DisplayProfile
from .stats import InstallStats
from .version import (
    Artifact,
    AssetIndex,
    AssetIndexEntry,
    LibrarySpec,
    Rule,
    VersionDescriptor,
    VersionList,
    evaluate_rules,
)

__all__ = [
    "Artifact",
    "AssetIndex",
    "AssetIndexEntry",
    "AuthSession",
    "DisplayProfile",
    "EventKind",
    "InstallProfile",
    "InstallStats",
    "InstallStep",
    "LauncherConfig",
    "LibrarySpec",
    "LoaderProfile",
    "LoaderVersion",
    "ProgressCallback",
    "ProgressEvent",
    "RetryPolicy",
    "Rule",
    "TimeoutPolicy",
    "VersionDescriptor",
    "VersionList",
    "evaluate_rules",
]
