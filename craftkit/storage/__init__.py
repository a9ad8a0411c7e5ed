"""
Storage Layer.

This package manages everything persisted on disk: the instance directory
layout, the account session, the metadata cache and the configuration file.
"""

from .cache import CacheManager
from .config_manager import ConfigManager
from .instance import InstanceLayout, StagingArea, write_json_atomic
from .session_store import SessionStore

__all__ = [
    "CacheManager",
    "ConfigManager",
    "InstanceLayout",
    "SessionStore",
    "StagingArea",
    "write_json_atomic",
]
