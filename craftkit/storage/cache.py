"""
A file-based JSON cache with a time-to-live (TTL) for metadata responses
such as version lists and loader version listings.
"""

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any, Optional

from .instance import write_json_atomic

log = logging.getLogger(__name__)


class CacheManager:
    """
    Manages a JSON-based file cache keyed by request URL, with hit/miss counters.
    """

    MAX_CACHE_VALUE_KB = 2048

    def __init__(self, cache_dir_path: Path, max_age_seconds: float = 3600):
        """
        Initializes the cache manager.

        Args:
            cache_dir_path: The directory where cache files will be stored.
            max_age_seconds: Default age after which an entry is considered stale.
        """
        self.cache_dir = cache_dir_path
        self.max_age_seconds = max_age_seconds
        self.hits = 0
        self.misses = 0

    def _get_cache_path(self, key: str) -> Path:
        """Generates a safe filename for a given cache key."""
        hashed_key = hashlib.md5(key.encode("utf-8")).hexdigest()  # noqa: S324
        return self.cache_dir / f"{hashed_key}.json"

    def get(self, key: str, max_age: Optional[float] = None) -> Any | None:
        """
        Retrieves a value from the cache. Returns None if the key is not found or
        expired.
        """
        max_age = self.max_age_seconds if max_age is None else max_age
        cache_path = self._get_cache_path(key)
        try:
            with open(cache_path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            self.misses += 1
            return None
        except (json.JSONDecodeError, OSError) as e:
            log.debug(f"Cache read failed for key '{key}': {e}")
            self.misses += 1
            return None

        if time.time() - data.get("timestamp", 0) > max_age:
            self.misses += 1
            return None
        self.hits += 1
        return data.get("value")

    def set(self, key: str, value: Any) -> bool:
        """Saves a value to the cache, with a size limit check."""
        payload = {"key": key, "timestamp": time.time(), "value": value}
        try:
            size_kb = len(json.dumps(payload)) / 1024
            if size_kb > self.MAX_CACHE_VALUE_KB:
                log.debug(
                    f"Cache value for key '{key}' is too large ({size_kb:.1f} KB), "
                    "skipping."
                )
                return False
            write_json_atomic(self._get_cache_path(key), payload)
            return True
        except (TypeError, OSError) as e:
            log.warning(f"Cache write failed for key '{key}': {e}")
            return False

    def clear(self) -> int:
        """Removes all items from the cache and returns how many were removed."""
        log.info("Clearing all cache entries...")
        removed = 0
        if not self.cache_dir.is_dir():
            return removed
        for cache_file in self.cache_dir.glob("*.json"):
            try:
                cache_file.unlink()
                removed += 1
            except OSError as e:
                log.error(f"Failed to remove cache file {cache_file.name}: {e}")
        return removed
