"""
Cache Manager for Codex Switcher usage data

Persists the per-profile usage summaries to a single JSON file so they
survive restarts. Reading never fails: a missing, corrupt or foreign file
yields an empty cache. Writing failures are logged and the in-memory cache
stays authoritative.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from .usage_types import CACHE_FILE_NAME, CACHE_VERSION, CacheFile, UsageEntry


class UsageCacheStore:
    """Loads and saves the usage cache file"""

    def __init__(self, cache_file: Union[str, Path], debug: bool = False):
        self.cache_file = Path(cache_file)

        self.logger = logging.getLogger("UsageCacheStore")
        if debug:
            self.logger.setLevel(logging.DEBUG)
        else:
            self.logger.setLevel(logging.INFO)

    @classmethod
    def in_directory(cls, cache_dir: Union[str, Path], debug: bool = False) -> 'UsageCacheStore':
        return cls(Path(cache_dir) / CACHE_FILE_NAME, debug=debug)

    def load(self) -> CacheFile:
        """Read the cache file, falling back to an empty cache"""
        if not self.cache_file.exists():
            return CacheFile()

        try:
            with open(self.cache_file, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            self.logger.warning(f"Usage cache could not be read: {e}")
            return CacheFile()

        if not isinstance(raw, dict):
            self.logger.warning("Usage cache has an unexpected shape, starting empty")
            return CacheFile()

        if raw.get('version') != CACHE_VERSION:
            self.logger.info(f"Usage cache version {raw.get('version')!r} is not {CACHE_VERSION}, starting empty")
            return CacheFile()

        entries = raw.get('entries')
        if not isinstance(entries, dict):
            return CacheFile()

        cache = CacheFile()
        for name, data in entries.items():
            try:
                cache.entries[name] = UsageEntry.from_dict(data)
            except (ValueError, OverflowError) as e:
                self.logger.debug(f"Dropping cached usage for '{name}': {e}")

        self.logger.debug(f"Loaded {len(cache.entries)} cached usage entries from {self.cache_file}")
        return cache

    def save(self, cache: CacheFile) -> bool:
        """Write the cache file atomically

        Returns:
            True if the file was written
        """
        temp_path = None
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)

            with tempfile.NamedTemporaryFile(
                mode='w',
                dir=self.cache_file.parent,
                delete=False,
                suffix='.tmp',
                encoding='utf-8'
            ) as tmp_file:
                temp_path = tmp_file.name
                json.dump(cache.to_dict(), tmp_file, indent=2)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())

            os.replace(temp_path, self.cache_file)
            return True

        except (OSError, TypeError, ValueError) as e:
            self.logger.warning(f"Usage cache could not be written: {e}")
            if temp_path:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
            return False

    def clear(self):
        """Remove the cache file"""
        try:
            self.cache_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Usage cache could not be removed: {e}")
