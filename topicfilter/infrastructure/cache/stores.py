"""CacheStore implementations.

DiskCacheStore keeps the drained snapshot under a single record name in a
diskcache directory; MemoryCacheStore keeps it in process (tests, or when
persistence is disabled by configuration).
"""

import logging
import pickle
import sqlite3
from pathlib import Path
from typing import Any, List, Optional, Union

import diskcache

from topicfilter.domain.errors import CacheStoreError
from topicfilter.domain.interfaces.cache_store import CacheStore
from topicfilter.domain.models.common import CacheRecord

logger = logging.getLogger(__name__)

DEFAULT_RECORD_NAME = "classification_cache"

# What diskcache raises for a damaged directory or an undecodable value
STORE_FAILURES = (sqlite3.DatabaseError, pickle.UnpicklingError, EOFError, OSError)


def _copy_records(records: Any) -> List[CacheRecord]:
    if not isinstance(records, list):
        return []
    return [CacheRecord(**r) if isinstance(r, dict) else r for r in records]


class DiskCacheStore(CacheStore):
    """Persists the cache snapshot in a diskcache.Cache directory.

    A damaged directory (corrupt cache.db, undecodable values) never stops a
    run: load() logs it and returns no records, writes raise CacheStoreError.
    """

    def __init__(self, directory: Union[str, Path], record_name: str = DEFAULT_RECORD_NAME):
        self.directory = Path(directory).expanduser()
        self.record_name = record_name
        self._cache: Optional[diskcache.Cache] = None
        logger.info(f"DiskCacheStore configured at {self.directory} (record={record_name})")

    @property
    def cache(self) -> diskcache.Cache:
        if self._cache is None:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._cache = diskcache.Cache(str(self.directory))
        return self._cache

    def load(self) -> List[CacheRecord]:
        try:
            stored = self.cache.get(self.record_name, default=None)
        except STORE_FAILURES as e:
            logger.warning(f"Cache snapshot at {self.directory} is unreadable, starting empty: {type(e).__name__}: {e}")
            return []
        if stored is None:
            logger.debug(f"No stored cache snapshot under '{self.record_name}'.")
            return []
        if not isinstance(stored, list):
            logger.warning(f"Ignoring stored cache snapshot of unexpected type {type(stored).__name__}.")
            return []
        logger.debug(f"Loaded {len(stored)} cache records from disk.")
        return _copy_records(stored)

    def save(self, records: List[CacheRecord]) -> None:
        try:
            self.cache.set(self.record_name, [dict(r) for r in records])
        except STORE_FAILURES as e:
            raise CacheStoreError(f"Could not write cache snapshot to {self.directory}: {e}") from e
        logger.debug(f"Saved {len(records)} cache records to disk.")

    def clear(self, everything: bool = False) -> None:
        try:
            if everything:
                removed = self.cache.clear()
                logger.info(f"Cleared {removed} records from {self.directory}")
            else:
                self.cache.delete(self.record_name)
                logger.info(f"Cleared cache snapshot '{self.record_name}'")
        except STORE_FAILURES as e:
            raise CacheStoreError(f"Could not clear cache at {self.directory}: {e}") from e

    def close(self) -> None:
        if self._cache is not None:
            self._cache.close()
            self._cache = None


class MemoryCacheStore(CacheStore):
    """Keeps the snapshot in memory for the lifetime of the process."""

    def __init__(self, records: Optional[List[CacheRecord]] = None):
        self.records: List[CacheRecord] = _copy_records(records or [])
        self.save_count = 0

    def load(self) -> List[CacheRecord]:
        return _copy_records(self.records)

    def save(self, records: List[CacheRecord]) -> None:
        self.records = _copy_records(list(records))
        self.save_count += 1

    def clear(self, everything: bool = False) -> None:
        self.records = []
