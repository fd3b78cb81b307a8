"""In-memory TTL cache for classification decisions.

Maps normalized item text to the last decision made for it. Entries expire
lazily: a read of an entry whose age has reached the TTL counts as a miss
and drops the entry. The whole cache can be drained to plain records and
hydrated back, which is how it is persisted between runs.
"""

import logging
import re
import time
import unicodedata
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from topicfilter.domain.models.common import CacheKey, CacheRecord

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60  # 24 hours

_WHITESPACE = re.compile(r"\s+")


def normalize_key(text: str) -> CacheKey:
    """NFKC, trim, collapse whitespace runs, casefold."""
    normalized = unicodedata.normalize("NFKC", text)
    normalized = _WHITESPACE.sub(" ", normalized).strip()
    return CacheKey(normalized.casefold())


@dataclass
class CacheEntry:
    """One cached decision and the time it was made (Unix seconds)."""
    key: CacheKey
    decision: bool
    timestamp: float

    def to_dict(self) -> CacheRecord:
        return CacheRecord(key=self.key, decision=self.decision, timestamp=self.timestamp)

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> "CacheEntry":
        """Builds an entry from a stored record.

        Raises:
            ValueError: If a field is missing or has the wrong type.
        """
        try:
            key = record["key"]
            decision = record["decision"]
            timestamp = record["timestamp"]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Cache record is missing a field: {e}") from e
        if not isinstance(key, str) or not isinstance(decision, bool):
            raise ValueError(f"Cache record has wrong field types: {record!r}")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError(f"Cache record timestamp must be a number: {record!r}")
        return cls(key=CacheKey(key), decision=decision, timestamp=float(timestamp))


class TtlCache:
    """Decision cache with lazy time-to-live expiry."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive.")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        logger.debug(f"TtlCache initialized (ttl={ttl_seconds}s)")

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp >= self.ttl_seconds

    def get(self, key: str) -> Optional[bool]:
        """Returns the cached decision, or None on a miss or an expired entry."""
        entry = self._entries.get(CacheKey(key))
        if entry is None:
            return None
        if self._is_expired(entry, self._clock()):
            del self._entries[entry.key]
            logger.debug(f"Cache entry expired for key: {key!r}")
            return None
        return entry.decision

    def put(self, key: str, decision: bool, timestamp: Optional[float] = None) -> None:
        """Stores a decision, replacing any previous entry for the key."""
        stamp = self._clock() if timestamp is None else timestamp
        self._entries[CacheKey(key)] = CacheEntry(key=CacheKey(key), decision=bool(decision), timestamp=stamp)

    def drain(self) -> List[CacheEntry]:
        """Returns a snapshot of every entry; later mutations do not affect it."""
        return [CacheEntry(key=e.key, decision=e.decision, timestamp=e.timestamp) for e in self._entries.values()]

    def hydrate(self, entries: Iterable[Union[CacheEntry, Mapping[str, Any]]]) -> int:
        """Bulk-imports entries or stored records.

        Malformed records are skipped with a warning. Expired records are
        accepted as-is and expire on their first read.

        Returns:
            The number of entries imported.
        """
        imported = 0
        for raw in entries:
            if isinstance(raw, CacheEntry):
                entry = CacheEntry(key=raw.key, decision=raw.decision, timestamp=raw.timestamp)
            else:
                try:
                    entry = CacheEntry.from_dict(raw)
                except ValueError as e:
                    logger.warning(f"Skipping malformed cache record: {e}")
                    continue
            self._entries[entry.key] = entry
            imported += 1
        logger.debug(f"Hydrated {imported} cache entries.")
        return imported

    def prune_expired(self) -> int:
        """Drops every expired entry and returns how many were dropped."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug(f"Pruned {len(expired)} expired cache entries.")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None
