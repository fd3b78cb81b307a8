"""Interface for persisting the classification cache.

The store is an opaque key-value backend; the core only hands it the
drained cache snapshot and reads it back at startup.
"""

import abc
from typing import List

from ..models.common import CacheRecord


class CacheStore(abc.ABC):
    """Abstract Base Class for cache snapshot persistence."""

    @abc.abstractmethod
    def load(self) -> List[CacheRecord]:
        """Returns the last saved snapshot, or an empty list if it is missing or unreadable."""

    @abc.abstractmethod
    def save(self, records: List[CacheRecord]) -> None:
        """Replaces the stored snapshot with the given records.

        Raises:
            CacheStoreError: If the backend cannot be written.
        """

    @abc.abstractmethod
    def clear(self, everything: bool = False) -> None:
        """Deletes this store's snapshot, or every snapshot the backend holds.

        Raises:
            CacheStoreError: If the backend cannot be written.
        """

    def close(self) -> None:
        """Releases backend resources."""
        return None
