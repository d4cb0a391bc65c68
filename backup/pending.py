"""
Sources of blobs that still need a backup copy.

The reconciler only asks for paths; where they come from is up to the source.
TagQueryPendingSource is the default and discovers work through the blob
index tag query backup == 'needed'.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator

from storage.object_store.buckets import BACKUP_NEEDED, BACKUP_TAG, ObjectStore


class PendingBackupSource(ABC):
    """Abstract source of paths awaiting backup."""

    @abstractmethod
    def list_pending(self) -> AsyncIterator[str]:
        """Yield every path that needs a backup copy right now."""
        pass


class TagQueryPendingSource(PendingBackupSource):

    def __init__(self, store: ObjectStore, page_size: int = 500):
        self.store = store
        self.page_size = page_size

    async def list_pending(self) -> AsyncIterator[str]:
        async for path in self.store.find_by_tag(BACKUP_TAG, BACKUP_NEEDED, page_size=self.page_size):
            yield path
