"""
Write-batch queue for bulk inserts during a load.

Raw document records for the active collection accumulate in a WriteBatch
until adding the next record would pass the byte threshold; the batch is
then swapped out and submitted as one insert_many call while parsing
continues.

Invariants:
    - total_bytes always equals the sum of the queued record lengths
    - A submitted batch never exceeds the threshold, unless it holds a
      single record that is larger than the threshold on its own
    - An empty batch is never submitted
    - At most one bulk insert is in flight per queue
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..errors import DumpStreamError, StoreWriteError
from ..store.base import CollectionHandle

logger = logging.getLogger(__name__)


@dataclass
class WriteBatch:
    """Records waiting to be inserted."""

    records: List[bytes] = field(default_factory=list)
    total_bytes: int = 0

    def add(self, record: bytes) -> None:
        self.records.append(record)
        self.total_bytes += len(record)

    def __len__(self) -> int:
        return len(self.records)


class WriteBatchQueue:
    """Batches raw documents into bulk inserts for one collection.

    Attributes:
        collection: Target collection
        threshold: Flush threshold in bytes
        flushes: Number of bulk inserts submitted
        documents: Number of documents submitted

    Example:
        >>> queue = WriteBatchQueue(collection, threshold=4 * 1024 * 1024)
        >>> await queue.flush_if_needed(len(record))
        >>> queue.enqueue(record)
        >>> await queue.drain()
    """

    def __init__(self, collection: CollectionHandle, threshold: int) -> None:
        self.collection = collection
        self.threshold = threshold
        self.flushes = 0
        self.documents = 0
        self._batch = WriteBatch()
        self._inflight: Optional[asyncio.Task] = None

    @property
    def pending(self) -> WriteBatch:
        return self._batch

    def enqueue(self, record: bytes) -> None:
        self._batch.add(record)

    async def flush_if_needed(self, incoming: int) -> None:
        """Flush if adding incoming bytes would pass the threshold."""
        if self._batch.records and self._batch.total_bytes + incoming > self.threshold:
            await self.flush()

    async def flush(self) -> None:
        """Swap out the pending batch and submit it.

        No-op when nothing is queued. Waits for the previous bulk insert
        before submitting, and raises its error if it failed.
        """
        if not self._batch.records:
            return
        batch, self._batch = self._batch, WriteBatch()
        await self._wait_inflight()
        self._inflight = asyncio.create_task(self._submit(batch))

    async def drain(self) -> None:
        """Flush and wait until every submitted batch is stored."""
        await self.flush()
        await self._wait_inflight()

    def abort(self) -> None:
        """Drop queued records and cancel any in-flight insert."""
        self._batch = WriteBatch()
        task, self._inflight = self._inflight, None
        if task is None:
            return
        if task.done():
            if not task.cancelled():
                task.exception()
        else:
            task.cancel()

    async def _wait_inflight(self) -> None:
        task, self._inflight = self._inflight, None
        if task is not None:
            await task

    async def _submit(self, batch: WriteBatch) -> None:
        logger.debug(
            "Submitting bulk insert",
            extra={
                "collection": self.collection.name,
                "documents": len(batch),
                "bytes": batch.total_bytes,
            },
        )
        try:
            await self.collection.insert_many(batch.records)
        except DumpStreamError:
            raise
        except Exception as e:
            raise StoreWriteError(
                f"Bulk insert into {self.collection.name} failed: {e}",
                collection=self.collection.name,
            ) from e
        self.flushes += 1
        self.documents += len(batch)
