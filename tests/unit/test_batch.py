"""
Unit tests for WriteBatchQueue.

Tests cover:
- Threshold-based flushing
- Oversized records
- Batch swapping while an insert is in flight
- Error propagation from the store
"""

import asyncio

import bson
import pytest

from dumpstream.errors import StoreWriteError
from dumpstream.load.batch import WriteBatch, WriteBatchQueue
from dumpstream.store.memory import InMemoryDocumentStore


def sized_doc(doc_id, size):
    """Raw document of exactly size bytes."""
    raw = bson.encode({"_id": doc_id, "pad": "x" * (size - 24)})
    assert len(raw) == size
    return raw


async def push(queue, record):
    await queue.flush_if_needed(len(record))
    queue.enqueue(record)


class TestWriteBatch:
    """Tests for the batch container."""

    def test_total_tracks_records(self):
        batch = WriteBatch()
        batch.add(b"abc")
        batch.add(b"de")
        assert len(batch) == 2
        assert batch.total_bytes == 5


class TestFlushing:
    """Tests for flush decisions."""

    @pytest.mark.asyncio
    async def test_empty_flush_is_noop(self):
        store = InMemoryDocumentStore()
        coll = await store.create_collection("items")
        queue = WriteBatchQueue(coll, threshold=100)

        await queue.flush()
        await queue.drain()

        assert coll.insert_calls == []
        assert queue.flushes == 0

    @pytest.mark.asyncio
    async def test_batches_stay_under_threshold(self):
        """Ten 30-byte documents with a 100-byte threshold."""
        store = InMemoryDocumentStore()
        coll = await store.create_collection("items")
        queue = WriteBatchQueue(coll, threshold=100)

        for i in range(10):
            await push(queue, sized_doc(i, 30))
        await queue.drain()

        assert coll.insert_calls == [3, 3, 3, 1]
        assert all(size <= 100 for size in coll.insert_bytes)
        assert queue.flushes == 4
        assert queue.documents == 10
        assert [doc["_id"] for doc in coll.documents()] == list(range(10))

    @pytest.mark.asyncio
    async def test_exact_threshold_not_flushed_early(self):
        store = InMemoryDocumentStore()
        coll = await store.create_collection("items")
        queue = WriteBatchQueue(coll, threshold=100)

        for i in range(4):
            await push(queue, sized_doc(i, 25))
        await queue.drain()

        assert coll.insert_calls == [4]

    @pytest.mark.asyncio
    async def test_oversized_record_sent_alone(self):
        """A record above the threshold forms its own batch."""
        store = InMemoryDocumentStore()
        coll = await store.create_collection("items")
        queue = WriteBatchQueue(coll, threshold=50)

        await push(queue, sized_doc(1, 30))
        await push(queue, sized_doc(2, 100))
        await push(queue, sized_doc(3, 30))
        await queue.drain()

        assert coll.insert_calls == [1, 1, 1]
        assert coll.insert_bytes == [30, 100, 30]


class TestInflight:
    """Tests for the single in-flight insert."""

    @pytest.mark.asyncio
    async def test_pending_batch_swapped_on_flush(self):
        store = InMemoryDocumentStore()
        coll = await store.create_collection("items")
        queue = WriteBatchQueue(coll, threshold=1000)

        queue.enqueue(sized_doc(1, 30))
        first = queue.pending
        await queue.flush()

        assert queue.pending is not first
        assert len(queue.pending) == 0
        assert queue.pending.total_bytes == 0
        await queue.drain()
        assert coll.insert_calls == [1]

    @pytest.mark.asyncio
    async def test_one_insert_in_flight(self):
        """A flush waits for the previous insert to finish."""
        store = InMemoryDocumentStore()
        coll = await store.create_collection("items")
        running = 0
        peak = 0
        original = coll.insert_many

        async def slow_insert(records):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            await original(records)
            running -= 1

        coll.insert_many = slow_insert
        queue = WriteBatchQueue(coll, threshold=60)
        for i in range(8):
            await push(queue, sized_doc(i, 30))
        await queue.drain()

        assert peak == 1
        assert queue.documents == 8
        assert len(coll.documents()) == 8


class TestErrors:
    """Tests for insert failures."""

    @pytest.mark.asyncio
    async def test_store_failure_surfaces_on_drain(self):
        store = InMemoryDocumentStore()
        coll = await store.create_collection("items")
        queue = WriteBatchQueue(coll, threshold=1000)
        queue.enqueue(sized_doc(1, 30))

        store.fail_writes = True
        with pytest.raises(StoreWriteError):
            await queue.drain()

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self):
        store = InMemoryDocumentStore()
        coll = await store.create_collection("items")

        async def broken(records):
            raise RuntimeError("connection reset")

        coll.insert_many = broken
        queue = WriteBatchQueue(coll, threshold=1000)
        queue.enqueue(sized_doc(1, 30))

        with pytest.raises(StoreWriteError) as exc_info:
            await queue.drain()
        assert exc_info.value.collection == "items"

    @pytest.mark.asyncio
    async def test_abort_discards_pending(self):
        store = InMemoryDocumentStore()
        coll = await store.create_collection("items")
        queue = WriteBatchQueue(coll, threshold=1000)
        queue.enqueue(sized_doc(1, 30))

        queue.abort()
        await queue.drain()

        assert coll.insert_calls == []
