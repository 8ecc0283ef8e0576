"""
Integration tests for dump followed by load with in-memory stores.

Tests cover:
- Round trips for both protocol versions
- Multiple collections, index options and empty collections
- The public dump()/load() operations over files and asyncio streams
- Replacing existing data in the target
"""

import asyncio
import io

import bson
import pytest

from dumpstream import dump, load
from dumpstream.config import LoadConfig, StreamConfig
from dumpstream.errors import VersionError
from dumpstream.load.reader import LoadReader
from dumpstream.store.memory import InMemoryDocumentStore
from tests.helpers import USERS, make_dump, seed_users, small_load_config


async def roundtrip(source, version="2", config=None):
    target = InMemoryDocumentStore()
    reader = LoadReader(target, config or small_load_config())
    reader.feed(await make_dump(source, version))
    reader.feed_eof()
    result = await reader.wait()
    return target, result


def snapshot(store):
    return {
        name: (store.get(name).raw_documents(), sorted(store.get(name).index_names()))
        for name in store.collection_names()
    }


class TestRoundTrip:
    """Dump a store and load it into an empty one."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("version", ["1", "2"])
    async def test_users_collection(self, version):
        source = InMemoryDocumentStore()
        await seed_users(source)

        target, result = await roundtrip(source, version)

        assert result.protocol_version == version
        assert result.collections == 1
        assert result.documents == 3
        assert target.collection_names() == ["users"]
        assert target.get("users").documents() == USERS
        assert sorted(target.get("users").index_names()) == ["_id_", "email_1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("version", ["1", "2"])
    async def test_many_collections(self, version):
        source = InMemoryDocumentStore()
        await seed_users(source)
        await source.seed(
            "orders",
            [{"_id": i, "user": i % 3 + 1, "total": i * 1.5} for i in range(250)],
            indexes=[([("user", 1), ("total", -1)], {"name": "user_1_total_-1"})],
        )
        await source.seed("empty")

        target, result = await roundtrip(source, version)

        assert snapshot(target) == snapshot(source)
        assert result.collections == 3
        assert result.documents == 253

    @pytest.mark.asyncio
    async def test_unique_index_options_survive(self):
        source = InMemoryDocumentStore()
        await source.seed(
            "accounts",
            [{"_id": 1, "handle": "ada"}],
            indexes=[([("handle", 1)], {"name": "handle_1", "unique": True})],
        )

        target, _ = await roundtrip(source)

        specs = {spec.name: spec for spec in await target.get("accounts").index_information()}
        assert specs["handle_1"].options["unique"] is True

    @pytest.mark.asyncio
    async def test_empty_collection_has_no_inserts(self):
        source = InMemoryDocumentStore()
        await source.seed("empty")

        target, result = await roundtrip(source)

        assert target.get("empty").documents() == []
        assert target.get("empty").insert_calls == []
        assert result.bulk_inserts == 0

    @pytest.mark.asyncio
    async def test_large_documents_with_small_buffers(self):
        """Documents larger than the whole initial buffer still load."""
        source = InMemoryDocumentStore()
        await source.seed("blobs", [{"_id": i, "data": bytes([i]) * 20000} for i in range(5)])

        target, result = await roundtrip(source)

        assert target.get("blobs").raw_documents() == source.get("blobs").raw_documents()
        assert result.buffer_overruns >= 1

    @pytest.mark.asyncio
    async def test_v2_dump_is_smaller_than_v1(self):
        source = InMemoryDocumentStore()
        await source.seed("many", [{"_id": i} for i in range(100)])

        v1 = await make_dump(source, "1")
        v2 = await make_dump(source, "2")

        assert len(v2) < len(v1)


class TestPublicApi:
    """Tests for dumpstream.dump() and dumpstream.load()."""

    @pytest.mark.asyncio
    async def test_file_objects(self):
        source = InMemoryDocumentStore()
        await seed_users(source)
        out = io.BytesIO()

        dumped = await dump(source, out)
        out.seek(0)
        target = InMemoryDocumentStore()
        config = StreamConfig(load=small_load_config())
        loaded = await load(target, out, config=config)

        assert dumped.documents == loaded.documents == 3
        assert loaded.bytes_read == dumped.bytes_written
        assert target.get("users").documents() == USERS
        assert not source.closed
        assert not target.closed

    @pytest.mark.asyncio
    async def test_asyncio_stream_reader(self):
        source = InMemoryDocumentStore()
        await seed_users(source)
        data = await make_dump(source)

        stream = asyncio.StreamReader()

        async def produce():
            for i in range(0, len(data), 7):
                stream.feed_data(data[i : i + 7])
                await asyncio.sleep(0)
            stream.feed_eof()

        target = InMemoryDocumentStore()
        producer = asyncio.create_task(produce())
        result = await load(target, stream, config=StreamConfig(load=small_load_config()))
        await producer

        assert result.documents == 3
        assert target.get("users").documents() == USERS

    @pytest.mark.asyncio
    async def test_load_replaces_existing_collections(self):
        source = InMemoryDocumentStore()
        await seed_users(source)
        target = InMemoryDocumentStore()
        await target.seed("users", [{"_id": 99, "name": "stale"}])
        await target.seed("leftover", [{"_id": 1}])
        data = io.BytesIO(await make_dump(source))

        await load(target, data, config=StreamConfig(load=small_load_config()))

        assert target.collection_names() == ["users"]
        assert target.get("users").documents() == USERS

    @pytest.mark.asyncio
    async def test_rejected_version_keeps_target(self):
        target = InMemoryDocumentStore()
        await seed_users(target)
        data = io.BytesIO(
            bson.encode({"type": "mongo-dump-stream", "version": "9"})
            + bson.encode({"type": "endDatabase"})
        )

        with pytest.raises(VersionError):
            await load(target, data, config=StreamConfig(load=small_load_config()))

        assert target.get("users").documents() == USERS

    @pytest.mark.asyncio
    async def test_default_load_config(self):
        source = InMemoryDocumentStore()
        await seed_users(source)

        target, result = await roundtrip(source, config=LoadConfig())

        assert result.buffer_overruns == 0
        assert target.get("users").documents() == USERS
