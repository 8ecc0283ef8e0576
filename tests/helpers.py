"""
Shared helpers for dump/load tests.
"""

import asyncio
import io
import struct

from dumpstream.config import DumpConfig, LoadConfig
from dumpstream.dump.writer import DumpWriter
from dumpstream.transport import ByteSink

USERS = [
    {"_id": 1, "name": "Ada", "email": "ada@example.com"},
    {"_id": 2, "name": "Grace", "email": "grace@example.com"},
    {"_id": 3, "name": "Edsger", "email": "edsger@example.com"},
]


async def seed_users(store):
    """The `users` collection: 3 documents and an index on email."""
    return await store.seed(
        "users",
        USERS,
        indexes=[([("email", 1)], {"name": "email_1"})],
    )


async def make_dump(store, version="2"):
    """Dump a store to bytes."""
    out = io.BytesIO()
    await DumpWriter(store, ByteSink(out), DumpConfig(protocol_version=version)).run()
    return out.getvalue()


def split_records(data):
    """Split a stream into records using only the length prefixes."""
    records = []
    pos = 0
    while pos < len(data):
        (length,) = struct.unpack_from("<i", data, pos)
        records.append(data[pos : pos + length])
        pos += length
    return records


def small_load_config(**overrides):
    """LoadConfig with buffer sizes small enough to exercise flow control."""
    settings = dict(
        initial_capacity=4096,
        high_water=1024,
        low_water=256,
        compact_threshold=2048,
        batch_bytes=512,
        read_chunk_size=256,
        max_record_bytes=1024 * 1024,
    )
    settings.update(overrides)
    return LoadConfig(**settings)


class RecordingSource:
    """Flow-control target that records pause/resume with the unread count."""

    def __init__(self):
        self.events = []
        self.measure = lambda: 0

    def pause_reading(self):
        self.events.append(("pause", self.measure()))

    def resume_reading(self):
        self.events.append(("resume", self.measure()))


async def feed_with_flow_control(reader, data, chunk_size):
    """Feed data in chunks, holding back while the reader is paused."""
    pos = 0
    while pos < len(data) and not reader.finished:
        if reader.paused:
            await asyncio.sleep(0)
            continue
        reader.feed(data[pos : pos + chunk_size])
        pos += chunk_size
        await asyncio.sleep(0)
    reader.feed_eof()
