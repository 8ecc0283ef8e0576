"""
Public dump/load operations.

Usage:
    result = await dump("mongodb://localhost/app", open("app.dump", "wb"))
    result = await load("mongodb://localhost/copy", open("app.dump", "rb"))

Either side accepts a DocumentStore instead of a connection string. An
omitted sink defaults to standard output (dump); an omitted source defaults
to standard input (load).

Invariants:
    - Each call finishes with one result or raises one DumpStreamError
    - Stores opened from a connection string are closed before returning
    - Stores passed in by the caller are left open
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional, Tuple, Union

from .config import StoreConfig, StreamConfig
from .dump.writer import DumpResult, DumpWriter
from .load.protocol import LoadResult
from .load.reader import LoadReader
from .store.base import DocumentStore
from .store.mongo import MongoDocumentStore
from .transport import ByteSink, ChunkSource

logger = logging.getLogger(__name__)

StoreTarget = Union[str, DocumentStore]


async def open_store(target: StoreTarget, config: StoreConfig) -> Tuple[DocumentStore, bool]:
    """Resolve a store or connection string.

    Returns:
        The store, and whether the caller owns (and must close) it

    Raises:
        StoreConnectionError: If a connection string cannot be reached
    """
    if isinstance(target, str):
        store = await MongoDocumentStore.connect(
            target,
            database=config.database,
            server_selection_timeout_ms=config.server_selection_timeout_ms,
        )
        return store, True
    return target, False


async def dump(
    source: StoreTarget,
    sink: Any = None,
    *,
    config: Optional[StreamConfig] = None,
) -> DumpResult:
    """Dump a whole database to a byte sink.

    Args:
        source: DocumentStore or MongoDB connection string
        sink: StreamWriter or binary file object (default: stdout)
        config: Stream configuration

    Returns:
        DumpResult with counts and size

    Raises:
        StoreConnectionError, EnumerationError, WriteError
    """
    config = config or StreamConfig()
    if sink is None:
        sink = sys.stdout.buffer

    store, owned = await open_store(source, config.store)
    try:
        writer = DumpWriter(store, ByteSink(sink), config.dump)
        return await writer.run()
    finally:
        if owned:
            await store.close()


async def load(
    target: StoreTarget,
    source: Any = None,
    *,
    config: Optional[StreamConfig] = None,
) -> LoadResult:
    """Load a dump stream into a database.

    Args:
        target: DocumentStore or MongoDB connection string
        source: StreamReader or binary file object (default: stdin)
        config: Stream configuration

    Returns:
        LoadResult with counts

    Raises:
        StoreConnectionError, FramingError, VersionError,
        StreamClosedError, StoreWriteError
    """
    config = config or StreamConfig()
    if source is None:
        source = sys.stdin.buffer

    store, owned = await open_store(target, config.store)
    try:
        reader = LoadReader(store, config.load, source=ChunkSource(source))
        result = await reader.run()
        if result.buffer_overruns:
            logger.warning(
                "Input buffer grew during load; consider a larger LOAD_INITIAL_CAPACITY",
                extra={"overruns": result.buffer_overruns},
            )
        return result
    finally:
        if owned:
            await store.close()
