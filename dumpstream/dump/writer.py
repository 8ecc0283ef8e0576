"""
Dump writer: walks a document store and emits one self-terminating stream.

Traversal order:
    1. Envelope (type, version, sentinel)
    2. For each collection in store order, skipping "system." names:
       collection metadata, every document, end-of-collection
    3. End-of-database

Invariants:
    - Document bytes from the store are written unchanged (v2) or embedded
      unchanged in a tagged record (v1); they are never re-encoded
    - The first failure stops the dump; nothing is written after it
    - Cursor order is whatever the store returns and may differ between runs
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..config import DumpConfig
from ..errors import DumpStreamError, EnumerationError
from ..store.base import CollectionHandle, DocumentStore, is_internal_name
from ..transport import ByteSink
from ..wire.codec import (
    PROTOCOL_V2,
    SUPPORTED_VERSIONS,
    CollectionMeta,
    DumpEnvelope,
    encode_collection_meta,
    encode_end_collection,
    encode_end_database,
    encode_envelope,
    encode_tagged_document,
    generate_sentinel,
)

logger = logging.getLogger(__name__)


@dataclass
class DumpResult:
    """Result of a dump operation.

    Attributes:
        protocol_version: Version written in the envelope
        collections: Collections dumped
        documents: Documents dumped
        bytes_written: Total stream size
        duration_ms: Total dump duration
    """

    protocol_version: str
    collections: int = 0
    documents: int = 0
    bytes_written: int = 0
    duration_ms: int = 0


class DumpWriter:
    """Writes a complete dump of one store to a sink.

    Example:
        >>> writer = DumpWriter(store, ByteSink(sys.stdout.buffer))
        >>> result = await writer.run()
        >>> print(f"Dumped {result.documents} documents")
    """

    def __init__(
        self,
        store: DocumentStore,
        sink: ByteSink,
        config: Optional[DumpConfig] = None,
    ) -> None:
        """Initialize the writer.

        Args:
            store: Source document store
            sink: Destination for the stream
            config: Dump configuration (protocol version)
        """
        self.store = store
        self.sink = sink
        self.config = config or DumpConfig()
        if self.config.protocol_version not in SUPPORTED_VERSIONS:
            raise ValueError(f"Unsupported protocol version {self.config.protocol_version!r}")
        self.version = self.config.protocol_version
        self.sentinel = generate_sentinel() if self.version == PROTOCOL_V2 else None

    async def run(self) -> DumpResult:
        """Write the whole dump.

        Returns:
            DumpResult with counts and size

        Raises:
            EnumerationError: If collections, indexes or documents cannot be read
            WriteError: If the sink rejects a write
        """
        start_time = time.monotonic()
        result = DumpResult(protocol_version=self.version)

        await self.sink.write(encode_envelope(DumpEnvelope(self.version, self.sentinel)))

        for collection in await self._list_collections():
            if is_internal_name(collection.name):
                logger.debug("Skipping internal collection", extra={"collection": collection.name})
                continue
            result.documents += await self._dump_collection(collection)
            result.collections += 1

        await self.sink.write(encode_end_database())
        await self.sink.flush()

        result.bytes_written = self.sink.bytes_written
        result.duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "Dump complete",
            extra={
                "protocol_version": self.version,
                "collections": result.collections,
                "documents": result.documents,
                "bytes": result.bytes_written,
            },
        )
        return result

    async def _list_collections(self) -> list[CollectionHandle]:
        try:
            return await self.store.list_collections()
        except DumpStreamError:
            raise
        except Exception as e:
            raise EnumerationError(f"Failed to list collections: {e}") from e

    async def _dump_collection(self, collection: CollectionHandle) -> int:
        name = collection.name
        try:
            indexes = await collection.index_information()
        except DumpStreamError:
            raise
        except Exception as e:
            raise EnumerationError(f"Failed to list indexes of {name}: {e}") from e

        await self.sink.write(encode_collection_meta(CollectionMeta(name=name, indexes=indexes)))

        count = 0
        tagged = self.version != PROTOCOL_V2
        try:
            async for raw in collection.cursor():
                await self.sink.write(encode_tagged_document(raw) if tagged else raw)
                count += 1
        except DumpStreamError:
            raise
        except Exception as e:
            raise EnumerationError(f"Failed to iterate {name}: {e}") from e

        await self.sink.write(encode_end_collection(self.version, self.sentinel))
        logger.debug("Dumped collection", extra={"collection": name, "documents": count})
        return count
