"""
Protocol state machine for loading a dump.

States:
    start -> collection <-> documents -> done

    start:       expects the envelope; selects the protocol descriptor
    collection:  expects collection metadata or end-of-database
    documents:   expects documents until the end-of-collection marker

The protocol version is resolved once, from the envelope, into a
ProtocolV1 or ProtocolV2 descriptor that handles document records. All
mutable state for one load lives in a LoadContext.

Invariants:
    - Nothing in the target store is touched before the envelope is accepted
    - The primary-key index is never created explicitly
    - A collection's pending batch is stored before the next collection starts
    - Any error aborts the load; committed collections are not rolled back
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from ..config import LoadConfig
from ..errors import DumpStreamError, FramingError, StoreWriteError
from ..store.base import CollectionHandle, DocumentStore, is_internal_name
from ..wire.codec import (
    PROTOCOL_V1,
    PROTOCOL_V2,
    SENTINEL_SCAN_LIMIT,
    DumpEnvelope,
    RecordType,
    decode_raw,
    decode_record,
    is_end_collection,
    parse_collection_meta,
    parse_envelope,
    record_type,
    scan_limit_for,
)
from .batch import WriteBatchQueue

logger = logging.getLogger(__name__)


class LoadState(str, Enum):
    START = "start"
    COLLECTION = "collection"
    DOCUMENTS = "documents"
    DONE = "done"


@dataclass
class LoadResult:
    """Result of a load operation.

    Attributes:
        protocol_version: Version declared by the envelope
        collections: Collections fully loaded
        documents: Documents inserted
        records: Records read from the wire
        bytes_read: Bytes consumed from the wire
        bulk_inserts: insert_many calls issued
        buffer_overruns: Times the input buffer had to grow
        duration_ms: Total load duration
    """

    protocol_version: Optional[str] = None
    collections: int = 0
    documents: int = 0
    records: int = 0
    bytes_read: int = 0
    bulk_inserts: int = 0
    buffer_overruns: int = 0
    duration_ms: int = 0


@dataclass
class LoadContext:
    """Per-load state shared by every state handler."""

    store: DocumentStore
    config: LoadConfig
    state: LoadState = LoadState.START
    envelope: Optional[DumpEnvelope] = None
    protocol: Optional[ProtocolDescriptor] = None
    collection: Optional[CollectionHandle] = None
    batch: Optional[WriteBatchQueue] = None
    collection_documents: int = 0
    scan_limit: int = SENTINEL_SCAN_LIMIT
    result: LoadResult = field(default_factory=LoadResult)


T = TypeVar("T")


async def store_call(call: Awaitable[T], message: str, collection: Optional[str] = None) -> T:
    """Await a store operation, translating foreign errors into StoreWriteError."""
    try:
        return await call
    except DumpStreamError:
        raise
    except Exception as e:
        raise StoreWriteError(f"{message}: {e}", collection=collection) from e


class ProtocolDescriptor(ABC):
    """Version-specific handling of records in the documents state."""

    version: str

    @abstractmethod
    async def on_document_record(self, ctx: LoadContext, record: bytes) -> bool:
        """Handle one record of the active collection.

        Returns:
            True when the record ended the collection
        """


class ProtocolV1(ProtocolDescriptor):
    """Every record is tagged; documents are inserted one at a time."""

    version = PROTOCOL_V1

    async def on_document_record(self, ctx: LoadContext, record: bytes) -> bool:
        doc = decode_raw(record)
        kind = record_type(doc)
        if kind == RecordType.END_COLLECTION.value:
            return True
        if kind != RecordType.DOCUMENT.value:
            raise FramingError("Document expected", state=LoadState.DOCUMENTS.value)

        document = doc.get("document")
        raw = getattr(document, "raw", None)
        if raw is None:
            raise FramingError("Document record has no embedded document", state=LoadState.DOCUMENTS.value)
        await store_call(
            ctx.collection.insert_many([raw]),
            f"Insert into {ctx.collection.name} failed",
            ctx.collection.name,
        )
        ctx.collection_documents += 1
        ctx.result.bulk_inserts += 1
        return False


class ProtocolV2(ProtocolDescriptor):
    """Documents are raw; the collection ends at the sentinel record."""

    version = PROTOCOL_V2

    async def on_document_record(self, ctx: LoadContext, record: bytes) -> bool:
        if is_end_collection(record, ctx.envelope.sentinel, ctx.scan_limit):
            return True
        await ctx.batch.flush_if_needed(len(record))
        ctx.batch.enqueue(record)
        return False


PROTOCOLS: Dict[str, ProtocolDescriptor] = {
    PROTOCOL_V1: ProtocolV1(),
    PROTOCOL_V2: ProtocolV2(),
}


class ProtocolStateMachine:
    """Routes each record to the handler for the current state.

    Example:
        >>> machine = ProtocolStateMachine(LoadContext(store, config))
        >>> await machine.handle(record)
        >>> machine.state
        <LoadState.COLLECTION: 'collection'>
    """

    def __init__(self, ctx: LoadContext) -> None:
        self.ctx = ctx
        self._handlers: Dict[LoadState, Callable[[bytes], Awaitable[None]]] = {
            LoadState.START: self._on_start,
            LoadState.COLLECTION: self._on_collection,
            LoadState.DOCUMENTS: self._on_documents,
        }

    @property
    def state(self) -> LoadState:
        return self.ctx.state

    @property
    def done(self) -> bool:
        return self.ctx.state is LoadState.DONE

    async def handle(self, record: bytes) -> None:
        handler = self._handlers.get(self.ctx.state)
        if handler is None:
            raise FramingError("Record after end of database", state=self.ctx.state.value)
        await handler(record)

    def abort(self) -> None:
        """Discard pending writes after a fatal error."""
        if self.ctx.batch is not None:
            self.ctx.batch.abort()

    async def _on_start(self, record: bytes) -> None:
        envelope = parse_envelope(decode_record(record))
        self.ctx.envelope = envelope
        self.ctx.protocol = PROTOCOLS[envelope.version]
        self.ctx.result.protocol_version = envelope.version
        if envelope.sentinel is not None:
            self.ctx.scan_limit = scan_limit_for(envelope.sentinel)
        logger.info("Loading dump", extra={"protocol_version": envelope.version})

        if self.ctx.config.drop_existing:
            await self._drop_existing()
        self.ctx.state = LoadState.COLLECTION

    async def _drop_existing(self) -> None:
        existing = await store_call(
            self.ctx.store.list_collections(), "Failed to list existing collections"
        )
        for coll in existing:
            if is_internal_name(coll.name):
                continue
            logger.debug("Dropping existing collection", extra={"collection": coll.name})
            await store_call(coll.drop(), f"Failed to drop {coll.name}", coll.name)

    async def _on_collection(self, record: bytes) -> None:
        doc = decode_record(record)
        kind = record_type(doc)
        if kind == RecordType.END_DATABASE.value:
            self.ctx.state = LoadState.DONE
            return
        if kind != RecordType.COLLECTION.value:
            raise FramingError("collection expected", state=LoadState.COLLECTION.value)

        meta = parse_collection_meta(doc)
        collection = await store_call(
            self.ctx.store.create_collection(meta.name),
            f"Failed to create collection {meta.name}",
            meta.name,
        )
        for index in meta.indexes:
            if index.is_primary:
                continue
            await store_call(
                collection.ensure_index(index.key, index.options),
                f"Failed to create index {index.name} on {meta.name}",
                meta.name,
            )

        self.ctx.collection = collection
        self.ctx.batch = WriteBatchQueue(collection, self.ctx.config.batch_bytes)
        self.ctx.state = LoadState.DOCUMENTS
        logger.debug(
            "Loading collection",
            extra={"collection": meta.name, "indexes": len(meta.indexes)},
        )

    async def _on_documents(self, record: bytes) -> None:
        ended = await self.ctx.protocol.on_document_record(self.ctx, record)
        if not ended:
            return

        batch = self.ctx.batch
        await batch.drain()
        loaded = self.ctx.collection_documents + batch.documents
        self.ctx.result.documents += loaded
        self.ctx.result.bulk_inserts += batch.flushes
        self.ctx.result.collections += 1
        logger.info(
            "Loaded collection",
            extra={"collection": self.ctx.collection.name, "documents": loaded},
        )
        self.ctx.collection = None
        self.ctx.batch = None
        self.ctx.collection_documents = 0
        self.ctx.state = LoadState.COLLECTION
