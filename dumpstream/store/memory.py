"""
In-memory document store for testing.

This module provides a simple in-memory DocumentStore for:
- Unit tests
- Round-trip integration tests
- Local development without a running MongoDB

Invariants:
    - All data is lost on process exit
    - Documents are kept as raw BSON bytes, exactly as inserted
    - Every collection carries the implicit primary index "_id_"

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the DocumentStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import bson

from ..errors import EnumerationError, StoreWriteError
from ..wire.codec import PRIMARY_INDEX_NAME, IndexSpec
from .base import is_internal_name

logger = logging.getLogger(__name__)


def _primary_index() -> IndexSpec:
    return IndexSpec(
        name=PRIMARY_INDEX_NAME,
        key=[("_id", 1)],
        options={"v": 2, "name": PRIMARY_INDEX_NAME},
    )


class InMemoryCollection:
    """In-memory implementation of CollectionHandle.

    Attributes:
        name: Collection name
        insert_calls: Document count of every insert_many call, in order
        insert_bytes: Byte total of every insert_many call, in order
    """

    def __init__(self, store: InMemoryDocumentStore, name: str) -> None:
        self._store = store
        self._name = name
        self._documents: List[bytes] = []
        self._ids: set = set()
        self._indexes: Dict[str, IndexSpec] = {PRIMARY_INDEX_NAME: _primary_index()}
        self.insert_calls: List[int] = []
        self.insert_bytes: List[int] = []

    @property
    def name(self) -> str:
        return self._name

    async def index_information(self) -> List[IndexSpec]:
        if self._store.fail_enumeration:
            raise EnumerationError(f"Cannot list indexes of {self._name}")
        return list(self._indexes.values())

    async def cursor(self) -> AsyncIterator[bytes]:
        if self._store.fail_enumeration:
            raise EnumerationError(f"Cannot iterate {self._name}")
        for raw in list(self._documents):
            await asyncio.sleep(0)
            yield raw

    async def ensure_index(self, key: Sequence[Tuple[str, Any]], options: Dict[str, Any]) -> None:
        if self._store.fail_writes:
            raise StoreWriteError("Index creation failed", collection=self._name)
        key = list(key)
        name = options.get("name") or "_".join(f"{field}_{direction}" for field, direction in key)
        if name in self._indexes:
            return
        self._indexes[name] = IndexSpec(name=name, key=key, options={**options, "name": name})

    async def insert_many(self, records: Sequence[bytes]) -> None:
        if not records:
            raise StoreWriteError("insert_many requires at least one document", collection=self._name)
        if self._store.fail_writes:
            raise StoreWriteError("Bulk insert failed", collection=self._name)
        self.insert_calls.append(len(records))
        self.insert_bytes.append(sum(len(raw) for raw in records))
        for raw in records:
            doc_id = bson.decode(raw).get("_id")
            key = bson.encode({"_id": doc_id})
            if doc_id is not None and key in self._ids:
                raise StoreWriteError(f"Duplicate key {doc_id!r}", collection=self._name)
            self._ids.add(key)
            self._documents.append(bytes(raw))

    async def drop(self) -> None:
        self._store._collections.pop(self._name, None)

    # ---------------------------------------------------------------------------
    # Testing helpers
    # ---------------------------------------------------------------------------

    def documents(self) -> List[Dict[str, Any]]:
        """Decoded copies of all documents."""
        return [bson.decode(raw) for raw in self._documents]

    def raw_documents(self) -> List[bytes]:
        return list(self._documents)

    def index_names(self) -> List[str]:
        return list(self._indexes)


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore for testing.

    Attributes:
        fail_enumeration: Make listing and iteration raise EnumerationError
        fail_writes: Make index creation and inserts raise StoreWriteError
        expose_internal: Include "system." collections in list_collections()

    Example:
        >>> store = InMemoryDocumentStore()
        >>> users = await store.create_collection("users")
        >>> await users.insert_many([bson.encode({"_id": 1})])
    """

    def __init__(self) -> None:
        self._collections: Dict[str, InMemoryCollection] = {}
        self.fail_enumeration = False
        self.fail_writes = False
        self.expose_internal = False
        self.closed = False

    async def list_collections(self) -> List[InMemoryCollection]:
        if self.fail_enumeration:
            raise EnumerationError("Cannot list collections")
        return [
            coll
            for name, coll in self._collections.items()
            if self.expose_internal or not is_internal_name(name)
        ]

    async def create_collection(self, name: str) -> InMemoryCollection:
        if self.fail_writes:
            raise StoreWriteError("Collection creation failed", collection=name)
        coll = self._collections.get(name)
        if coll is None:
            coll = InMemoryCollection(self, name)
            self._collections[name] = coll
            logger.debug("Created in-memory collection", extra={"collection": name})
        return coll

    async def close(self) -> None:
        self.closed = True

    # ---------------------------------------------------------------------------
    # Testing helpers
    # ---------------------------------------------------------------------------

    def get(self, name: str) -> Optional[InMemoryCollection]:
        return self._collections.get(name)

    def collection_names(self) -> List[str]:
        return list(self._collections)

    async def seed(
        self,
        name: str,
        documents: Sequence[Dict[str, Any]] = (),
        indexes: Sequence[Tuple[List[Tuple[str, Any]], Dict[str, Any]]] = (),
    ) -> InMemoryCollection:
        """Create a collection with documents and secondary indexes."""
        coll = await self.create_collection(name)
        for key, options in indexes:
            await coll.ensure_index(key, options)
        if documents:
            await coll.insert_many([bson.encode(doc) for doc in documents])
        coll.insert_calls.clear()
        coll.insert_bytes.clear()
        return coll
