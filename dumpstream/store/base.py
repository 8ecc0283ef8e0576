"""
Document store protocol used by the dump writer and load reader.

Backends:
    - InMemoryDocumentStore: tests and local development
    - MongoDocumentStore: MongoDB via pymongo's asyncio client

Invariants:
    - list_collections() never returns store-internal collections
    - cursor() yields each document as raw BSON bytes, never decoded
    - Backends raise the dumpstream error taxonomy, not driver exceptions

How to change safely:
    - Protocol changes require updating all implementations
    - Add new methods as optional with default implementations
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, AsyncIterator, Dict, List, Protocol, Sequence, Tuple, runtime_checkable

from ..wire.codec import INTERNAL_PREFIX, IndexSpec


def is_internal_name(name: str) -> bool:
    """Whether a collection name belongs to the store itself."""
    return name.startswith(INTERNAL_PREFIX)


@runtime_checkable
class CollectionHandle(Protocol):
    """One collection of a document store."""

    @property
    def name(self) -> str:
        ...

    @abstractmethod
    async def index_information(self) -> List[IndexSpec]:
        """Full index metadata, primary index included.

        Raises:
            EnumerationError: If the indexes cannot be listed
        """
        ...

    @abstractmethod
    def cursor(self) -> AsyncIterator[bytes]:
        """Iterate documents as raw BSON bytes in store cursor order.

        Raises:
            EnumerationError: If iteration fails
        """
        ...

    @abstractmethod
    async def ensure_index(self, key: Sequence[Tuple[str, Any]], options: Dict[str, Any]) -> None:
        """Create an index if it does not exist.

        Raises:
            StoreWriteError: If index creation fails
        """
        ...

    @abstractmethod
    async def insert_many(self, records: Sequence[bytes]) -> None:
        """Insert raw BSON documents in one bulk operation.

        Raises:
            StoreWriteError: If the insert fails
        """
        ...

    @abstractmethod
    async def drop(self) -> None:
        """Drop the collection and its indexes.

        Raises:
            StoreWriteError: If the drop fails
        """
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """A database: an ordered set of named collections."""

    @abstractmethod
    async def list_collections(self) -> List[CollectionHandle]:
        """Collections in store order, excluding internal names.

        Raises:
            EnumerationError: If listing fails
        """
        ...

    @abstractmethod
    async def create_collection(self, name: str) -> CollectionHandle:
        """Create (or recreate) a collection and return its handle.

        Raises:
            StoreWriteError: If creation fails
        """
        ...

    async def close(self) -> None:
        """Release connections held by the store."""
        ...
