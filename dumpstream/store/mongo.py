"""
MongoDB document store backed by pymongo's asyncio client.

Documents are read and written as RawBSONDocument so the bytes that come
off the wire go straight into the dump, and the bytes in a dump go straight
back to the server.

Invariants:
    - Only real collections are listed (views are skipped)
    - Collections with the "system." prefix are never listed
    - Driver exceptions are translated into the dumpstream error taxonomy
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from bson.codec_options import DEFAULT_CODEC_OPTIONS, CodecOptions
from bson.raw_bson import RawBSONDocument
from pymongo import AsyncMongoClient
from pymongo.errors import CollectionInvalid, ConfigurationError, PyMongoError

from ..errors import EnumerationError, StoreConnectionError, StoreWriteError
from ..wire.codec import IndexSpec
from .base import is_internal_name

logger = logging.getLogger(__name__)

RAW_CODEC_OPTIONS = CodecOptions(document_class=RawBSONDocument)

# Index fields the server reports but rejects or ignores on createIndexes
_SERVER_ONLY_INDEX_FIELDS = ("ns", "key", "v")


class MongoCollection:
    """CollectionHandle over a pymongo AsyncCollection."""

    def __init__(self, collection: Any) -> None:
        self._coll = collection.with_options(codec_options=RAW_CODEC_OPTIONS)

    @property
    def name(self) -> str:
        return self._coll.name

    async def index_information(self) -> List[IndexSpec]:
        plain = self._coll.with_options(codec_options=DEFAULT_CODEC_OPTIONS)
        try:
            cursor = await plain.list_indexes()
            return [IndexSpec.from_document(spec) async for spec in cursor]
        except PyMongoError as e:
            raise EnumerationError(
                f"Failed to list indexes of {self.name}: {e}",
                details={"collection": self.name},
            ) from e

    async def cursor(self) -> AsyncIterator[bytes]:
        try:
            async for doc in self._coll.find():
                yield doc.raw
        except PyMongoError as e:
            raise EnumerationError(
                f"Failed to iterate {self.name}: {e}",
                details={"collection": self.name},
            ) from e

    async def ensure_index(self, key: Sequence[Tuple[str, Any]], options: Dict[str, Any]) -> None:
        kwargs = {k: v for k, v in options.items() if k not in _SERVER_ONLY_INDEX_FIELDS}
        try:
            await self._coll.create_index(list(key), **kwargs)
        except PyMongoError as e:
            raise StoreWriteError(
                f"Failed to create index {options.get('name')} on {self.name}: {e}",
                collection=self.name,
            ) from e

    async def insert_many(self, records: Sequence[bytes]) -> None:
        try:
            await self._coll.insert_many(
                [RawBSONDocument(raw) for raw in records],
                ordered=True,
            )
        except PyMongoError as e:
            raise StoreWriteError(
                f"Bulk insert of {len(records)} documents into {self.name} failed: {e}",
                collection=self.name,
            ) from e

    async def drop(self) -> None:
        try:
            await self._coll.drop()
        except PyMongoError as e:
            raise StoreWriteError(f"Failed to drop {self.name}: {e}", collection=self.name) from e


class MongoDocumentStore:
    """DocumentStore over one MongoDB database.

    Example:
        >>> store = await MongoDocumentStore.connect("mongodb://localhost/app")
        >>> collections = await store.list_collections()
    """

    def __init__(self, database: Any, client: Any = None) -> None:
        """Wrap an existing AsyncDatabase.

        Args:
            database: pymongo AsyncDatabase
            client: Owning client, closed by close() when given
        """
        self._db = database
        self._client = client

    @classmethod
    async def connect(
        cls,
        uri: str,
        database: Optional[str] = None,
        server_selection_timeout_ms: int = 30_000,
    ) -> MongoDocumentStore:
        """Connect to MongoDB and verify the server is reachable.

        Args:
            uri: MongoDB connection string
            database: Database name; defaults to the one named in the URI
            server_selection_timeout_ms: How long to wait for a server

        Raises:
            StoreConnectionError: If the server cannot be reached
        """
        try:
            client = AsyncMongoClient(uri, serverSelectionTimeoutMS=server_selection_timeout_ms)
        except (PyMongoError, ValueError) as e:
            raise StoreConnectionError(f"Invalid MongoDB URI: {e}") from e

        try:
            db = client.get_database(database) if database else client.get_default_database()
        except ConfigurationError as e:
            await client.close()
            raise StoreConnectionError(
                "No database given and none named in the connection string"
            ) from e

        try:
            await client.admin.command("ping")
        except PyMongoError as e:
            await client.close()
            raise StoreConnectionError(f"Failed to connect to MongoDB: {e}") from e

        logger.info("Connected to MongoDB", extra={"database": db.name})
        return cls(db, client=client)

    async def list_collections(self) -> List[MongoCollection]:
        try:
            names = await self._db.list_collection_names(filter={"type": "collection"})
        except PyMongoError as e:
            raise EnumerationError(f"Failed to list collections: {e}") from e
        return [
            MongoCollection(self._db.get_collection(name))
            for name in names
            if not is_internal_name(name)
        ]

    async def create_collection(self, name: str) -> MongoCollection:
        try:
            coll = await self._db.create_collection(name)
        except CollectionInvalid:
            # Already exists
            coll = self._db.get_collection(name)
        except PyMongoError as e:
            raise StoreWriteError(f"Failed to create collection {name}: {e}", collection=name) from e
        return MongoCollection(coll)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
