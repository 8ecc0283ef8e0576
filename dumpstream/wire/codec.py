"""
Framing codec for the mongo-dump-stream wire format.

A dump is a sequence of BSON records. Every record starts with a 4-byte
little-endian int32 holding the full record length (prefix included) and
ends with a zero byte, so a reader can find each boundary from the prefix
alone.

Stream layout:
    envelope
    ( collection-meta  document*  end-of-collection )*
    end-of-database

Protocol versions:
    "1": every unit is a tagged record, documents are wrapped as
         {"type": "document", "document": <doc>}
    "2": documents are written as the store's raw BSON bytes; a collection
         ends with {"type": "endCollection", "sentinel": <token>} where the
         token is declared once in the envelope

Invariants:
    - Structured records are plain BSON, byte-compatible with the store
    - Document bytes from the store are never re-encoded
    - The v2 end-of-collection marker is shorter than the scan limit
      derived from its sentinel (scan_limit_for)

How to change safely:
    - New protocol versions get a new version string; old ones stay loadable
    - Never change the layout of an existing version
"""

from __future__ import annotations

import secrets
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import bson
from bson.codec_options import CodecOptions
from bson.errors import BSONError
from bson.raw_bson import RawBSONDocument
from bson.son import SON

from ..errors import FramingError, VersionError

DUMP_TYPE = "mongo-dump-stream"

PROTOCOL_V1 = "1"
PROTOCOL_V2 = "2"
SUPPORTED_VERSIONS = (PROTOCOL_V1, PROTOCOL_V2)

LENGTH_PREFIX_SIZE = 4
MIN_RECORD_SIZE = 5  # empty BSON document: prefix + terminator

SENTINEL_SIZE = 16
# Records at or above this size are never scanned for the sentinel. The v2
# end-of-collection marker is exactly 60 bytes.
SENTINEL_SCAN_LIMIT = 64

PRIMARY_INDEX_NAME = "_id_"
INTERNAL_PREFIX = "system."

_LENGTH = struct.Struct("<i")
_RAW_OPTIONS = CodecOptions(document_class=RawBSONDocument)


class RecordType(str, Enum):
    """Values of the "type" tag on structured records."""

    COLLECTION = "collection"
    DOCUMENT = "document"
    END_COLLECTION = "endCollection"
    END_DATABASE = "endDatabase"


@dataclass(frozen=True)
class IndexSpec:
    """Full description of one index.

    Attributes:
        name: Index name
        key: Ordered (field, direction) pairs
        options: Everything else the store reported (unique, sparse, ...)
    """

    name: str
    key: List[Tuple[str, Any]]
    options: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_primary(self) -> bool:
        """Whether this is the implicit primary-key index."""
        return self.name == PRIMARY_INDEX_NAME

    def to_document(self) -> SON:
        doc = SON([("name", self.name), ("key", SON(self.key))])
        for k, v in self.options.items():
            if k not in ("name", "key", "ns"):
                doc[k] = v
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> IndexSpec:
        """Build from full index information as reported by the store.

        Raises:
            FramingError: If the name or key is missing
        """
        try:
            name = doc["name"]
            key = list(doc["key"].items())
        except (KeyError, AttributeError, TypeError) as e:
            raise FramingError(f"Malformed index specification: {e}") from e
        options = {k: v for k, v in doc.items() if k not in ("ns", "key")}
        return cls(name=name, key=key, options=options)


@dataclass(frozen=True)
class CollectionMeta:
    """Collection name and its indexes, written before its documents."""

    name: str
    indexes: List[IndexSpec] = field(default_factory=list)


@dataclass(frozen=True)
class DumpEnvelope:
    """First record of every dump.

    Attributes:
        version: Protocol version string
        sentinel: End-of-collection token (v2 only)
    """

    version: str
    sentinel: Optional[bytes] = None

    @property
    def type(self) -> str:
        return DUMP_TYPE


def generate_sentinel() -> bytes:
    """Random per-dump end-of-collection token."""
    return secrets.token_bytes(SENTINEL_SIZE)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode_envelope(envelope: DumpEnvelope) -> bytes:
    doc = SON([("type", DUMP_TYPE), ("version", envelope.version)])
    if envelope.sentinel is not None:
        doc["sentinel"] = envelope.sentinel
    return bson.encode(doc)


def encode_collection_meta(meta: CollectionMeta) -> bytes:
    return bson.encode(
        SON(
            [
                ("type", RecordType.COLLECTION.value),
                ("name", meta.name),
                ("indexes", [index.to_document() for index in meta.indexes]),
            ]
        )
    )


def encode_tagged_document(raw: bytes) -> bytes:
    """Wrap raw document bytes in a v1 document record.

    The raw bytes are embedded as-is, not decoded and re-encoded.
    """
    return bson.encode(
        SON(
            [
                ("type", RecordType.DOCUMENT.value),
                ("document", RawBSONDocument(raw)),
            ]
        )
    )


def encode_end_collection(version: str, sentinel: Optional[bytes] = None) -> bytes:
    doc = SON([("type", RecordType.END_COLLECTION.value)])
    if version == PROTOCOL_V2:
        if sentinel is None:
            raise ValueError("Protocol version 2 requires a sentinel")
        doc["sentinel"] = sentinel
    return bson.encode(doc)


def encode_end_database() -> bytes:
    return bson.encode({"type": RecordType.END_DATABASE.value})


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def read_length(prefix: bytes | bytearray | memoryview, max_size: int) -> int:
    """Read and validate a record length prefix.

    Args:
        prefix: At least LENGTH_PREFIX_SIZE bytes starting at a record boundary
        max_size: Largest acceptable record

    Returns:
        Total record length in bytes, prefix included

    Raises:
        FramingError: If the length is below MIN_RECORD_SIZE or above max_size
    """
    if len(prefix) < LENGTH_PREFIX_SIZE:
        raise FramingError("Truncated length prefix")
    (length,) = _LENGTH.unpack_from(prefix, 0)
    if length < MIN_RECORD_SIZE:
        raise FramingError(f"Invalid record length {length}")
    if length > max_size:
        raise FramingError(f"Record length {length} exceeds maximum {max_size}")
    return length


def check_terminator(record: bytes) -> None:
    """Raise FramingError unless the record ends with a zero byte."""
    if not record or record[-1] != 0:
        raise FramingError("Record is missing its zero terminator")


def decode_record(record: bytes) -> Dict[str, Any]:
    """Fully decode a structured record.

    Raises:
        FramingError: If the bytes are not a valid BSON document
    """
    try:
        return bson.decode(record)
    except (BSONError, ValueError) as e:
        raise FramingError(f"Undecodable record: {e}") from e


def decode_raw(record: bytes) -> RawBSONDocument:
    """Decode only the outer level, leaving embedded documents raw."""
    try:
        doc = bson.decode(record, codec_options=_RAW_OPTIONS)
        # RawBSONDocument parses lazily; touch the keys to validate now
        len(doc)
        return doc
    except (BSONError, ValueError) as e:
        raise FramingError(f"Undecodable record: {e}") from e


def record_type(doc: Any) -> Optional[str]:
    try:
        value = doc.get("type")
    except AttributeError:
        return None
    return value if isinstance(value, str) else None


def parse_envelope(doc: Dict[str, Any]) -> DumpEnvelope:
    """Validate the first record of a dump.

    Raises:
        FramingError: If the record is not a mongo-dump-stream envelope
        VersionError: If the version is unknown or newer than this reader
    """
    if doc.get("type") != DUMP_TYPE:
        raise FramingError(f"type property is not {DUMP_TYPE}", state="start")

    version = doc.get("version")
    if version not in SUPPORTED_VERSIONS:
        raise VersionError(
            f"Incoming {DUMP_TYPE} has unsupported version {version!r}",
            version=version,
        )

    sentinel = doc.get("sentinel")
    if version == PROTOCOL_V2:
        if not isinstance(sentinel, bytes) or len(sentinel) < 8:
            raise FramingError("Version 2 envelope lacks a usable sentinel", state="start")
    return DumpEnvelope(version=version, sentinel=sentinel)


def parse_collection_meta(doc: Dict[str, Any]) -> CollectionMeta:
    name = doc.get("name")
    if not isinstance(name, str) or not name:
        raise FramingError("Collection record has no name", state="collection")
    indexes = doc.get("indexes") or []
    if not isinstance(indexes, list):
        raise FramingError("Collection indexes must be an array", state="collection")
    return CollectionMeta(
        name=name,
        indexes=[IndexSpec.from_document(index) for index in indexes],
    )


def scan_limit_for(sentinel: bytes) -> int:
    """Record size at and above which no record is scanned for this sentinel.

    SENTINEL_SCAN_LIMIT for the 16-byte sentinels this package writes; larger
    for longer sentinels so their end marker still falls under the limit.
    """
    return max(SENTINEL_SCAN_LIMIT, len(encode_end_collection(PROTOCOL_V2, sentinel)) + 1)


def is_end_collection(
    record: bytes,
    sentinel: bytes,
    scan_limit: int = SENTINEL_SCAN_LIMIT,
) -> bool:
    """Check whether a v2 record is the end-of-collection marker.

    Only records shorter than scan_limit are scanned. A byte match is
    confirmed by decoding the record.
    """
    if len(record) >= scan_limit or sentinel not in record:
        return False
    try:
        doc = bson.decode(record)
    except (BSONError, ValueError):
        return False
    return (
        doc.get("type") == RecordType.END_COLLECTION.value
        and doc.get("sentinel") == sentinel
    )
