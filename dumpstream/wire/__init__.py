"""
Wire format for mongo-dump-stream.

This module defines the byte layout shared by the dump writer and the load
reader: length-prefixed BSON records, the envelope, collection metadata and
the per-version end markers.
"""

from .codec import (
    DUMP_TYPE,
    INTERNAL_PREFIX,
    PRIMARY_INDEX_NAME,
    PROTOCOL_V1,
    PROTOCOL_V2,
    SENTINEL_SCAN_LIMIT,
    SUPPORTED_VERSIONS,
    CollectionMeta,
    DumpEnvelope,
    IndexSpec,
    RecordType,
    scan_limit_for,
)

__all__ = [
    "DUMP_TYPE",
    "INTERNAL_PREFIX",
    "PRIMARY_INDEX_NAME",
    "PROTOCOL_V1",
    "PROTOCOL_V2",
    "SENTINEL_SCAN_LIMIT",
    "SUPPORTED_VERSIONS",
    "CollectionMeta",
    "DumpEnvelope",
    "IndexSpec",
    "RecordType",
    "scan_limit_for",
]
