"""
mongo-dump-stream - stream a whole MongoDB database into one byte stream and back.

This package implements a snapshot/restore engine built on:
- A length-prefixed BSON wire format with two protocol versions
- A dump writer that emits documents without re-encoding them
- A load reader with a growable buffer, watermark flow control and
  byte-bounded bulk inserts

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────┐
    │ Document    │────▶│ DumpWriter  │────▶│ byte stream │
    │ Store       │     └─────────────┘     └──────┬──────┘
    └─────────────┘                                │
           ▲                                       ▼
    ┌──────┴──────┐     ┌─────────────┐     ┌─────────────┐
    │ WriteBatch  │◀────│ State       │◀────│ LoadReader  │
    │ Queue       │     │ Machine     │     │ (buffer)    │
    └─────────────┘     └─────────────┘     └─────────────┘

Invariants:
    - Dumps are strictly ordered: metadata before documents, end markers last
    - Neither side holds a whole dump in memory
    - Every operation ends in one result or one DumpStreamError

How to change safely:
    - Wire format changes need a new protocol version
    - Keep older protocol versions loadable
"""

from ._version import __version__
from .errors import (
    BufferCapacityError,
    DumpStreamError,
    EnumerationError,
    FramingError,
    StoreConnectionError,
    StoreWriteError,
    StreamClosedError,
    VersionError,
    WriteError,
)
from .stream import dump, load

__all__ = [
    "__version__",
    "dump",
    "load",
    "DumpStreamError",
    "BufferCapacityError",
    "EnumerationError",
    "FramingError",
    "StoreConnectionError",
    "StoreWriteError",
    "StreamClosedError",
    "VersionError",
    "WriteError",
]
