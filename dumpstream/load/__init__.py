"""
Load side of mongo-dump-stream.

This module rebuilds a database from a dump stream:
- ByteBuffer: staging buffer with read/write cursors
- LoadReader: flow-controlled record extraction
- ProtocolStateMachine: start -> collection <-> documents -> done
- WriteBatchQueue: byte-bounded bulk inserts

Invariants:
    - The whole dump is never held in memory
    - Records are applied strictly in stream order
"""

from .batch import WriteBatch, WriteBatchQueue
from .buffer import ByteBuffer
from .protocol import LoadContext, LoadResult, LoadState, ProtocolStateMachine
from .reader import LoadReader

__all__ = [
    "ByteBuffer",
    "LoadContext",
    "LoadReader",
    "LoadResult",
    "LoadState",
    "ProtocolStateMachine",
    "WriteBatch",
    "WriteBatchQueue",
]
