"""
Error types for mongo-dump-stream.

Every dump or load operation fails with exactly one of these:
- StoreConnectionError: Store unreachable
- EnumerationError: Listing collections, indexes or documents failed
- WriteError: Dump sink rejected bytes
- FramingError: Malformed record on the wire
- VersionError: Envelope declares an unsupported protocol version
- StreamClosedError: Input ended before a record was complete
- StoreWriteError: Index creation or bulk insert failed during load

Invariants:
    - All errors inherit from DumpStreamError
    - Errors are never retried automatically; callers re-run the operation
    - Already-committed collections are not rolled back on failure
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DumpStreamError(Exception):
    """Base exception for all dump/load errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    code = "DUMP_STREAM_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StoreConnectionError(DumpStreamError):
    """Could not reach the document store."""

    code = "CONNECTION_ERROR"


class EnumerationError(DumpStreamError):
    """Listing collections, indexes or documents failed."""

    code = "ENUMERATION_ERROR"


class WriteError(DumpStreamError):
    """The dump sink rejected a write."""

    code = "WRITE_ERROR"


class FramingError(DumpStreamError):
    """A record on the wire violates the framing rules.

    Raised when:
    - The length prefix is unreadable or out of range
    - The terminating zero byte is missing
    - The record type is not valid for the current parser state
    """

    code = "FRAMING_ERROR"

    def __init__(
        self,
        message: str,
        state: Optional[str] = None,
        offset: Optional[int] = None,
    ) -> None:
        super().__init__(message, details={"state": state, "offset": offset})
        self.state = state
        self.offset = offset


class BufferCapacityError(FramingError):
    """Input buffer would grow past its configured hard cap."""

    code = "BUFFER_CAPACITY_ERROR"


class VersionError(DumpStreamError):
    """The envelope declares a protocol version this reader cannot load."""

    code = "VERSION_ERROR"

    def __init__(self, message: str, version: Any = None) -> None:
        super().__init__(message, details={"version": version})
        self.version = version


class StreamClosedError(DumpStreamError):
    """The input closed before the bytes a record needs arrived."""

    code = "STREAM_CLOSED"

    def __init__(self, message: str, needed: int = 0, available: int = 0) -> None:
        super().__init__(message, details={"needed": needed, "available": available})
        self.needed = needed
        self.available = available


class StoreWriteError(DumpStreamError):
    """Index creation or bulk insert failed while loading."""

    code = "STORE_WRITE_ERROR"

    def __init__(self, message: str, collection: Optional[str] = None) -> None:
        super().__init__(message, details={"collection": collection})
        self.collection = collection
