"""
Growable byte buffer with explicit read and write cursors.

The load reader appends incoming chunks at write_pos and consumes whole
records from read_pos. Consumed bytes are reclaimed by compaction, which
shifts the unread region back to offset 0.

Layout:
    0 ........ read_pos ........ write_pos ........ capacity
    [ consumed ][     unread      ][       free        ]

Invariants:
    - 0 <= read_pos <= write_pos <= capacity
    - Growth at least doubles capacity
    - Consumed records are copied out; no view into the storage escapes
"""

from __future__ import annotations

import logging

from ..errors import BufferCapacityError

logger = logging.getLogger(__name__)


class ByteBuffer:
    """Byte arena owned by a single load operation.

    Attributes:
        read_pos: Offset of the first unread byte
        write_pos: Offset one past the last buffered byte
        overruns: Number of times the buffer had to grow
    """

    def __init__(
        self,
        capacity: int,
        compact_threshold: int,
        max_capacity: int = 0,
    ) -> None:
        """Initialize the buffer.

        Args:
            capacity: Initial size of the backing storage
            compact_threshold: Consumed prefix size that triggers compaction
            max_capacity: Hard cap on growth (0 = unbounded)
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._data = bytearray(capacity)
        self.compact_threshold = compact_threshold
        self.max_capacity = max_capacity
        self.read_pos = 0
        self.write_pos = 0
        self.overruns = 0

    @property
    def capacity(self) -> int:
        return len(self._data)

    @property
    def unread(self) -> int:
        return self.write_pos - self.read_pos

    def append(self, chunk: bytes | bytearray | memoryview) -> bool:
        """Copy a chunk in after the unread region.

        Returns:
            True if the buffer had to grow to fit the chunk

        Raises:
            BufferCapacityError: If growing would exceed max_capacity
        """
        size = len(chunk)
        grew = False
        if self.write_pos + size > self.capacity:
            if self.unread + size <= self.capacity:
                self.compact()
            else:
                self._grow(self.unread + size)
                grew = True
        self._data[self.write_pos : self.write_pos + size] = chunk
        self.write_pos += size
        return grew

    def peek(self, size: int) -> bytes:
        """Copy of the next size unread bytes, without consuming them."""
        if size > self.unread:
            raise ValueError(f"peek({size}) with only {self.unread} bytes buffered")
        return bytes(self._data[self.read_pos : self.read_pos + size])

    def consume(self, size: int) -> bytes:
        """Remove and return the next size unread bytes."""
        if size > self.unread:
            raise ValueError(f"consume({size}) with only {self.unread} bytes buffered")
        with memoryview(self._data) as view:
            out = view[self.read_pos : self.read_pos + size].tobytes()
        self.read_pos += size

        if self.read_pos == self.write_pos:
            self.read_pos = self.write_pos = 0
        elif self.read_pos > self.compact_threshold:
            self.compact()
        return out

    def compact(self) -> None:
        """Shift the unread region to offset 0."""
        if self.read_pos == 0:
            return
        unread = self.unread
        self._data[0:unread] = self._data[self.read_pos : self.write_pos]
        self.read_pos = 0
        self.write_pos = unread

    def _grow(self, needed: int) -> None:
        new_capacity = max(self.capacity * 2, needed)
        if self.max_capacity:
            if needed > self.max_capacity:
                raise BufferCapacityError(
                    f"Input buffer needs {needed} bytes, cap is {self.max_capacity}"
                )
            new_capacity = min(new_capacity, self.max_capacity)

        data = bytearray(new_capacity)
        unread = self.unread
        data[0:unread] = self._data[self.read_pos : self.write_pos]
        self._data = data
        self.read_pos = 0
        self.write_pos = unread
        self.overruns += 1
        logger.debug("Grew input buffer", extra={"capacity": new_capacity})
