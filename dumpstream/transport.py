"""
Byte transports for dump output and load input.

ByteSink and ChunkSource adapt either asyncio streams or ordinary binary
file objects (sys.stdout.buffer, sys.stdin.buffer, open(..., "rb")) to the
coroutine interface the writer and reader use. Blocking file reads run in a
worker thread so the event loop keeps delivering other work.

Flow control:
    ChunkSource.pause_reading() stops the reader's pump before its next read;
    resume_reading() lets it continue. This mirrors asyncio transport flow
    control for sources that have none of their own.

    File reads run in the default executor and cannot be cancelled once
    issued. LoadReader only asks for a chunk when it needs more input, so a
    pipe left open after the dump is not read again.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any

from .errors import WriteError


class ByteSink:
    """Destination for a dump stream.

    Attributes:
        bytes_written: Total bytes accepted so far
    """

    def __init__(self, target: Any) -> None:
        """Wrap a StreamWriter or a binary file object."""
        self._target = target
        self._is_stream = hasattr(target, "drain")
        self.bytes_written = 0

    async def write(self, data: bytes) -> None:
        """Write bytes, waiting for the transport to drain if needed.

        Raises:
            WriteError: If the destination rejects the write
        """
        try:
            if self._is_stream:
                self._target.write(data)
                await self._target.drain()
            else:
                self._target.write(data)
        except (OSError, ValueError) as e:
            raise WriteError(f"Failed to write dump output: {e}") from e
        self.bytes_written += len(data)

    async def flush(self) -> None:
        try:
            if self._is_stream:
                await self._target.drain()
            elif hasattr(self._target, "flush"):
                self._target.flush()
        except (OSError, ValueError) as e:
            raise WriteError(f"Failed to flush dump output: {e}") from e


class ChunkSource:
    """Source of a load stream with pause/resume flow control."""

    def __init__(self, source: Any) -> None:
        """Wrap a StreamReader or a binary file object."""
        self._source = source
        self._is_stream = inspect.iscoroutinefunction(getattr(source, "read", None))
        self._resumed = asyncio.Event()
        self._resumed.set()
        self.pauses = 0

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    def pause_reading(self) -> None:
        if not self.paused:
            self.pauses += 1
            self._resumed.clear()

    def resume_reading(self) -> None:
        self._resumed.set()

    async def wait_resumed(self) -> None:
        await self._resumed.wait()

    async def read(self, size: int) -> bytes:
        """Read up to size bytes; b"" at end of input."""
        if self._is_stream:
            return await self._source.read(size)
        read = getattr(self._source, "read1", self._source.read)
        return await asyncio.get_running_loop().run_in_executor(None, read, size)
