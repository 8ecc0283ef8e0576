"""
Load reader: turns an incoming byte feed into records for the state machine.

The reader owns the ByteBuffer for one load. Data arrives through feed()
(called by the pump task that reads the source); a single parse pass pulls
length-prefixed records out of the buffer and hands them to the
ProtocolStateMachine, rescheduling itself after every record so event
delivery is not starved on large dumps.

Flow control:
    - Unread bytes >= high_water: the source is paused
    - Unread bytes < low_water after a record is consumed: the source resumes
    - A record larger than high_water resumes the source while the parser
      waits for the rest of it
    - With a source, the pump reads only while a parse pass waits for
      input, so nothing is read past end of database

Invariants:
    - ensure_bytes() is the only place the parse pass waits for input
    - At most one parse pass runs over the buffer at a time
    - The parser never reads past a record's declared length
    - The load finishes with exactly one result or one exception
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Optional

from ..config import LoadConfig
from ..errors import FramingError, StreamClosedError
from ..store.base import DocumentStore
from ..wire.codec import LENGTH_PREFIX_SIZE, check_terminator, read_length
from .buffer import ByteBuffer
from .protocol import LoadContext, LoadResult, ProtocolStateMachine

logger = logging.getLogger(__name__)


class LoadReader:
    """Reads one dump stream into a document store.

    Attributes:
        buffer: Staging buffer for unread input
        machine: Protocol state machine fed by the parse pass
        paused: Whether the source is currently paused

    Example:
        >>> reader = LoadReader(store, LoadConfig(), source=ChunkSource(stream))
        >>> result = await reader.run()
        >>> print(f"Loaded {result.documents} documents")
    """

    def __init__(
        self,
        store: DocumentStore,
        config: Optional[LoadConfig] = None,
        source: Any = None,
    ) -> None:
        """Initialize the reader.

        Args:
            store: Target document store
            config: Buffer, watermark and batch settings
            source: Flow-controlled input (ChunkSource). Without one, bytes
                must be delivered through feed() and feed_eof()
        """
        self.config = config or LoadConfig()
        self.config.validate()
        self.buffer = ByteBuffer(
            self.config.initial_capacity,
            self.config.compact_threshold,
            self.config.max_capacity,
        )
        self.machine = ProtocolStateMachine(LoadContext(store=store, config=self.config))
        self.paused = False

        self._source = source
        self._closed = False
        self._error: Optional[BaseException] = None
        self._waiter: Optional[asyncio.Future] = None
        self._demand: Optional[asyncio.Future] = None
        self._done: Optional[asyncio.Future] = None
        self._active = False
        self._pass: Optional[asyncio.Task] = None
        self._offset = 0
        self._started = time.monotonic()

    @property
    def result(self) -> LoadResult:
        return self.machine.ctx.result

    @property
    def active(self) -> bool:
        """Whether a parse pass is running."""
        return self._active

    @property
    def finished(self) -> bool:
        """Whether the load has completed or failed."""
        return self._done is not None and self._done.done()

    # ---------------------------------------------------------------------------
    # Data arrival
    # ---------------------------------------------------------------------------

    def feed(self, chunk: bytes) -> None:
        """Append newly arrived bytes and wake the parser."""
        if self._closed or not chunk:
            return
        try:
            grew = self.buffer.append(chunk)
        except FramingError as e:
            self.feed_error(e)
            return

        if grew:
            logger.warning(
                "Input buffer overrun, grew to fit incoming data",
                extra={
                    "capacity": self.buffer.capacity,
                    "unread": self.buffer.unread,
                    "overruns": self.buffer.overruns,
                },
            )
        if not self.paused and self.buffer.unread >= self.config.high_water:
            self._pause()

        self._wake()
        self._kick()

    def feed_eof(self) -> None:
        """Mark the input as closed."""
        self._closed = True
        self._wake()
        self._kick()

    def feed_error(self, exc: BaseException) -> None:
        """Fail the load with an input-side error."""
        self._closed = True
        if self._error is None:
            self._error = exc
        self._wake()
        self._kick()

    # ---------------------------------------------------------------------------
    # Parsing
    # ---------------------------------------------------------------------------

    async def ensure_bytes(self, n: int) -> None:
        """Wait until at least n unread bytes are buffered.

        Raises:
            StreamClosedError: If the input closes first
        """
        while self.buffer.unread < n:
            if self._error is not None:
                raise self._error
            if self._closed:
                raise StreamClosedError(
                    f"Input closed with {self.buffer.unread} of {n} needed bytes buffered",
                    needed=n,
                    available=self.buffer.unread,
                )
            if self.paused:
                # Record is larger than the high-water mark
                self._resume()
            self._waiter = asyncio.get_running_loop().create_future()
            self._signal_demand()
            try:
                await self._waiter
            finally:
                self._waiter = None

    async def next_record(self) -> bytes:
        """Extract the next complete record from the buffer.

        Raises:
            FramingError: If the prefix or terminator is invalid
            StreamClosedError: If the input ends mid-record
        """
        await self.ensure_bytes(LENGTH_PREFIX_SIZE)
        try:
            length = read_length(
                self.buffer.peek(LENGTH_PREFIX_SIZE), self.config.max_record_bytes
            )
        except FramingError as e:
            raise self._located(e)

        await self.ensure_bytes(length)
        record = self.buffer.consume(length)
        try:
            check_terminator(record)
        except FramingError as e:
            raise self._located(e)

        self._offset += length
        self.result.records += 1
        self.result.bytes_read += length
        if self.paused and self.buffer.unread < self.config.low_water:
            self._resume()
        return record

    def _located(self, e: FramingError) -> FramingError:
        e.offset = self._offset
        e.state = self.machine.state.value
        e.details.update(offset=e.offset, state=e.state)
        return e

    def _kick(self) -> None:
        """Start a parse pass unless one is already running."""
        if self._active or self._completion().done():
            return
        self._active = True
        self._pass = asyncio.create_task(self._parse_pass())

    async def _parse_pass(self) -> None:
        done = self._completion()
        try:
            while not self.machine.done:
                record = await self.next_record()
                await self.machine.handle(record)
                await asyncio.sleep(0)
        except Exception as e:
            self.machine.abort()
            if not done.done():
                done.set_exception(e)
        else:
            if self.buffer.unread:
                logger.warning(
                    "Ignoring trailing bytes after end of database",
                    extra={"bytes": self.buffer.unread},
                )
            if not done.done():
                done.set_result(self._finish())
        finally:
            self._active = False
            self._signal_demand()

    def _finish(self) -> LoadResult:
        result = self.result
        result.buffer_overruns = self.buffer.overruns
        result.duration_ms = int((time.monotonic() - self._started) * 1000)
        return result

    # ---------------------------------------------------------------------------
    # Completion
    # ---------------------------------------------------------------------------

    async def wait(self) -> LoadResult:
        """Wait for the load to finish.

        Returns:
            LoadResult of the completed load

        Raises:
            DumpStreamError: The first error that stopped the load
        """
        return await self._completion()

    async def run(self) -> LoadResult:
        """Pump the source until the load completes."""
        if self._source is None:
            raise ValueError("run() needs a source; use feed() and wait() instead")
        self._started = time.monotonic()
        pump = asyncio.create_task(self._pump())
        try:
            return await self.wait()
        finally:
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump

    async def _pump(self) -> None:
        """Read chunks from the source while the parse pass asks for input.

        A read is issued only when no parse pass is running or the running
        pass is waiting in ensure_bytes(), so no read is left pending once
        end of database has been parsed.
        """
        while not self._closed:
            await self._wait_for_demand()
            if self._completion().done():
                return
            await self._source.wait_resumed()
            try:
                chunk = await self._source.read(self.config.read_chunk_size)
            except OSError as e:
                self.feed_error(StreamClosedError(f"Input stream failed: {e}"))
                return
            if not chunk:
                self.feed_eof()
                return
            self.feed(chunk)

    async def _wait_for_demand(self) -> None:
        if not self._active or self._waiter is not None:
            return
        self._demand = asyncio.get_running_loop().create_future()
        try:
            await self._demand
        finally:
            self._demand = None

    def _signal_demand(self) -> None:
        demand = self._demand
        if demand is not None and not demand.done():
            demand.set_result(None)

    def _completion(self) -> asyncio.Future:
        if self._done is None:
            self._done = asyncio.get_running_loop().create_future()
        return self._done

    # ---------------------------------------------------------------------------
    # Flow control
    # ---------------------------------------------------------------------------

    def _pause(self) -> None:
        self.paused = True
        if self._source is not None:
            self._source.pause_reading()
        logger.debug("Paused input", extra={"unread": self.buffer.unread})

    def _resume(self) -> None:
        self.paused = False
        if self._source is not None:
            self._source.resume_reading()
        logger.debug("Resumed input", extra={"unread": self.buffer.unread})

    def _wake(self) -> None:
        waiter = self._waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(None)
