"""Standard input/output channel.

Stdin is read by a daemon thread that hands each slice to the event loop
through a small bounded queue: the thread blocks while the queue is full, so
a stalled relay stops consuming stdin instead of buffering it, and a pending
``read()`` on a terminal never keeps the process alive at exit.

Stdout is written by a second daemon thread, one flushed write per chunk,
so a pipe whose reader has stalled can be abandoned at close.  Chunk
boundaries are not preserved on output; chunks are concatenated into one
raw byte stream.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import queue
import sys
import threading
from typing import Any, BinaryIO

from pipebridge.channels.errors import (
    ChannelClosedError,
    ChannelConnectionError,
    ChannelIOError,
)
from pipebridge.models.channels import (
    BoundaryTag,
    ChannelDescriptor,
    ChannelKind,
    ChannelState,
)
from pipebridge.models.chunks import Chunk

logger = logging.getLogger(__name__)


def _binary_stream(stream: Any) -> BinaryIO | None:
    """Return the byte-level stream behind a text stream (``sys.stdin.buffer``)."""
    if stream is None:
        return None
    return getattr(stream, "buffer", stream)


class _StdinReader(threading.Thread):
    """Pumps stdin slices into an asyncio queue owned by the event loop."""

    def __init__(
        self,
        stream: BinaryIO,
        queue: asyncio.Queue,
        loop: asyncio.AbstractEventLoop,
        *,
        read_size: int,
        line_mode: bool,
    ) -> None:
        super().__init__(name="pipebridge-stdin", daemon=True)
        self._stream = stream
        self._queue = queue
        self._loop = loop
        self._read_size = read_size
        self._line_mode = line_mode

    def run(self) -> None:
        while True:
            try:
                data = self._read_once()
            except (OSError, ValueError) as exc:
                self._hand_off(exc)
                return
            if not self._hand_off(data) or not data:
                return

    def _read_once(self) -> bytes:
        if self._line_mode:
            return self._stream.readline()
        read1 = getattr(self._stream, "read1", None)
        if read1 is not None:
            return read1(self._read_size)
        return self._stream.read(self._read_size)

    def _hand_off(self, item: bytes | BaseException) -> bool:
        """Block until the loop accepts *item*.  ``False`` once the loop is gone."""
        try:
            future = asyncio.run_coroutine_threadsafe(self._queue.put(item), self._loop)
            future.result()
        except (RuntimeError, concurrent.futures.CancelledError):
            return False
        return True


class _StdoutWriter(threading.Thread):
    """Writes and flushes slices handed over by the event loop, one at a time.

    The thread is never joined: a write stuck on a stalled pipe is abandoned
    at close.
    """

    def __init__(self, stream: BinaryIO, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__(name="pipebridge-stdout", daemon=True)
        self._stream = stream
        self._loop = loop
        self._jobs: queue.SimpleQueue = queue.SimpleQueue()

    def submit(self, data: bytes) -> asyncio.Future:
        future = self._loop.create_future()
        self._jobs.put((data, future))
        return future

    def stop(self) -> None:
        self._jobs.put(None)

    def run(self) -> None:
        while True:
            job = self._jobs.get()
            if job is None:
                return
            data, future = job
            try:
                self._stream.write(data)
                self._stream.flush()
            except (OSError, ValueError) as exc:
                self._settle(future, exc)
            else:
                self._settle(future, None)

    def _settle(self, future: asyncio.Future, error: BaseException | None) -> None:
        def apply() -> None:
            if future.done():
                return
            if error is None:
                future.set_result(None)
            else:
                future.set_exception(error)

        try:
            self._loop.call_soon_threadsafe(apply)
        except RuntimeError:
            pass  # loop already closed


class StdioChannel:
    """Channel over the process's standard input (source) or output (sink).

    Parameters
    ----------
    descriptor:
        A ``stdio`` descriptor; its position picks stdin or stdout.
    read_size:
        Maximum bytes per chunk in stream mode.
    line_mode:
        Read stdin one line per chunk instead of arbitrary slices.
    append_newline:
        Write ``\\n`` after every chunk sent to stdout.
    stdin, stdout:
        Byte streams to use instead of the process's own (tests).
    handoff_depth:
        Slices the reader thread may run ahead of the relay.
    """

    def __init__(
        self,
        descriptor: ChannelDescriptor,
        *,
        read_size: int = 65536,
        line_mode: bool = False,
        append_newline: bool = False,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
        handoff_depth: int = 4,
    ) -> None:
        if descriptor.kind != ChannelKind.STDIO:
            raise ValueError(f"StdioChannel cannot wrap a {descriptor.kind.value} descriptor")
        self._descriptor = descriptor
        self._read_size = read_size
        self._line_mode = line_mode
        self._append_newline = append_newline
        self._stdin = stdin
        self._stdout = stdout
        self._handoff_depth = handoff_depth
        self._state = ChannelState.CONNECTING
        self._inbound: asyncio.Queue | None = None
        self._reader: _StdinReader | None = None
        self._out: BinaryIO | None = None
        self._writer: _StdoutWriter | None = None
        self._sequence = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def descriptor(self) -> ChannelDescriptor:
        return self._descriptor

    @property
    def kind(self) -> ChannelKind:
        return ChannelKind.STDIO

    @property
    def name(self) -> str:
        return self._descriptor.display_name

    @property
    def state(self) -> ChannelState:
        return self._state

    # ------------------------------------------------------------------
    # Channel API
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._state == ChannelState.OPEN:
            return
        if self._descriptor.readable:
            stream = self._stdin if self._stdin is not None else _binary_stream(sys.stdin)
            if stream is None:
                raise ChannelConnectionError("standard input is not available")
            self._inbound = asyncio.Queue(maxsize=self._handoff_depth)
            self._reader = _StdinReader(
                stream,
                self._inbound,
                asyncio.get_running_loop(),
                read_size=self._read_size,
                line_mode=self._line_mode,
            )
            self._reader.start()
        else:
            self._out = self._stdout if self._stdout is not None else _binary_stream(sys.stdout)
            if self._out is None:
                raise ChannelConnectionError("standard output is not available")
            self._writer = _StdoutWriter(self._out, asyncio.get_running_loop())
            self._writer.start()
        self._state = ChannelState.OPEN
        logger.debug("StdioChannel: %s open.", self.name)

    async def read(self) -> Chunk:
        if self._inbound is None:
            raise ChannelIOError(f"{self.name} is not readable")
        if self._state != ChannelState.OPEN:
            raise ChannelClosedError(f"{self.name} is {self._state.value}")

        item = await self._inbound.get()
        if isinstance(item, BaseException):
            self._state = ChannelState.FAILED
            raise ChannelIOError(f"read from standard input failed: {item}") from item
        if not item:
            self._state = ChannelState.CLOSED
            raise ChannelClosedError("end of standard input")

        self._sequence += 1
        return Chunk(payload=item, boundary=BoundaryTag.UNBOUNDED, sequence=self._sequence)

    async def write(self, chunk: Chunk) -> None:
        if self._writer is None:
            if self._descriptor.readable:
                raise ChannelIOError(f"{self.name} is not writable")
            raise ChannelIOError(f"{self.name} is {self._state.value}")
        if self._state != ChannelState.OPEN:
            raise ChannelIOError(f"{self.name} is {self._state.value}")

        data = chunk.payload + b"\n" if self._append_newline else chunk.payload
        try:
            await self._writer.submit(data)
        except (OSError, ValueError) as exc:
            self._state = ChannelState.FAILED
            raise ChannelIOError(f"write to standard output failed: {exc}") from exc

    async def close(self) -> None:
        # Every write is flushed as it completes, so there is nothing left to
        # flush here; a write still blocked on a stalled pipe is abandoned.
        if self._writer is not None:
            self._writer.stop()
            self._writer = None
        self._out = None
        if self._state != ChannelState.FAILED:
            self._state = ChannelState.CLOSED
        # Daemon threads; abandoned rather than joined.
        self._reader = None

    def __repr__(self) -> str:
        return f"StdioChannel(name={self.name!r}, state={self._state.value})"
