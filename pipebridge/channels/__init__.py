"""Channel protocol for pipebridge transports.

Every transport (stdio, UDP, WebSocket) implements the ``Channel`` protocol:
a handful of read-only properties plus ``open``/``read``/``write``/``close``
coroutines.  A channel is owned by exactly one task at a time.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pipebridge.channels.errors import (
    ChannelClosedError,
    ChannelConnectionError,
    ChannelError,
    ChannelIOError,
    PayloadTooLargeError,
    ProtocolError,
)
from pipebridge.models.channels import ChannelDescriptor, ChannelKind, ChannelState
from pipebridge.models.chunks import Chunk


@runtime_checkable
class Channel(Protocol):
    """Protocol that every transport channel implements.

    ``read`` is only valid on source channels and ``write`` only on sink
    channels; the descriptor's ``position`` decides which.
    """

    @property
    def descriptor(self) -> ChannelDescriptor:
        ...

    @property
    def kind(self) -> ChannelKind:
        ...

    @property
    def name(self) -> str:
        ...

    @property
    def state(self) -> ChannelState:
        ...

    async def open(self) -> None:
        """Establish the transport.  Raises ``ChannelConnectionError``."""
        ...

    async def read(self) -> Chunk:
        """Return the next chunk.

        Suspends until data is available.  Raises ``ChannelClosedError`` at a
        clean end of stream, ``ChannelIOError`` or ``ProtocolError`` on
        failure.
        """
        ...

    async def write(self, chunk: Chunk) -> None:
        """Send one chunk.

        Raises ``ChannelIOError``, ``ProtocolError`` or
        ``PayloadTooLargeError``.
        """
        ...

    async def close(self) -> None:
        """Release the transport.  Idempotent."""
        ...


__all__ = [
    "Channel",
    "ChannelClosedError",
    "ChannelConnectionError",
    "ChannelError",
    "ChannelIOError",
    "PayloadTooLargeError",
    "ProtocolError",
]
