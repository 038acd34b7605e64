"""Channel exceptions.

Transport-library errors are translated into these at the channel boundary
so the router and session only ever see one hierarchy.
"""

from __future__ import annotations


class ChannelError(RuntimeError):
    """Base class for every channel-level failure."""


class ChannelConnectionError(ChannelError):
    """Initial dial, bind or accept failed."""


class ChannelClosedError(ChannelError):
    """The channel reached a clean end of stream (EOF or close frame)."""


class ChannelIOError(ChannelError):
    """A read or write failed after the channel was established."""


class PayloadTooLargeError(ChannelError):
    """An outbound chunk exceeds the transport's size limit.

    The chunk is dropped; the channel stays open.
    """

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"payload of {size} bytes exceeds the {limit}-byte limit")
        self.size = size
        self.limit = limit


class ProtocolError(ChannelError):
    """The peer violated the wire protocol (e.g. a malformed WebSocket frame)."""
