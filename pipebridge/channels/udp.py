"""UDP channel — one datagram in is one chunk, one chunk out is one datagram.

A source descriptor binds ``host:port`` and receives; a sink descriptor
sends every chunk to ``host:port``.  Datagrams are never coalesced or split.
"""

from __future__ import annotations

import asyncio
import logging

from pipebridge.channels.errors import (
    ChannelClosedError,
    ChannelConnectionError,
    ChannelIOError,
    PayloadTooLargeError,
)
from pipebridge.models.channels import (
    BoundaryTag,
    ChannelDescriptor,
    ChannelKind,
    ChannelState,
)
from pipebridge.models.chunks import Chunk

logger = logging.getLogger(__name__)

# Largest UDP payload an IPv4 datagram can carry (65535 - 8 - 20).
MAX_UDP_PAYLOAD = 65507

_CONNECTION_LOST = object()


class _DatagramBridge(asyncio.DatagramProtocol):
    """Forwards asyncio datagram callbacks to the owning channel."""

    def __init__(self, channel: UdpChannel) -> None:
        self._channel = channel

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self._channel._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._channel._on_error(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        self._channel._on_lost(exc)


class UdpChannel:
    """Datagram channel over an asyncio UDP endpoint.

    Parameters
    ----------
    descriptor:
        A ``udp`` descriptor (source binds, sink sends).
    max_datagram:
        Outbound payload limit; larger chunks raise ``PayloadTooLargeError``.
    receive_buffer:
        Datagrams held while the reader is busy.  When full, the oldest
        datagram is discarded, as the network itself would.
    """

    def __init__(
        self,
        descriptor: ChannelDescriptor,
        *,
        max_datagram: int = MAX_UDP_PAYLOAD,
        receive_buffer: int = 1024,
    ) -> None:
        if descriptor.kind != ChannelKind.UDP:
            raise ValueError(f"UdpChannel cannot wrap a {descriptor.kind.value} descriptor")
        if descriptor.address is None:
            raise ValueError("UdpChannel requires a host and port")
        self._descriptor = descriptor
        self._max_datagram = max_datagram
        self._receive_buffer = receive_buffer
        self._state = ChannelState.CONNECTING
        self._transport: asyncio.DatagramTransport | None = None
        self._inbound: asyncio.Queue | None = None
        self._sequence = 0
        self._overflowed = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def descriptor(self) -> ChannelDescriptor:
        return self._descriptor

    @property
    def kind(self) -> ChannelKind:
        return ChannelKind.UDP

    @property
    def name(self) -> str:
        return self._descriptor.display_name

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def max_datagram(self) -> int:
        return self._max_datagram

    @property
    def local_address(self) -> tuple[str, int] | None:
        """The bound ``(host, port)``; useful when binding port 0."""
        if self._transport is None:
            return None
        sockname = self._transport.get_extra_info("sockname")
        return (sockname[0], sockname[1]) if sockname else None

    @property
    def overflowed(self) -> int:
        """Inbound datagrams discarded because the receive buffer was full."""
        return self._overflowed

    # ------------------------------------------------------------------
    # Channel API
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._state == ChannelState.OPEN:
            return
        loop = asyncio.get_running_loop()
        address = self._descriptor.address
        try:
            if self._descriptor.readable:
                self._inbound = asyncio.Queue(maxsize=self._receive_buffer)
                transport, _ = await loop.create_datagram_endpoint(
                    lambda: _DatagramBridge(self), local_addr=address
                )
            else:
                transport, _ = await loop.create_datagram_endpoint(
                    lambda: _DatagramBridge(self), remote_addr=address
                )
        except OSError as exc:
            self._state = ChannelState.FAILED
            raise ChannelConnectionError(
                f"cannot open UDP endpoint {address[0]}:{address[1]}: {exc}"
            ) from exc

        self._transport = transport
        self._state = ChannelState.OPEN
        if self._descriptor.readable:
            logger.info("UdpChannel: %s bound to %s.", self.name, self.local_address)
        else:
            logger.info("UdpChannel: %s sending to %s:%d.", self.name, *address)

    async def read(self) -> Chunk:
        if self._inbound is None:
            raise ChannelIOError(f"{self.name} is not readable")
        if self._state != ChannelState.OPEN:
            raise ChannelClosedError(f"{self.name} is {self._state.value}")

        item = await self._inbound.get()
        if item is _CONNECTION_LOST:
            if self._state == ChannelState.FAILED:
                raise ChannelIOError(f"{self.name}: UDP endpoint lost")
            self._state = ChannelState.CLOSED
            raise ChannelClosedError(f"{self.name} closed")

        self._sequence += 1
        return Chunk(payload=item, boundary=BoundaryTag.DATAGRAM, sequence=self._sequence)

    async def write(self, chunk: Chunk) -> None:
        if not self._descriptor.writable:
            raise ChannelIOError(f"{self.name} is not writable")
        if self._state != ChannelState.OPEN or self._transport is None:
            raise ChannelIOError(f"{self.name} is {self._state.value}")
        if chunk.size > self._max_datagram:
            raise PayloadTooLargeError(chunk.size, self._max_datagram)
        if self._transport.is_closing():
            self._state = ChannelState.FAILED
            raise ChannelIOError(f"{self.name}: UDP transport is closing")
        self._transport.sendto(chunk.payload)

    async def close(self) -> None:
        if self._transport is None:
            if self._state == ChannelState.CONNECTING:
                self._state = ChannelState.CLOSED
            return
        transport, self._transport = self._transport, None
        if self._state != ChannelState.FAILED:
            self._state = ChannelState.CLOSED
        transport.close()
        logger.debug("UdpChannel: %s closed.", self.name)

    # ------------------------------------------------------------------
    # Protocol callbacks
    # ------------------------------------------------------------------

    def _on_datagram(self, data: bytes, addr: tuple) -> None:
        if self._inbound is None:
            logger.debug("UdpChannel: %s ignoring datagram from %s.", self.name, addr)
            return
        if self._inbound.full():
            self._inbound.get_nowait()
            self._overflowed += 1
            logger.warning(
                "UdpChannel: %s receive buffer full, dropped oldest datagram (%d so far).",
                self.name,
                self._overflowed,
            )
        self._inbound.put_nowait(data)

    def _on_error(self, exc: Exception) -> None:
        # ICMP unreachable and friends: UDP makes no delivery promise.
        logger.debug("UdpChannel: %s transport error ignored: %s", self.name, exc)

    def _on_lost(self, exc: Exception | None) -> None:
        if exc is not None and self._state == ChannelState.OPEN:
            self._state = ChannelState.FAILED
            logger.error("UdpChannel: %s lost: %s", self.name, exc)
        if self._inbound is not None:
            if self._inbound.full():
                self._inbound.get_nowait()
            self._inbound.put_nowait(_CONNECTION_LOST)

    def __repr__(self) -> str:
        return f"UdpChannel(name={self.name!r}, state={self._state.value})"
