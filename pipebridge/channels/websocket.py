"""WebSocket channel — one message frame is one chunk.

Client descriptors dial ``ws://`` / ``wss://`` URLs.  Server descriptors
listen on ``host:port`` and accept exactly one peer; further handshakes are
refused with HTTP 503 while that peer is attached.

Ping/pong and the closing handshake are handled by the ``websockets``
library and never surface as chunks.
"""

from __future__ import annotations

import asyncio
import logging
from http import HTTPStatus
from typing import Any, Literal

from websockets.asyncio.client import ClientConnection, connect
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
    WebSocketException,
)

from pipebridge.channels.errors import (
    ChannelClosedError,
    ChannelConnectionError,
    ChannelIOError,
    ProtocolError,
)
from pipebridge.models.channels import (
    BoundaryTag,
    ChannelDescriptor,
    ChannelKind,
    ChannelRole,
    ChannelState,
)
from pipebridge.models.chunks import Chunk

logger = logging.getLogger(__name__)

FrameMode = Literal["auto", "text", "binary"]

# Close codes that mean the peer (or we) saw a malformed frame.
_PROTOCOL_CLOSE_CODES = frozenset({1002, 1007, 1009})


def _close_code(exc: ConnectionClosed) -> int | None:
    for frame in (exc.sent, exc.rcvd):
        if frame is not None:
            return frame.code
    return None


class WebSocketChannel:
    """Channel over a single WebSocket connection.

    Parameters
    ----------
    descriptor:
        A ``websocket`` descriptor.  ``CLIENT`` dials ``descriptor.url``;
        ``SERVER`` listens on ``descriptor.address``.
    max_message_size:
        Largest incoming frame accepted; bigger frames close the connection
        with 1009 and surface as ``ProtocolError``.
    ping_interval:
        Keepalive ping period in seconds, ``None`` to disable.
    open_timeout:
        Handshake timeout in seconds.
    accept_timeout:
        How long a server waits for its peer; ``None`` waits forever.
    frame_mode:
        ``auto`` sends text frames for chunks that arrived as text and
        binary frames otherwise; ``text``/``binary`` force one type.
    """

    def __init__(
        self,
        descriptor: ChannelDescriptor,
        *,
        max_message_size: int | None = 2**20,
        ping_interval: float | None = 20.0,
        open_timeout: float | None = 10.0,
        accept_timeout: float | None = None,
        frame_mode: FrameMode = "auto",
    ) -> None:
        if descriptor.kind != ChannelKind.WEBSOCKET:
            raise ValueError(
                f"WebSocketChannel cannot wrap a {descriptor.kind.value} descriptor"
            )
        self._descriptor = descriptor
        self._max_message_size = max_message_size
        self._ping_interval = ping_interval
        self._open_timeout = open_timeout
        self._accept_timeout = accept_timeout
        self._frame_mode = frame_mode
        self._state = ChannelState.CONNECTING
        self._conn: ClientConnection | ServerConnection | None = None
        self._server: Server | None = None
        self._peer: asyncio.Future[ServerConnection] | None = None
        self._discard_task: asyncio.Task | None = None
        self._sequence = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def descriptor(self) -> ChannelDescriptor:
        return self._descriptor

    @property
    def kind(self) -> ChannelKind:
        return ChannelKind.WEBSOCKET

    @property
    def name(self) -> str:
        return self._descriptor.display_name

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_server(self) -> bool:
        return self._descriptor.role == ChannelRole.SERVER

    @property
    def bound_address(self) -> tuple[str, int] | None:
        """The listening ``(host, port)`` of a server channel."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            name = sock.getsockname()
            return name[0], name[1]
        return None

    @property
    def peer_address(self) -> Any:
        return self._conn.remote_address if self._conn is not None else None

    # ------------------------------------------------------------------
    # Channel API
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._state == ChannelState.OPEN:
            return
        if self.is_server:
            await self.listen()
            await self.accept()
        else:
            await self._dial()
        self._state = ChannelState.OPEN
        if self._descriptor.writable:
            self._discard_task = asyncio.create_task(
                self._discard_inbound(), name=f"pipebridge-ws-discard:{self.name}"
            )

    async def listen(self) -> None:
        """Start listening (server role).  Idempotent."""
        if self._server is not None:
            return
        host, port = self._descriptor.address or ("", 0)
        self._peer = asyncio.get_running_loop().create_future()
        try:
            self._server = await serve(
                self._handle_peer,
                host,
                port,
                process_request=self._screen_handshake,
                max_size=self._max_message_size,
                ping_interval=self._ping_interval,
                open_timeout=self._open_timeout,
            )
        except OSError as exc:
            self._state = ChannelState.FAILED
            self._peer = None
            raise ChannelConnectionError(
                f"cannot listen for WebSocket peer on {host}:{port}: {exc}"
            ) from exc
        logger.info("WebSocketChannel: %s listening on %s.", self.name, self.bound_address)

    async def accept(self) -> None:
        """Block until the single peer has connected (server role)."""
        if self._peer is None:
            raise ChannelConnectionError(f"{self.name} is not listening")
        try:
            self._conn = await asyncio.wait_for(
                asyncio.shield(self._peer), timeout=self._accept_timeout
            )
        except asyncio.TimeoutError as exc:
            await self._stop_server()
            self._state = ChannelState.FAILED
            raise ChannelConnectionError(
                f"no WebSocket peer connected to {self.name} "
                f"within {self._accept_timeout}s"
            ) from exc
        except asyncio.CancelledError:
            await self._stop_server()
            raise
        logger.info("WebSocketChannel: %s accepted peer %s.", self.name, self.peer_address)

    async def read(self) -> Chunk:
        if not self._descriptor.readable:
            raise ChannelIOError(f"{self.name} is not readable")
        if self._conn is None or self._state != ChannelState.OPEN:
            raise ChannelClosedError(f"{self.name} is {self._state.value}")

        try:
            message = await self._conn.recv()
        except ConnectionClosedOK as exc:
            self._state = ChannelState.CLOSED
            raise ChannelClosedError(f"{self.name}: peer closed the connection") from exc
        except ConnectionClosedError as exc:
            raise self._failure(exc) from exc

        self._sequence += 1
        if isinstance(message, str):
            return Chunk(
                payload=message.encode("utf-8"),
                boundary=BoundaryTag.FRAME,
                sequence=self._sequence,
                text=True,
            )
        return Chunk(payload=message, boundary=BoundaryTag.FRAME, sequence=self._sequence)

    async def write(self, chunk: Chunk) -> None:
        if not self._descriptor.writable:
            raise ChannelIOError(f"{self.name} is not writable")
        if self._conn is None or self._state != ChannelState.OPEN:
            raise ChannelIOError(f"{self.name} is {self._state.value}")

        try:
            await self._conn.send(self._frame_for(chunk))
        except ConnectionClosed as exc:
            if isinstance(exc, ConnectionClosedError):
                raise self._failure(exc) from exc
            self._state = ChannelState.CLOSED
            raise ChannelIOError(f"{self.name}: connection closed by peer") from exc

    async def close(self) -> None:
        if self._discard_task is not None:
            self._discard_task.cancel()
            self._discard_task = None
        conn, self._conn = self._conn, None
        if conn is not None:
            try:
                await conn.close()
            except (OSError, WebSocketException):
                logger.debug("WebSocketChannel: error closing %s.", self.name, exc_info=True)
        await self._stop_server()
        if self._state != ChannelState.FAILED:
            self._state = ChannelState.CLOSED

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _dial(self) -> None:
        url = self._descriptor.url
        try:
            self._conn = await connect(
                url,
                max_size=self._max_message_size,
                ping_interval=self._ping_interval,
                open_timeout=self._open_timeout,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            self._state = ChannelState.FAILED
            raise ChannelConnectionError(f"cannot connect to {url}: {exc}") from exc
        logger.info("WebSocketChannel: connected to %s.", url)

    def _screen_handshake(self, connection: ServerConnection, request: Any) -> Any:
        if self._peer is not None and self._peer.done():
            logger.warning(
                "WebSocketChannel: %s refusing %s, a peer is already attached.",
                self.name,
                connection.remote_address,
            )
            return connection.respond(
                HTTPStatus.SERVICE_UNAVAILABLE, "peer already connected\n"
            )
        return None

    async def _handle_peer(self, connection: ServerConnection) -> None:
        if self._peer is None or self._peer.done():
            # Two handshakes raced past the screen; only the first wins.
            await connection.close(code=1013, reason="peer already connected")
            return
        self._peer.set_result(connection)
        # Returning from the handler would close the connection.
        await connection.wait_closed()

    async def _discard_inbound(self) -> None:
        conn = self._conn
        if conn is None:
            return
        try:
            async for message in conn:
                logger.debug(
                    "WebSocketChannel: %s discarding %d-byte inbound frame.",
                    self.name,
                    len(message),
                )
        except ConnectionClosedError as exc:
            logger.warning("WebSocketChannel: %s connection error: %s", self.name, exc)
            self._state = ChannelState.FAILED
            return
        if self._state == ChannelState.OPEN:
            self._state = ChannelState.CLOSED
            logger.info("WebSocketChannel: peer of %s closed the connection.", self.name)

    def _frame_for(self, chunk: Chunk) -> str | bytes:
        if self._frame_mode == "binary":
            return chunk.payload
        if self._frame_mode == "text" or chunk.text:
            try:
                return chunk.payload.decode("utf-8")
            except UnicodeDecodeError:
                return chunk.payload
        return chunk.payload

    def _failure(self, exc: ConnectionClosedError) -> Exception:
        self._state = ChannelState.FAILED
        code = _close_code(exc)
        if code in _PROTOCOL_CLOSE_CODES:
            return ProtocolError(f"{self.name}: protocol violation (close code {code})")
        return ChannelIOError(f"{self.name}: connection lost ({exc})")

    async def _stop_server(self) -> None:
        if self._peer is not None and not self._peer.done():
            self._peer.cancel()
        server, self._server = self._server, None
        if server is not None:
            server.close()
            await server.wait_closed()

    def __repr__(self) -> str:
        return (
            f"WebSocketChannel(name={self.name!r}, role={self._descriptor.role.value}, "
            f"state={self._state.value})"
        )
