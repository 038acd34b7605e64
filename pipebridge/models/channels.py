"""Channel descriptor models — what an endpoint argument resolves to.

A ``ChannelDescriptor`` is produced once at startup and never mutated.  The
Connection Manager turns it into a live Channel.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ChannelKind(str, Enum):
    """The three transport families a channel can wrap."""

    STDIO = "stdio"
    UDP = "udp"
    WEBSOCKET = "websocket"


class ChannelRole(str, Enum):
    """Connection role: dial out, listen/bind, or not applicable (stdio)."""

    CLIENT = "client"
    SERVER = "server"
    NONE = "n/a"


class EndpointPosition(str, Enum):
    """Where the endpoint appeared on the command line."""

    SOURCE = "source"
    SINK = "sink"


class ChannelState(str, Enum):
    """Lifecycle of a live channel."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    FAILED = "failed"


class BoundaryTag(str, Enum):
    """Framing semantics attached to every chunk."""

    DATAGRAM = "datagram"
    FRAME = "frame"
    UNBOUNDED = "unbounded"


# A chunk's boundary tag is fixed by the kind of channel it was read from.
BOUNDARY_FOR_KIND: dict[ChannelKind, BoundaryTag] = {
    ChannelKind.STDIO: BoundaryTag.UNBOUNDED,
    ChannelKind.UDP: BoundaryTag.DATAGRAM,
    ChannelKind.WEBSOCKET: BoundaryTag.FRAME,
}


class ChannelDescriptor(BaseModel):
    """Immutable description of one endpoint.

    Attributes
    ----------
    kind:
        Transport family.
    role:
        ``CLIENT`` dials ``host:port``; ``SERVER`` binds (UDP) or listens
        and accepts one peer (WebSocket); ``NONE`` for stdio.
    position:
        ``SOURCE`` descriptors are read from, ``SINK`` descriptors written to.
    host, port:
        Address information.  ``None`` for stdio.
    path:
        Request path for WebSocket clients (``/`` when omitted).
    secure:
        ``True`` for ``wss://`` clients.
    token:
        The argument text this descriptor was resolved from.
    """

    model_config = ConfigDict(frozen=True)

    kind: ChannelKind
    role: ChannelRole = ChannelRole.NONE
    position: EndpointPosition
    host: str | None = None
    port: int | None = Field(default=None, ge=0, le=65535)
    path: str = "/"
    secure: bool = False
    token: str = ""

    @property
    def readable(self) -> bool:
        return self.position == EndpointPosition.SOURCE

    @property
    def writable(self) -> bool:
        return self.position == EndpointPosition.SINK

    @property
    def address(self) -> tuple[str, int] | None:
        """``(host, port)`` for network descriptors, ``None`` for stdio."""
        if self.host is None or self.port is None:
            return None
        return self.host, self.port

    @property
    def url(self) -> str | None:
        """Dial URL for WebSocket clients."""
        if self.kind != ChannelKind.WEBSOCKET or self.role != ChannelRole.CLIENT:
            return None
        scheme = "wss" if self.secure else "ws"
        host = f"[{self.host}]" if self.host and ":" in self.host else self.host
        return f"{scheme}://{host}:{self.port}{self.path}"

    @property
    def display_name(self) -> str:
        """Short label used in logs and reports."""
        if self.token:
            return self.token
        if self.kind == ChannelKind.STDIO:
            return "stdin" if self.readable else "stdout"
        return f"{self.kind.value}://{self.host}:{self.port}"
