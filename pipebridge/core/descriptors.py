"""Endpoint argument parsing — tokens to ``ChannelDescriptor``.

Token forms
-----------
- ``stdin`` (source only), ``stdout`` (sink only)
- ``ws://host:port[/path]`` and ``wss://...`` — WebSocket client
- ``udp://host:port`` — UDP; a source binds, a sink sends
- bare ``host:port`` — a UDP bind when it is the source, a single-peer
  WebSocket server when it is a sink

IPv6 hosts are written in brackets: ``udp://[::1]:9000``.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from urllib.parse import urlsplit

from pipebridge.models.channels import (
    ChannelDescriptor,
    ChannelKind,
    ChannelRole,
    EndpointPosition,
)


class DescriptorError(ValueError):
    """Raised when an endpoint token cannot be resolved."""


_BARE_ADDRESS = re.compile(r"^(?:\[(?P<v6>[0-9A-Fa-f:.]+)\]|(?P<host>[^\s:/\[\]]+)):(?P<port>\d+)$")
_WS_SCHEMES = {"ws": False, "wss": True}


def _check_port(port: int, token: str, *, allow_zero: bool) -> int:
    if port > 65535 or (port == 0 and not allow_zero):
        raise DescriptorError(f"invalid port in {token!r}")
    return port


def _split_bare(token: str, address: str) -> tuple[str, int]:
    match = _BARE_ADDRESS.match(address)
    if match is None:
        raise DescriptorError(f"expected host:port in {token!r}")
    host = match.group("v6") or match.group("host")
    return host, int(match.group("port"))


def parse_endpoint(token: str, position: EndpointPosition) -> ChannelDescriptor:
    """Resolve one command-line endpoint into an immutable descriptor.

    Raises
    ------
    DescriptorError
        If the token is malformed or not valid in *position*.
    """
    token = token.strip()
    if not token:
        raise DescriptorError("empty endpoint")

    if token in ("stdin", "stdout"):
        expected = EndpointPosition.SOURCE if token == "stdin" else EndpointPosition.SINK
        if position != expected:
            raise DescriptorError(f"{token!r} can only be used as a {expected.value}")
        return ChannelDescriptor(kind=ChannelKind.STDIO, position=position, token=token)

    scheme, sep, rest = token.partition("://")
    if not sep:
        host, port = _split_bare(token, token)
        if position == EndpointPosition.SOURCE:
            return ChannelDescriptor(
                kind=ChannelKind.UDP,
                role=ChannelRole.SERVER,
                position=position,
                host=host,
                port=_check_port(port, token, allow_zero=True),
                token=token,
            )
        return ChannelDescriptor(
            kind=ChannelKind.WEBSOCKET,
            role=ChannelRole.SERVER,
            position=position,
            host=host,
            port=_check_port(port, token, allow_zero=True),
            token=token,
        )

    scheme = scheme.lower()
    if scheme == "udp":
        host, port = _split_bare(token, rest.rstrip("/"))
        is_source = position == EndpointPosition.SOURCE
        return ChannelDescriptor(
            kind=ChannelKind.UDP,
            role=ChannelRole.SERVER if is_source else ChannelRole.CLIENT,
            position=position,
            host=host,
            port=_check_port(port, token, allow_zero=is_source),
            token=token,
        )

    if scheme in _WS_SCHEMES:
        try:
            parts = urlsplit(token)
            port = parts.port
        except ValueError as exc:
            raise DescriptorError(f"malformed WebSocket URL {token!r}: {exc}") from exc
        if not parts.hostname:
            raise DescriptorError(f"missing host in {token!r}")
        secure = _WS_SCHEMES[scheme]
        if port is None:
            port = 443 if secure else 80
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"
        return ChannelDescriptor(
            kind=ChannelKind.WEBSOCKET,
            role=ChannelRole.CLIENT,
            position=position,
            host=parts.hostname,
            port=_check_port(port, token, allow_zero=False),
            path=path,
            secure=secure,
            token=token,
        )

    raise DescriptorError(f"unsupported scheme {scheme!r} in {token!r}")


def parse_invocation(args: Sequence[str]) -> tuple[ChannelDescriptor, list[ChannelDescriptor]]:
    """Resolve ``SOURCE SINK [SINK...]`` into descriptors, keeping argument order."""
    if len(args) < 2:
        raise DescriptorError("expected a source and at least one sink")
    source = parse_endpoint(args[0], EndpointPosition.SOURCE)
    sinks = [parse_endpoint(arg, EndpointPosition.SINK) for arg in args[1:]]
    if sum(1 for s in sinks if s.kind == ChannelKind.STDIO) > 1:
        raise DescriptorError("'stdout' can only be listed once")
    return source, sinks
