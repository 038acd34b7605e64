"""Unit tests for endpoint token parsing."""

from __future__ import annotations

import pytest

from pipebridge.core.descriptors import DescriptorError, parse_endpoint, parse_invocation
from pipebridge.models.channels import ChannelKind, ChannelRole, EndpointPosition

SOURCE = EndpointPosition.SOURCE
SINK = EndpointPosition.SINK


# ---------------------------------------------------------------------------
# Stdio tokens
# ---------------------------------------------------------------------------


class TestStdioTokens:
    """stdin and stdout and their fixed positions."""

    def test_stdin_source(self):
        """stdin parses as a readable stdio source."""
        d = parse_endpoint("stdin", SOURCE)
        assert d.kind == ChannelKind.STDIO
        assert d.role == ChannelRole.NONE
        assert d.readable

    def test_stdout_sink(self):
        """stdout parses as a writable stdio sink."""
        d = parse_endpoint("stdout", SINK)
        assert d.kind == ChannelKind.STDIO
        assert d.writable

    def test_stdin_as_sink_rejected(self):
        """stdin is only valid as the source."""
        with pytest.raises(DescriptorError, match="source"):
            parse_endpoint("stdin", SINK)

    def test_stdout_as_source_rejected(self):
        """stdout is only valid as a sink."""
        with pytest.raises(DescriptorError, match="sink"):
            parse_endpoint("stdout", SOURCE)


# ---------------------------------------------------------------------------
# UDP tokens
# ---------------------------------------------------------------------------


class TestUdpTokens:
    """udp:// tokens bind as sources and send as sinks."""

    def test_udp_source_binds(self):
        """A udp:// source binds the given address."""
        d = parse_endpoint("udp://0.0.0.0:9000", SOURCE)
        assert d.kind == ChannelKind.UDP
        assert d.role == ChannelRole.SERVER
        assert d.address == ("0.0.0.0", 9000)

    def test_udp_sink_sends(self):
        """A udp:// sink is a client aimed at the given address."""
        d = parse_endpoint("udp://127.0.0.1:9001", SINK)
        assert d.role == ChannelRole.CLIENT
        assert d.address == ("127.0.0.1", 9001)

    def test_udp_source_port_zero_allowed(self):
        """A source may bind port 0 and let the OS pick."""
        assert parse_endpoint("udp://127.0.0.1:0", SOURCE).port == 0

    def test_udp_sink_port_zero_rejected(self):
        """A sink cannot send to port 0."""
        with pytest.raises(DescriptorError, match="port"):
            parse_endpoint("udp://127.0.0.1:0", SINK)

    def test_udp_ipv6_host(self):
        """Bracketed IPv6 hosts are unwrapped."""
        d = parse_endpoint("udp://[::1]:5000", SINK)
        assert d.host == "::1"
        assert d.port == 5000

    def test_udp_missing_port(self):
        """A UDP token without a port is rejected."""
        with pytest.raises(DescriptorError):
            parse_endpoint("udp://localhost", SINK)

    def test_udp_port_too_large(self):
        """Ports above 65535 are rejected."""
        with pytest.raises(DescriptorError):
            parse_endpoint("udp://localhost:65536", SINK)


# ---------------------------------------------------------------------------
# WebSocket tokens
# ---------------------------------------------------------------------------


class TestWebSocketTokens:
    """ws:// and wss:// tokens always dial out."""

    def test_ws_client(self):
        """A ws:// token dials the URL, keeping its path."""
        d = parse_endpoint("ws://localhost:8765/feed", SINK)
        assert d.kind == ChannelKind.WEBSOCKET
        assert d.role == ChannelRole.CLIENT
        assert d.path == "/feed"
        assert d.url == "ws://localhost:8765/feed"

    def test_wss_default_port(self):
        """wss:// defaults to port 443 and path /."""
        d = parse_endpoint("wss://example.org", SOURCE)
        assert d.secure
        assert d.port == 443
        assert d.path == "/"

    def test_ws_default_port(self):
        """ws:// defaults to port 80."""
        assert parse_endpoint("ws://example.org/", SINK).port == 80

    def test_query_kept_in_path(self):
        """The query string travels with the request path."""
        d = parse_endpoint("ws://h:1/p?room=a", SINK)
        assert d.path == "/p?room=a"

    def test_scheme_is_case_insensitive(self):
        """Scheme names match regardless of case."""
        assert parse_endpoint("WS://h:1", SINK).kind == ChannelKind.WEBSOCKET

    def test_missing_host_rejected(self):
        """A WebSocket URL needs a host."""
        with pytest.raises(DescriptorError, match="host"):
            parse_endpoint("ws://:8080/", SINK)

    def test_bad_port_rejected(self):
        """A non-numeric port is rejected."""
        with pytest.raises(DescriptorError):
            parse_endpoint("ws://h:notaport/", SINK)


# ---------------------------------------------------------------------------
# Bare host:port
# ---------------------------------------------------------------------------


class TestBareAddress:
    """Bare host:port tokens resolve by position."""

    def test_bare_source_is_udp_bind(self):
        """A bare source address binds UDP."""
        d = parse_endpoint("0.0.0.0:7000", SOURCE)
        assert d.kind == ChannelKind.UDP
        assert d.role == ChannelRole.SERVER

    def test_bare_sink_is_websocket_server(self):
        """A bare sink listens for one WebSocket peer and has no URL."""
        d = parse_endpoint("localhost:7001", SINK)
        assert d.kind == ChannelKind.WEBSOCKET
        assert d.role == ChannelRole.SERVER
        assert d.url is None

    def test_bare_ipv6(self):
        """Bare bracketed IPv6 addresses are accepted."""
        d = parse_endpoint("[::]:7002", SOURCE)
        assert d.host == "::"

    def test_unknown_scheme_rejected(self):
        """Schemes other than udp, ws and wss are rejected."""
        with pytest.raises(DescriptorError, match="scheme"):
            parse_endpoint("tcp://localhost:1", SINK)

    @pytest.mark.parametrize("token", ["", "   ", "nohost", "host:", ":80", "a:b:c"])
    def test_malformed_tokens(self, token):
        """Empty, portless and over-split tokens are rejected."""
        with pytest.raises(DescriptorError):
            parse_endpoint(token, SINK)


# ---------------------------------------------------------------------------
# Whole invocations
# ---------------------------------------------------------------------------


class TestParseInvocation:
    """Whole argument lists: one source, then sinks in order."""

    def test_source_and_sinks_in_order(self):
        """The first token is the source and the rest are sinks in order."""
        source, sinks = parse_invocation(
            ["stdin", "udp://127.0.0.1:9001", "stdout", "ws://h:80/x"]
        )
        assert source.kind == ChannelKind.STDIO
        assert [s.token for s in sinks] == ["udp://127.0.0.1:9001", "stdout", "ws://h:80/x"]

    def test_requires_a_sink(self):
        """A source alone is not a valid invocation."""
        with pytest.raises(DescriptorError, match="at least one sink"):
            parse_invocation(["stdin"])

    def test_stdout_only_once(self):
        """stdout may appear only once among the sinks."""
        with pytest.raises(DescriptorError, match="once"):
            parse_invocation(["stdin", "stdout", "stdout"])

    def test_bad_sink_reported(self):
        """A malformed sink token fails the whole invocation."""
        with pytest.raises(DescriptorError):
            parse_invocation(["stdin", "bogus"])
