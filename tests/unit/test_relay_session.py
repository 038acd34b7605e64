"""Unit tests for RelaySession.

The session is driven through a ConnectionManager whose factory hands out
in-memory channels, so every startup and termination path is reachable
without sockets.
"""

from __future__ import annotations

import asyncio

import pytest
from relay_fakes import (
    QueueSource,
    RecordingSink,
    UnreachableChannel,
    make_descriptor,
    wait_until,
)

from pipebridge.core.connection_manager import ConnectionManager
from pipebridge.core.session import RelaySession
from pipebridge.models.channels import ChannelKind, ChannelState, EndpointPosition
from pipebridge.models.session import SessionState, TerminationReason


class _HangingOpen(UnreachableChannel):
    """A channel whose ``open()`` never completes (a server with no peer)."""

    async def open(self) -> None:
        self.open_calls += 1
        await asyncio.Event().wait()


def _session(source, sinks, settings, *, missing=(), fallback=UnreachableChannel) -> RelaySession:
    """Build a session whose factory returns the given fakes by token.

    Tokens in *missing*, and any token without a fake, resolve to
    *fallback* channels.
    """
    channels = {s.name: s for s in sinks}
    if source is not None:
        channels[source.name] = source

    def factory(descriptor):
        channel = channels.get(descriptor.token)
        return channel if channel is not None else fallback(descriptor)

    sink_descriptors = [s.descriptor for s in sinks]
    sink_descriptors += [make_descriptor(token=token) for token in missing]
    if source is not None:
        source_descriptor = source.descriptor
    else:
        source_descriptor = make_descriptor(position=EndpointPosition.SOURCE, token="udp://nowhere:9")
    return RelaySession(
        source_descriptor,
        sink_descriptors,
        settings=settings,
        connections=ConnectionManager(settings, factory=factory),
    )


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    """RelaySession validates its endpoints up front."""

    def test_source_must_be_readable(self, relay_settings):
        """A sink descriptor cannot be the source."""
        with pytest.raises(ValueError, match="not a source"):
            RelaySession(make_descriptor(), [make_descriptor()], settings=relay_settings)

    def test_needs_a_sink(self, relay_settings):
        """A session without sinks is rejected."""
        source = make_descriptor(position=EndpointPosition.SOURCE)
        with pytest.raises(ValueError, match="at least one sink"):
            RelaySession(source, [], settings=relay_settings)

    def test_sinks_must_be_writable(self, relay_settings):
        """A source descriptor cannot be used as a sink."""
        source = make_descriptor(position=EndpointPosition.SOURCE)
        with pytest.raises(ValueError, match="not a sink"):
            RelaySession(source, [source], settings=relay_settings)

    def test_starts_idle(self, relay_settings):
        """A new session is idle and has no router yet."""
        source = make_descriptor(position=EndpointPosition.SOURCE)
        session = RelaySession(source, [make_descriptor()], settings=relay_settings)
        assert session.state == SessionState.IDLE
        assert session.router is None


# ---------------------------------------------------------------------------
# Successful relays
# ---------------------------------------------------------------------------


class TestRelay:
    """Sessions that run to completion."""

    @pytest.mark.asyncio
    async def test_source_close_exits_zero(self, relay_settings, payloads):
        """A cleanly closed source delivers everything and exits 0."""
        source = QueueSource(payloads, end="close")
        sinks = [RecordingSink("a"), RecordingSink("b")]
        settings = relay_settings.model_copy(update={"queue_capacity": 64})

        report = await _session(source, sinks, settings).run()

        assert report.exit_code == 0
        assert report.reason == TerminationReason.SOURCE_CLOSED
        assert report.state == SessionState.TERMINATED
        assert report.chunks_read == len(payloads)
        assert [s.delivered for s in report.sinks] == [len(payloads)] * 2
        assert [t.to_state for t in report.history] == [
            SessionState.RELAYING,
            SessionState.DRAINING,
            SessionState.TERMINATED,
        ]
        assert source.close_calls == 1

    @pytest.mark.asyncio
    async def test_unreachable_sink_is_excluded(self, relay_settings):
        """A sink that cannot be opened is reported as failed while the rest relay."""
        source = QueueSource([b"x", b"y"], end="close")
        good = RecordingSink("good")

        report = await _session(source, [good], relay_settings, missing=["udp://dead:1"]).run()

        assert report.exit_code == 0
        assert good.received == [b"x", b"y"]
        assert [s.name for s in report.sinks] == ["good", "udp://dead:1"]
        dead = report.sinks[1]
        assert dead.state == ChannelState.FAILED
        assert "2 attempt" in dead.error
        assert report.surviving_sinks == ["good"]

    @pytest.mark.asyncio
    async def test_reports_follow_argument_order(self, relay_settings):
        """Sink reports keep the command-line order."""
        source = QueueSource([b"x"], end="close")
        sinks = [RecordingSink(n, kind=ChannelKind.WEBSOCKET) for n in ("z", "a", "m")]

        report = await _session(source, sinks, relay_settings).run()
        assert [s.name for s in report.sinks] == ["z", "a", "m"]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    """Sessions that end in failure exit 1."""

    @pytest.mark.asyncio
    async def test_source_failure_exits_one(self, relay_settings):
        """A source failing mid-stream exits 1 with its error."""
        source = QueueSource([b"x"], end="fail")
        report = await _session(source, [RecordingSink()], relay_settings).run()

        assert report.exit_code == 1
        assert report.reason == TerminationReason.SOURCE_FAILED
        assert report.error

    @pytest.mark.asyncio
    async def test_all_sinks_failed_exits_one(self, relay_settings):
        """Every sink failing exits 1 and still closes the source."""
        source = QueueSource([b"1", b"2"])
        sinks = [RecordingSink("a", fail_after=0), RecordingSink("b", fail_after=0)]

        report = await asyncio.wait_for(_session(source, sinks, relay_settings).run(), 2)

        assert report.exit_code == 1
        assert report.reason == TerminationReason.ALL_SINKS_FAILED
        assert report.surviving_sinks == []
        assert source.close_calls == 1

    @pytest.mark.asyncio
    async def test_unreachable_source_is_fatal(self, relay_settings):
        """A source that cannot be opened ends the session before any sink is tried."""
        sink = RecordingSink()
        report = await _session(None, [sink], relay_settings).run()

        assert report.exit_code == 1
        assert report.reason == TerminationReason.STARTUP_FAILED
        assert report.state == SessionState.TERMINATED
        assert sink.state == ChannelState.CONNECTING

    @pytest.mark.asyncio
    async def test_no_sink_opens(self, relay_settings):
        """If no sink opens, the source is closed without being read."""
        source = QueueSource([b"x"], end="close")
        session = _session(source, [], relay_settings, missing=["ws://a:1/", "ws://b:1/"])

        report = await session.run()

        assert report.reason == TerminationReason.STARTUP_FAILED
        assert report.exit_code == 1
        assert [s.state for s in report.sinks] == [ChannelState.FAILED] * 2
        assert source.close_calls == 1
        assert source.started_reads == 0


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestShutdown:
    """request_shutdown at each stage of the session."""

    @pytest.mark.asyncio
    async def test_shutdown_while_relaying(self, relay_settings):
        """Shutdown mid-relay delivers what was read and exits 0."""
        source = QueueSource([b"a", b"b"])
        sink = RecordingSink()
        session = _session(source, [sink], relay_settings)

        run = asyncio.create_task(session.run())
        await wait_until(lambda: len(sink.chunks) == 2)
        session.request_shutdown()
        session.request_shutdown()
        report = await asyncio.wait_for(run, 2)

        assert report.reason == TerminationReason.SHUTDOWN
        assert report.exit_code == 0
        assert sink.received == [b"a", b"b"]
        assert source.close_calls == 1

    @pytest.mark.asyncio
    async def test_shutdown_while_waiting_for_source(self, relay_settings):
        """Shutdown while the source is still connecting ends the session."""
        session = _session(None, [RecordingSink()], relay_settings, fallback=_HangingOpen)

        run = asyncio.create_task(session.run())
        await asyncio.sleep(0.02)
        session.request_shutdown()
        report = await asyncio.wait_for(run, 2)

        assert report.reason == TerminationReason.SHUTDOWN
        assert report.exit_code == 0
        assert report.state == SessionState.TERMINATED

    @pytest.mark.asyncio
    async def test_shutdown_while_waiting_for_sink_peer(self, relay_settings):
        """Shutdown while a sink waits for its peer closes the source unread."""
        source = QueueSource()
        session = _session(source, [], relay_settings, missing=["0.0.0.0:7001"], fallback=_HangingOpen)

        run = asyncio.create_task(session.run())
        await asyncio.sleep(0.02)
        session.request_shutdown()
        report = await asyncio.wait_for(run, 2)

        assert report.reason == TerminationReason.SHUTDOWN
        assert source.close_calls == 1
        assert source.started_reads == 0

    @pytest.mark.asyncio
    async def test_shutdown_during_startup_closes_opened_sinks(self, relay_settings):
        """Sinks that opened before the shutdown are closed, as is the one still waiting."""
        source = QueueSource()
        ready = RecordingSink("ready")
        waiting: list[_HangingOpen] = []

        def hanging(descriptor):
            waiting.append(_HangingOpen(descriptor))
            return waiting[-1]

        session = _session(
            source, [ready], relay_settings, missing=["0.0.0.0:7001"], fallback=hanging
        )

        run = asyncio.create_task(session.run())
        await wait_until(lambda: ready.state == ChannelState.OPEN and waiting)
        session.request_shutdown()
        report = await asyncio.wait_for(run, 2)

        assert report.reason == TerminationReason.SHUTDOWN
        assert ready.close_calls == 1
        assert ready.state == ChannelState.CLOSED
        assert [w.close_calls for w in waiting] == [1]
        assert source.close_calls == 1
