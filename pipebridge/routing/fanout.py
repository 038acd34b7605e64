"""FanoutRouter — pumps chunks from one source to every open sink.

Every chunk read from the source is offered to each sink lane that is still
open, in read order, so each sink sees a FIFO sub-sequence of the source.
Lanes are independent: there is no ordering between sinks, and a failed
sink is removed without affecting the others.

Termination
-----------
- source closes or fails, or shutdown is requested: ``RELAYING ->
  DRAINING`` (queued chunks get ``drain_timeout`` seconds to flush) ``->
  TERMINATED``.
- the last open sink fails: ``RELAYING -> TERMINATED`` at once; the
  pending source read is cancelled and no further reads are issued.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from pipebridge.channels import Channel
from pipebridge.channels.errors import ChannelClosedError, ChannelError
from pipebridge.core.state_machine import SessionStateMachine
from pipebridge.models.channels import ChannelState
from pipebridge.models.session import SessionState, SinkReport, TerminationReason
from pipebridge.routing.lanes import SinkLane

logger = logging.getLogger(__name__)


class FanoutRouter:
    """Routes chunks from a source channel to N sink channels.

    Parameters
    ----------
    source:
        An open, readable channel.  The router reads it but does not close
        it; the owning session does.
    sinks:
        Writable channels in argument order.  Channels that are not open are
        ignored.  The router closes every sink it routes to.
    queue_capacity:
        Per-sink queue bound.
    drain_timeout:
        Grace period, in seconds, for sinks to flush queued chunks.
    machine:
        State machine to drive; a fresh one is created if omitted.
    """

    def __init__(
        self,
        source: Channel,
        sinks: Sequence[Channel],
        *,
        queue_capacity: int = 64,
        drain_timeout: float = 2.0,
        machine: SessionStateMachine | None = None,
    ) -> None:
        self._source = source
        self._sinks = list(sinks)
        self._queue_capacity = queue_capacity
        self._drain_timeout = drain_timeout
        self._machine = machine if machine is not None else SessionStateMachine(source.name)
        self._lanes: list[SinkLane] = []
        self._sinks_exhausted = asyncio.Event()
        self.chunks_read = 0
        self.bytes_read = 0
        self.source_error: str | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._machine.state

    @property
    def lanes(self) -> list[SinkLane]:
        """A copy of the sink lanes, in argument order."""
        return list(self._lanes)

    @property
    def open_lanes(self) -> list[SinkLane]:
        return [lane for lane in self._lanes if lane.is_open]

    def sink_reports(self) -> list[SinkReport]:
        return [lane.report() for lane in self._lanes]

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, shutdown: asyncio.Event | None = None) -> TerminationReason:
        """Relay until the source ends, every sink fails, or *shutdown* is set.

        Returns the reason the router reached ``TERMINATED``.
        """
        open_sinks = [s for s in self._sinks if s.state == ChannelState.OPEN]
        if self._source.state != ChannelState.OPEN or not open_sinks:
            logger.error(
                "Router for %s cannot start: source %s, %d open sink(s).",
                self._source.name,
                self._source.state.value,
                len(open_sinks),
            )
            self._machine.transition(SessionState.TERMINATED)
            return TerminationReason.STARTUP_FAILED

        self._lanes = [
            SinkLane(sink, capacity=self._queue_capacity, on_failed=self._lane_failed)
            for sink in open_sinks
        ]
        for lane in self._lanes:
            lane.start()
        self._machine.transition(SessionState.RELAYING)
        logger.info(
            "Relaying %s -> %s",
            self._source.name,
            ", ".join(lane.name for lane in self._lanes),
        )

        pump = asyncio.create_task(self._pump(), name="pipebridge-source")
        exhausted = asyncio.create_task(self._sinks_exhausted.wait())
        waiters = {pump, exhausted}
        if shutdown is not None:
            waiters.add(asyncio.create_task(shutdown.wait()))

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            pump.cancel()
            raise
        finally:
            for waiter in waiters:
                if waiter is not pump and not waiter.done():
                    waiter.cancel()

        if pump in done:
            reason = pump.result()
        else:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
            if exhausted in done:
                reason = TerminationReason.ALL_SINKS_FAILED
            else:
                reason = TerminationReason.SHUTDOWN
                logger.info("Shutdown requested, stopping source reads.")

        if reason == TerminationReason.ALL_SINKS_FAILED:
            self._machine.transition(SessionState.TERMINATED)
            logger.error("All sinks failed; relay terminated.")
            await self._release_lanes()
        else:
            self._machine.transition(SessionState.DRAINING)
            await self._release_lanes()
            self._machine.transition(SessionState.TERMINATED)
        return reason

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _pump(self) -> TerminationReason:
        while True:
            try:
                chunk = await self._source.read()
            except ChannelClosedError as exc:
                logger.info("Source %s closed: %s", self._source.name, exc)
                return TerminationReason.SOURCE_CLOSED
            except ChannelError as exc:
                self.source_error = str(exc)
                logger.error("Source %s failed: %s", self._source.name, exc)
                return TerminationReason.SOURCE_FAILED

            self.chunks_read += 1
            self.bytes_read += chunk.size
            for lane in self._lanes:
                if lane.is_open:
                    await lane.offer(chunk)
            if not self.open_lanes:
                return TerminationReason.ALL_SINKS_FAILED

    def _lane_failed(self, lane: SinkLane) -> None:
        remaining = len(self.open_lanes)
        logger.warning("Sink %s removed; %d sink(s) remain.", lane.name, remaining)
        if remaining == 0:
            self._sinks_exhausted.set()

    async def _release_lanes(self) -> None:
        """Let each lane flush its queue within the grace period, then stop it."""
        for lane in self._lanes:
            lane.finish()
        tasks = [lane.task for lane in self._lanes if lane.task is not None]
        if not tasks:
            return
        try:
            _, pending = await asyncio.wait(tasks, timeout=self._drain_timeout)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        for task in pending:
            logger.warning(
                "Sink task %s did not drain within %.1fs; cancelling.",
                task.get_name(),
                self._drain_timeout,
            )
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
