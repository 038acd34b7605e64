"""RelaySession — one source bound to its sinks, from connect to termination.

The session opens the source (fatal on failure), opens every sink
concurrently (a failed sink is excluded, not fatal), hands the open
channels to a ``FanoutRouter`` and turns the outcome into a
``SessionReport``.  The report's ``exit_code`` is the process exit status.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from typing import TypeVar

from pipebridge.channels import Channel
from pipebridge.channels.errors import ChannelConnectionError
from pipebridge.config import RelaySettings
from pipebridge.core.connection_manager import ConnectionManager
from pipebridge.core.state_machine import SessionStateMachine
from pipebridge.models.channels import ChannelDescriptor, ChannelState
from pipebridge.models.session import (
    SessionReport,
    SessionState,
    SessionTransition,
    SinkReport,
    TerminationReason,
    policy_for_kind,
)
from pipebridge.routing.fanout import FanoutRouter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _StartupInterrupted(Exception):
    """Shutdown was requested before relaying began."""


class RelaySession:
    """Owns the lifecycle of one relay.

    Parameters
    ----------
    source:
        Readable descriptor (first command-line endpoint).
    sinks:
        Writable descriptors in argument order (one or more).
    settings:
        Relay settings; defaults to a fresh ``RelaySettings()``.
    connections:
        Connection manager; defaults to one built from *settings*.
    """

    def __init__(
        self,
        source: ChannelDescriptor,
        sinks: Sequence[ChannelDescriptor],
        *,
        settings: RelaySettings | None = None,
        connections: ConnectionManager | None = None,
    ) -> None:
        if not source.readable:
            raise ValueError(f"{source.display_name} is not a source endpoint")
        if not sinks:
            raise ValueError("a relay session needs at least one sink")
        for sink in sinks:
            if not sink.writable:
                raise ValueError(f"{sink.display_name} is not a sink endpoint")

        self._source_descriptor = source
        self._sink_descriptors = list(sinks)
        self._settings = settings if settings is not None else RelaySettings()
        self._connections = (
            connections if connections is not None else ConnectionManager(self._settings)
        )
        self._machine = SessionStateMachine(source.display_name)
        self._shutdown = asyncio.Event()
        self._router: FanoutRouter | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._machine.state

    @property
    def history(self) -> list[SessionTransition]:
        return self._machine.history

    @property
    def router(self) -> FanoutRouter | None:
        return self._router

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def request_shutdown(self) -> None:
        """External termination signal: stop reading, drain sinks, exit cleanly."""
        if not self._shutdown.is_set():
            logger.info("Shutdown requested for session %s.", self._source_descriptor.display_name)
            self._shutdown.set()

    async def run(self) -> SessionReport:
        """Connect, relay until termination, and report."""
        try:
            source = await self._until_shutdown(
                self._connections.connect(self._source_descriptor)
            )
        except ChannelConnectionError as exc:
            logger.error("Source %s unavailable: %s", self._source_descriptor.display_name, exc)
            return self._abort(TerminationReason.STARTUP_FAILED, error=str(exc))
        except _StartupInterrupted:
            return self._abort(TerminationReason.SHUTDOWN)

        try:
            return await self._relay_from(source)
        finally:
            await source.close()

    def interrupted_report(self) -> SessionReport:
        """Report for a run that was cancelled before it could finish draining."""
        if not self._machine.is_terminated:
            self._machine.transition(SessionState.TERMINATED)
        router = self._router
        return SessionReport(
            source=self._source_descriptor.display_name,
            state=self._machine.state,
            reason=TerminationReason.SHUTDOWN,
            chunks_read=router.chunks_read if router is not None else 0,
            bytes_read=router.bytes_read if router is not None else 0,
            sinks=router.sink_reports() if router is not None else [],
            history=self._machine.history,
            error="interrupted before sinks finished draining",
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _relay_from(self, source: Channel) -> SessionReport:
        try:
            outcomes = await self._until_shutdown(
                self._connections.connect_sinks(self._sink_descriptors)
            )
        except _StartupInterrupted:
            return self._abort(TerminationReason.SHUTDOWN)

        opened = [o for o in outcomes if not isinstance(o, ChannelConnectionError)]
        if not opened:
            logger.error("No sink could be opened; nothing to relay to.")
            return self._abort(
                TerminationReason.STARTUP_FAILED,
                sinks=self._merge_reports(outcomes, {}),
                error="no sink could be opened",
            )

        self._router = FanoutRouter(
            source,
            opened,
            queue_capacity=self._settings.queue_capacity,
            drain_timeout=self._settings.drain_timeout,
            machine=self._machine,
        )
        reason = await self._router.run(self._shutdown)

        by_channel = {
            id(lane.channel): lane.report() for lane in self._router.lanes
        }
        return SessionReport(
            source=self._source_descriptor.display_name,
            state=self._machine.state,
            reason=reason,
            chunks_read=self._router.chunks_read,
            bytes_read=self._router.bytes_read,
            sinks=self._merge_reports(outcomes, by_channel),
            history=self._machine.history,
            error=self._router.source_error,
        )

    async def _until_shutdown(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless shutdown is requested first."""
        task = asyncio.ensure_future(awaitable)
        stop = asyncio.create_task(self._shutdown.wait())
        try:
            done, _ = await asyncio.wait({task, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
        if task in done:
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise _StartupInterrupted()

    def _merge_reports(
        self,
        outcomes: Sequence[Channel | ChannelConnectionError],
        by_channel: dict[int, SinkReport],
    ) -> list[SinkReport]:
        """One report per sink descriptor, in argument order."""
        reports: list[SinkReport] = []
        for descriptor, outcome in zip(self._sink_descriptors, outcomes):
            if isinstance(outcome, ChannelConnectionError):
                reports.append(
                    SinkReport(
                        name=descriptor.display_name,
                        kind=descriptor.kind,
                        policy=policy_for_kind(descriptor.kind),
                        state=ChannelState.FAILED,
                        error=str(outcome),
                    )
                )
            else:
                reports.append(
                    by_channel.get(id(outcome))
                    or SinkReport(
                        name=outcome.name,
                        kind=outcome.kind,
                        policy=policy_for_kind(outcome.kind),
                        state=outcome.state,
                    )
                )
        return reports

    def _abort(
        self,
        reason: TerminationReason,
        *,
        sinks: list[SinkReport] | None = None,
        error: str | None = None,
    ) -> SessionReport:
        if not self._machine.is_terminated:
            self._machine.transition(SessionState.TERMINATED)
        return SessionReport(
            source=self._source_descriptor.display_name,
            state=self._machine.state,
            reason=reason,
            sinks=sinks or [],
            history=self._machine.history,
            error=error,
        )
