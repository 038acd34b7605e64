"""Relay session models — state machine, sink policies and the final report."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field

from pipebridge.models.channels import ChannelKind, ChannelState


class SessionState(str, Enum):
    """Lifecycle of one source bound to its sinks."""

    IDLE = "idle"
    RELAYING = "relaying"
    DRAINING = "draining"
    TERMINATED = "terminated"


# TERMINATED has no outgoing transitions.
VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.RELAYING, SessionState.TERMINATED},
    SessionState.RELAYING: {SessionState.DRAINING, SessionState.TERMINATED},
    SessionState.DRAINING: {SessionState.TERMINATED},
    SessionState.TERMINATED: set(),
}


class SinkPolicy(str, Enum):
    """What a sink queue does when it is full."""

    DROP_OLDEST = "drop_oldest"
    BLOCK = "block"


def policy_for_kind(kind: ChannelKind) -> SinkPolicy:
    """Stdio sinks apply backpressure; datagram and frame sinks shed load."""
    if kind == ChannelKind.STDIO:
        return SinkPolicy.BLOCK
    return SinkPolicy.DROP_OLDEST


class TerminationReason(str, Enum):
    SOURCE_CLOSED = "source_closed"
    SOURCE_FAILED = "source_failed"
    ALL_SINKS_FAILED = "all_sinks_failed"
    SHUTDOWN = "shutdown"
    STARTUP_FAILED = "startup_failed"


class ExitStatus(IntEnum):
    OK = 0
    FAILURE = 1
    USAGE = 2


_EXIT_FOR_REASON: dict[TerminationReason, ExitStatus] = {
    TerminationReason.SOURCE_CLOSED: ExitStatus.OK,
    TerminationReason.SHUTDOWN: ExitStatus.OK,
    TerminationReason.SOURCE_FAILED: ExitStatus.FAILURE,
    TerminationReason.ALL_SINKS_FAILED: ExitStatus.FAILURE,
    TerminationReason.STARTUP_FAILED: ExitStatus.FAILURE,
}


def exit_status_for(reason: TerminationReason) -> ExitStatus:
    """Map a termination reason to the process exit status."""
    return _EXIT_FOR_REASON[reason]


class SessionTransition(BaseModel):
    """One recorded state change of a relay session."""

    model_config = ConfigDict(frozen=True)

    from_state: SessionState
    to_state: SessionState
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SinkReport(BaseModel):
    """Delivery counters and final state for one sink."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: ChannelKind
    policy: SinkPolicy
    state: ChannelState
    delivered: int = 0
    dropped: int = 0
    oversized: int = 0
    error: str | None = None

    @property
    def survived(self) -> bool:
        """``True`` if the sink never failed during the session."""
        return self.state != ChannelState.FAILED


class SessionReport(BaseModel):
    """A frozen summary of a finished relay session."""

    model_config = ConfigDict(frozen=True)

    source: str
    state: SessionState
    reason: TerminationReason
    chunks_read: int = 0
    bytes_read: int = 0
    sinks: list[SinkReport] = []
    history: list[SessionTransition] = []
    error: str | None = None

    @property
    def exit_code(self) -> int:
        return int(exit_status_for(self.reason))

    @property
    def surviving_sinks(self) -> list[str]:
        return [s.name for s in self.sinks if s.survived]
