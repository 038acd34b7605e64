"""pipebridge data models — all Pydantic v2, all frozen (immutable)."""

from pipebridge.models.channels import (
    BOUNDARY_FOR_KIND,
    BoundaryTag,
    ChannelDescriptor,
    ChannelKind,
    ChannelRole,
    ChannelState,
    EndpointPosition,
)
from pipebridge.models.chunks import Chunk
from pipebridge.models.session import (
    VALID_TRANSITIONS,
    ExitStatus,
    SessionReport,
    SessionState,
    SessionTransition,
    SinkPolicy,
    SinkReport,
    TerminationReason,
    exit_status_for,
    policy_for_kind,
)

__all__ = [
    # channels
    "BOUNDARY_FOR_KIND",
    "BoundaryTag",
    "ChannelDescriptor",
    "ChannelKind",
    "ChannelRole",
    "ChannelState",
    "EndpointPosition",
    # chunks
    "Chunk",
    # session
    "VALID_TRANSITIONS",
    "ExitStatus",
    "SessionReport",
    "SessionState",
    "SessionTransition",
    "SinkPolicy",
    "SinkReport",
    "TerminationReason",
    "exit_status_for",
    "policy_for_kind",
]
