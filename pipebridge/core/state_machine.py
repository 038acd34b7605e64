"""Relay session state machine.

Enforces the ``VALID_TRANSITIONS`` table and keeps an ordered history of
every transition for the session report.
"""

from __future__ import annotations

import logging

from pipebridge.models.session import (
    VALID_TRANSITIONS,
    SessionState,
    SessionTransition,
)

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class SessionStateMachine:
    """Tracks one session's state: ``IDLE -> RELAYING -> DRAINING -> TERMINATED``.

    Parameters
    ----------
    label:
        Name used in log lines (usually the source endpoint).
    """

    def __init__(self, label: str = "session") -> None:
        self._label = label
        self._state = SessionState.IDLE
        self._history: list[SessionTransition] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def history(self) -> list[SessionTransition]:
        """A copy of the recorded transitions, oldest first."""
        return list(self._history)

    @property
    def is_terminated(self) -> bool:
        return self._state == SessionState.TERMINATED

    def can_transition(self, target: SessionState) -> bool:
        return target in VALID_TRANSITIONS.get(self._state, set())

    def transition(self, target: SessionState) -> SessionTransition:
        """Move to *target*, recording the change.

        Raises
        ------
        InvalidTransitionError
            If *target* is not reachable from the current state.
        """
        if not self.can_transition(target):
            allowed = sorted(s.value for s in VALID_TRANSITIONS.get(self._state, set()))
            raise InvalidTransitionError(
                f"Cannot transition {self._label} from {self._state.value} to "
                f"{target.value}. Allowed: {allowed}"
            )
        record = SessionTransition(from_state=self._state, to_state=target)
        self._history.append(record)
        self._state = target
        logger.debug("%s: %s -> %s", self._label, record.from_state.value, target.value)
        return record
