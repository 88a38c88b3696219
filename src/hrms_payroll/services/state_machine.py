"""Probation state machine with transition validation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from hrms_payroll.calculators.types import ProbationEventType, ProbationState

if TYPE_CHECKING:
    from hrms_payroll.models import ProbationEvent


class TransitionConflictError(Exception):
    """Raised when a probation transition is not allowed from the current state."""

    def __init__(self, from_state: str, to_state: str, reason: str | None = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        msg = f"Invalid probation transition from '{from_state}' to '{to_state}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ProbationStateMachine:
    """State machine for employment probation.

    Allowed transitions:
    - ongoing → passed | failed | extended
    - extended → extended | passed | failed | ongoing
    - passed, failed: terminal
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        ProbationState.ONGOING: [
            ProbationState.PASSED,
            ProbationState.FAILED,
            ProbationState.EXTENDED,
        ],
        ProbationState.EXTENDED: [
            ProbationState.EXTENDED,
            ProbationState.PASSED,
            ProbationState.FAILED,
            ProbationState.ONGOING,
        ],
        ProbationState.PASSED: [],  # Terminal state
        ProbationState.FAILED: [],  # Terminal state
    }

    EVENT_STATES: dict[str, ProbationState] = {
        ProbationEventType.INITIAL: ProbationState.ONGOING,
        ProbationEventType.EXTENSION: ProbationState.EXTENDED,
        ProbationEventType.PASSED: ProbationState.PASSED,
        ProbationEventType.FAILED: ProbationState.FAILED,
    }

    TERMINAL_STATES = {ProbationState.PASSED, ProbationState.FAILED}

    @classmethod
    def can_transition(cls, from_state: str, to_state: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_state, [])
        return to_state in allowed

    @classmethod
    def validate_transition(
        cls, from_state: str, to_state: str, reason: str | None = None
    ) -> None:
        """Validate a transition, raising TransitionConflictError if invalid."""
        if not cls.can_transition(from_state, to_state):
            if reason is None and cls.is_terminal(from_state):
                reason = f"probation already {ProbationState(from_state).value}"
            raise TransitionConflictError(
                ProbationState(from_state).value, ProbationState(to_state).value, reason
            )

    @classmethod
    def is_terminal(cls, state: str) -> bool:
        return state in cls.TERMINAL_STATES

    @classmethod
    def get_next_states(cls, current_state: str) -> list[str]:
        """Get list of valid next states from current state."""
        return cls.VALID_TRANSITIONS.get(current_state, [])

    @classmethod
    def state_for_event(cls, event_type: str) -> ProbationState:
        return cls.EVENT_STATES[ProbationEventType(event_type)]

    @classmethod
    def derive_state(
        cls, events: Sequence[ProbationEvent], has_probation: bool
    ) -> ProbationState:
        """Current state from an event log (any order).

        With no events, an employment that has a probation end date is
        ongoing; one without is treated as already passed.
        """
        if not events:
            return ProbationState.ONGOING if has_probation else ProbationState.PASSED
        latest = max(events, key=lambda e: e.sequence)
        return cls.state_for_event(latest.event_type)
