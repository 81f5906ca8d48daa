"""Alignment session state machine for managing valid state transitions."""

from enum import Enum


class SessionState(Enum):
    """Alignment session state enumeration."""

    IDLE = "idle"
    AWAITING_RESULT = "awaiting_result"
    READY_FOR_REVIEW = "ready_for_review"


class SessionEvent(Enum):
    """Notifications emitted by an alignment session."""

    READY_FOR_REVIEW = "alignment_ready_for_review"
    ACCEPTED = "alignment_accepted"
    REJECTED = "alignment_rejected"
    MODIFIED = "alignment_modified"
    FAILED_TO_RUN = "alignment_failed_to_run"


# Valid state transition matrix
VALID_TRANSITIONS: dict[str, set[str]] = {
    SessionState.IDLE.value: {SessionState.AWAITING_RESULT.value},
    SessionState.AWAITING_RESULT.value: {
        SessionState.READY_FOR_REVIEW.value,
        SessionState.IDLE.value,  # Computation failed or session reset
    },
    SessionState.READY_FOR_REVIEW.value: {SessionState.IDLE.value},
}


def validate_transition(current_state: str, next_state: str) -> tuple[bool, str | None]:
    """
    Validate if a state transition is allowed.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if current_state not in VALID_TRANSITIONS:
        return False, f"Unknown current state: {current_state}"

    if next_state not in VALID_TRANSITIONS:
        return False, f"Unknown next state: {next_state}"

    allowed_next = VALID_TRANSITIONS[current_state]
    if next_state not in allowed_next:
        return (
            False,
            f"Invalid transition from {current_state} to {next_state}. "
            f"Allowed transitions: {', '.join(sorted(allowed_next))}",
        )

    return True, None
