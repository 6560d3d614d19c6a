"""QueueEntry status state machine.

State Flow:
    waiting → matched | expired | cancelled

Terminal States: matched, expired, cancelled
"""

from enum import Enum


class QueueStatus(str, Enum):
    """Queue entry status enumeration."""
    WAITING = "waiting"
    MATCHED = "matched"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS = {
    QueueStatus.WAITING: [
        QueueStatus.MATCHED,
        QueueStatus.EXPIRED,
        QueueStatus.CANCELLED,
    ],
    QueueStatus.MATCHED: [],  # Terminal state
    QueueStatus.EXPIRED: [],  # Terminal state
    QueueStatus.CANCELLED: [],  # Terminal state
}


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""
    pass


def can_transition(current_status: QueueStatus, new_status: QueueStatus) -> bool:
    """Check whether a transition is allowed."""
    return new_status in ALLOWED_TRANSITIONS.get(current_status, [])


def validate_transition(current_status: QueueStatus, new_status: QueueStatus) -> None:
    """Validate that a state transition is allowed.

    Raises:
        StateTransitionError: If transition is not allowed
    """
    allowed = ALLOWED_TRANSITIONS.get(current_status, [])
    if new_status not in allowed:
        raise StateTransitionError(
            f"Invalid transition: {current_status.value} -> {new_status.value}. "
            f"Allowed transitions from {current_status.value}: "
            f"{[s.value for s in allowed]}"
        )


def is_terminal(status: QueueStatus) -> bool:
    """Check whether a status has no outgoing transitions."""
    return not ALLOWED_TRANSITIONS.get(status, [])
