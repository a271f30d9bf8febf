"""Purchase state machine transitions enforced by the lifecycle store."""

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"
REFUNDED = "refunded"
CANCELED = "canceled"

# refunded/canceled are only reached through administrative flows.
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {COMPLETED, FAILED, CANCELED},
    COMPLETED: {REFUNDED},
    FAILED: set(),
    REFUNDED: set(),
    CANCELED: set(),
}


class InvalidTransition(ValueError):
    """Requested status change is not part of the purchase lifecycle."""


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Invalid transition: {current} -> {new}")
