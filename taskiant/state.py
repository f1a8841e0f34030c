"""
Taskiant - Store Lifecycle State Machine

Tracks the lifecycle of an encrypted store handle so that operations on a
half-open or closed handle are rejected instead of silently misbehaving.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto


class StoreState(Enum):
    """
    Possible states for an encrypted store handle.

    State transitions:
    CLOSED -> OPENING (open requested)
    OPENING -> OPEN (decrypted, verified, migrated)
    OPENING -> FAILED (bad password, corrupted file, I/O error)
    OPEN -> CLOSED (explicit close)
    FAILED -> OPENING (retry) or CLOSED (discard)
    """

    CLOSED = auto()
    OPENING = auto()
    OPEN = auto()
    FAILED = auto()


# Valid state transitions
VALID_TRANSITIONS: dict[StoreState, set[StoreState]] = {
    StoreState.CLOSED: {StoreState.OPENING},
    StoreState.OPENING: {StoreState.OPEN, StoreState.FAILED},
    StoreState.OPEN: {StoreState.CLOSED},
    StoreState.FAILED: {StoreState.OPENING, StoreState.CLOSED},
}


@dataclass
class StoreLifecycle:
    """Current state of a store handle plus the last failure, if any."""

    state: StoreState = StoreState.CLOSED
    last_error: str | None = None
    changed_at: datetime = field(default_factory=datetime.now)

    def transition_to(self, new_state: StoreState) -> bool:
        """
        Attempt to transition to a new state.

        Returns:
            True if transition was valid and performed, False otherwise
        """
        if new_state in VALID_TRANSITIONS.get(self.state, set()):
            self.state = new_state
            self.changed_at = datetime.now()
            return True
        return False

    def require_transition(self, new_state: StoreState) -> None:
        """
        Transition to a new state, raising an exception if invalid.

        Raises:
            StateTransitionError: If the transition is not valid
        """
        from taskiant.exceptions import StateTransitionError

        if not self.transition_to(new_state):
            valid_targets = VALID_TRANSITIONS.get(self.state, set())
            valid_names = ", ".join(sorted(s.name for s in valid_targets)) or "none"
            raise StateTransitionError(
                f"Invalid store transition: {self.state.name} -> {new_state.name}. "
                f"Valid transitions from {self.state.name}: {valid_names}",
                from_state=self.state.name,
                to_state=new_state.name,
            )

    def fail(self, error: str) -> None:
        """Move an opening handle into FAILED, recording why."""
        self.require_transition(StoreState.FAILED)
        self.last_error = error

    @property
    def is_open(self) -> bool:
        return self.state is StoreState.OPEN
