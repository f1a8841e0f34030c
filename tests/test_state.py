"""Tests for state module - store lifecycle state machine."""

import pytest

from taskiant.exceptions import StateTransitionError
from taskiant.state import VALID_TRANSITIONS, StoreLifecycle, StoreState


class TestStoreState:
    """Tests for StoreState enum and transitions."""

    def test_all_states_have_transitions(self):
        """Every state should have defined transitions."""
        for state in StoreState:
            assert state in VALID_TRANSITIONS

    def test_opening_resolves_to_open_or_failed(self):
        """An open attempt ends in OPEN or FAILED."""
        assert VALID_TRANSITIONS[StoreState.OPENING] == {StoreState.OPEN, StoreState.FAILED}

    def test_open_only_closes(self):
        """An open handle can only be closed."""
        assert VALID_TRANSITIONS[StoreState.OPEN] == {StoreState.CLOSED}

    def test_failed_can_retry_or_close(self):
        """A failed handle may be retried or discarded."""
        assert VALID_TRANSITIONS[StoreState.FAILED] == {StoreState.OPENING, StoreState.CLOSED}


class TestStoreLifecycle:
    """Tests for StoreLifecycle."""

    def test_starts_closed(self):
        """New lifecycle starts CLOSED."""
        lifecycle = StoreLifecycle()
        assert lifecycle.state == StoreState.CLOSED
        assert not lifecycle.is_open

    def test_valid_transition(self):
        """Valid transition returns True and updates the timestamp."""
        lifecycle = StoreLifecycle()
        before = lifecycle.changed_at
        assert lifecycle.transition_to(StoreState.OPENING) is True
        assert lifecycle.state == StoreState.OPENING
        assert lifecycle.changed_at >= before

    def test_invalid_transition(self):
        """Invalid transition returns False and keeps state."""
        lifecycle = StoreLifecycle()
        assert lifecycle.transition_to(StoreState.OPEN) is False
        assert lifecycle.state == StoreState.CLOSED

    def test_require_transition_raises(self):
        """require_transition raises with valid targets listed."""
        lifecycle = StoreLifecycle()
        with pytest.raises(StateTransitionError) as exc_info:
            lifecycle.require_transition(StoreState.OPEN)
        assert exc_info.value.from_state == "CLOSED"
        assert exc_info.value.to_state == "OPEN"
        assert "OPENING" in exc_info.value.message

    def test_full_open_close_cycle(self):
        """CLOSED -> OPENING -> OPEN -> CLOSED."""
        lifecycle = StoreLifecycle()
        lifecycle.require_transition(StoreState.OPENING)
        lifecycle.require_transition(StoreState.OPEN)
        assert lifecycle.is_open
        lifecycle.require_transition(StoreState.CLOSED)
        assert lifecycle.state == StoreState.CLOSED

    def test_fail_records_error(self):
        """fail() moves an opening handle to FAILED."""
        lifecycle = StoreLifecycle()
        lifecycle.require_transition(StoreState.OPENING)
        lifecycle.fail("InvalidCredentialsError")
        assert lifecycle.state == StoreState.FAILED
        assert lifecycle.last_error == "InvalidCredentialsError"

    def test_fail_from_open_is_rejected(self):
        """Only an opening handle can fail."""
        lifecycle = StoreLifecycle()
        lifecycle.require_transition(StoreState.OPENING)
        lifecycle.require_transition(StoreState.OPEN)
        with pytest.raises(StateTransitionError):
            lifecycle.fail("boom")
