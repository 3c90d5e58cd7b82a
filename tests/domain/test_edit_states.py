"""
Tests for the pure edit-request state machine and status filters.
"""

import pytest

from branchbook_kernel.domain.edit_workflow import (
    EDIT_TRANSITIONS,
    REQUESTABLE_STATES,
    EditState,
    can_transition,
    parse_status_filter,
)


class TestTransitions:
    """Legal and illegal edit_accepted moves."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (EditState.DEFAULT, EditState.PENDING),
            (EditState.PENDING, EditState.APPROVED),
            (EditState.PENDING, EditState.REJECTED),
            (EditState.PENDING, EditState.PENDING),
            (EditState.APPROVED, EditState.DEFAULT),
            (EditState.REJECTED, EditState.PENDING),
        ],
    )
    def test_legal(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (EditState.DEFAULT, EditState.APPROVED),
            (EditState.DEFAULT, EditState.REJECTED),
            (EditState.APPROVED, EditState.PENDING),
            (EditState.APPROVED, EditState.REJECTED),
            (EditState.REJECTED, EditState.APPROVED),
            (EditState.REJECTED, EditState.DEFAULT),
        ],
    )
    def test_illegal(self, current, target):
        assert not can_transition(current, target)

    def test_accepts_raw_integers(self):
        assert can_transition(0, 1)
        assert not can_transition(2, 1)

    def test_out_of_range_is_illegal(self):
        assert not can_transition(7, 1)
        assert not can_transition(1, -1)

    def test_every_state_has_an_entry(self):
        assert set(EDIT_TRANSITIONS) == set(EditState)

    def test_approved_is_not_requestable(self):
        assert EditState.APPROVED not in REQUESTABLE_STATES
        assert REQUESTABLE_STATES == {
            state for state in EditState if can_transition(state, EditState.PENDING)
        }

    def test_stored_values(self):
        assert [int(s) for s in EditState] == [0, 1, 2, 3]


class TestStatusFilter:

    def test_default_is_pending(self):
        assert parse_status_filter("pending") == EditState.PENDING

    def test_case_and_whitespace_insensitive(self):
        assert parse_status_filter(" Approved ") == EditState.APPROVED

    def test_all_means_no_state_filter(self):
        assert parse_status_filter("all") is None
        assert parse_status_filter(None) is None

    def test_integer_state(self):
        assert parse_status_filter(3) == EditState.REJECTED

    def test_unknown_string_raises(self):
        with pytest.raises(ValueError, match="Unknown edit status filter"):
            parse_status_filter("archived")

    def test_out_of_range_integer_raises(self):
        with pytest.raises(ValueError):
            parse_status_filter(9)
