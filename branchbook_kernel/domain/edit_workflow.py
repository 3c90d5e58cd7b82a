"""
Edit workflow -- transaction edit-request lifecycle.

Responsibility:
    Defines the four edit states a transaction can be in, the legal
    transitions between them, and the mapping from the status filter
    strings accepted by ``get_edit_requests`` to states.

Architecture position:
    Kernel > Domain -- pure values, zero I/O.  The guarded writes live in
    ``services/edit_approval_service.py``.

Lifecycle::

    DEFAULT(0)  --request-->       PENDING(1)
    REJECTED(3) --request-->       PENDING(1)
    PENDING(1)  --request-->       PENDING(1)   (different requester only)
    PENDING(1)  --approve-->       APPROVED(2)
    PENDING(1)  --reject-->        REJECTED(3)
    APPROVED(2) --admin update-->  DEFAULT(0)

    A re-request from PENDING replaces the previous requester and reason.
"""

from __future__ import annotations

from enum import IntEnum


class EditState(IntEnum):
    """Value of ``transactions.edit_accepted``."""

    DEFAULT = 0
    PENDING = 1
    APPROVED = 2
    REJECTED = 3


EDIT_TRANSITIONS: dict[EditState, frozenset[EditState]] = {
    EditState.DEFAULT: frozenset({EditState.PENDING}),
    EditState.PENDING: frozenset({
        EditState.PENDING,
        EditState.APPROVED,
        EditState.REJECTED,
    }),
    EditState.APPROVED: frozenset({EditState.DEFAULT}),
    EditState.REJECTED: frozenset({EditState.PENDING}),
}

# States from which an admin may open an edit request.
REQUESTABLE_STATES: frozenset[EditState] = frozenset({
    EditState.DEFAULT,
    EditState.PENDING,
    EditState.REJECTED,
})

STATUS_FILTERS: dict[str, EditState | None] = {
    "pending": EditState.PENDING,
    "approved": EditState.APPROVED,
    "rejected": EditState.REJECTED,
    "all": None,
}


def can_transition(current: EditState | int, target: EditState | int) -> bool:
    """True iff ``current -> target`` is a legal edit-state transition."""
    try:
        current, target = EditState(current), EditState(target)
    except ValueError:
        return False
    return target in EDIT_TRANSITIONS[current]


def parse_status_filter(status: str | int | EditState | None) -> EditState | None:
    """
    Map a status filter onto an EditState; None means every non-default state.

    Raises:
        ValueError: Unknown filter string or out-of-range state.
    """
    if status is None:
        return None
    if isinstance(status, str):
        key = status.strip().lower()
        if key not in STATUS_FILTERS:
            raise ValueError(
                f"Unknown edit status filter '{status}'; "
                f"expected one of {sorted(STATUS_FILTERS)}"
            )
        return STATUS_FILTERS[key]
    return EditState(status)
