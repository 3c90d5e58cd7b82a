"""Pure domain layer: roles, edit workflow, DTOs, clock, lookup cache."""

from branchbook_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from branchbook_kernel.domain.edit_workflow import EditState
from branchbook_kernel.domain.roles import (
    Capability,
    MembershipStatus,
    Role,
    TeamRole,
    has_capability,
    require_capability,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "EditState",
    "Capability",
    "Role",
    "TeamRole",
    "MembershipStatus",
    "has_capability",
    "require_capability",
]
