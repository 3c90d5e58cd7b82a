"""
Role model (``branchbook_kernel.domain.roles``).

Responsibility
--------------
Closed role enum plus the single capability table that every service
consults.  Role checks are expressed as capabilities, never as string
comparisons against role names.

Architecture position
---------------------
**Kernel domain layer** -- pure values.  ZERO I/O.  May import only from
``exceptions``.
"""

from __future__ import annotations

from enum import Enum

from branchbook_kernel.exceptions import CapabilityRequiredError


class Role(str, Enum):
    """Account roles."""

    MASTER = "master"
    OWNER = "owner"
    CO_OWNER = "co-owner"
    ADMIN = "admin"


class TeamRole(str, Enum):
    """Role of a user inside an owner team."""

    OWNER = "owner"
    CO_OWNER = "co-owner"
    MEMBER = "member"


class MembershipStatus(str, Enum):
    """Lifecycle of a team membership row."""

    ACTIVE = "active"
    INVITED = "invited"
    REMOVED = "removed"


class Capability(str, Enum):
    """Operations gated by role."""

    CREATE_BRANCH = "create_branch"
    MANAGE_BRANCH = "manage_branch"
    MANAGE_DELEGATES = "manage_delegates"
    CREATE_TEAM = "create_team"
    MANAGE_TEAM_MEMBERS = "manage_team_members"
    PROVISION_USERS = "provision_users"
    REQUEST_EDIT = "request_edit"
    DECIDE_EDIT = "decide_edit"
    BYPASS_EDIT_GATE = "bypass_edit_gate"
    VIEW_ALL_BRANCHES = "view_all_branches"
    PURGE_RECORDS = "purge_records"
    VIEW_SYSTEM_LOGS = "view_system_logs"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.MASTER: frozenset({
        Capability.PROVISION_USERS,
        Capability.BYPASS_EDIT_GATE,
        Capability.VIEW_ALL_BRANCHES,
        Capability.PURGE_RECORDS,
        Capability.VIEW_SYSTEM_LOGS,
    }),
    Role.OWNER: frozenset({
        Capability.CREATE_BRANCH,
        Capability.MANAGE_BRANCH,
        Capability.MANAGE_DELEGATES,
        Capability.CREATE_TEAM,
        Capability.MANAGE_TEAM_MEMBERS,
        Capability.PROVISION_USERS,
        Capability.DECIDE_EDIT,
        Capability.BYPASS_EDIT_GATE,
    }),
    Role.CO_OWNER: frozenset({
        Capability.CREATE_BRANCH,
        Capability.MANAGE_BRANCH,
        Capability.MANAGE_DELEGATES,
        Capability.MANAGE_TEAM_MEMBERS,
        Capability.PROVISION_USERS,
        Capability.DECIDE_EDIT,
        Capability.BYPASS_EDIT_GATE,
    }),
    Role.ADMIN: frozenset({
        Capability.REQUEST_EDIT,
    }),
}

# Roles a non-master account may provision.  Owners self-register.
PROVISIONABLE_BY_OWNERS: frozenset[Role] = frozenset({Role.ADMIN, Role.CO_OWNER})


def has_capability(role: Role | str, capability: Capability) -> bool:
    """True iff ``role`` carries ``capability``.  Unknown roles carry nothing."""
    try:
        role = Role(role)
    except ValueError:
        return False
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def require_capability(role: Role | str, capability: Capability) -> None:
    """Raise CapabilityRequiredError unless ``role`` carries ``capability``."""
    if not has_capability(role, capability):
        raise CapabilityRequiredError(
            role.value if isinstance(role, Role) else str(role),
            capability.value,
        )


def team_role_for(role: Role) -> TeamRole | None:
    """Team role a user of ``role`` takes when enrolled; None if not enrollable."""
    if role == Role.OWNER:
        return TeamRole.OWNER
    if role == Role.CO_OWNER:
        return TeamRole.CO_OWNER
    return None
