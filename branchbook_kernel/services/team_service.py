"""
TeamService -- the owner-team graph.

Responsibility:
    Creates owner teams, manages their membership rows and answers the
    "does this user reach this team" question that the access resolver and
    subscription gate build on.

Architecture position:
    Kernel > Services.  Depends on selectors and domain only.

Invariants enforced:
    - A team's creator is enrolled as an active ``owner`` member.
    - One membership row per (team, user): re-adding reactivates in place.
    - Only owner and co-owner accounts become members; their team role
      mirrors their account role.  A caller may only lower it to ``member``.
    - The primary owner cannot be removed; only the primary owner may
      rename or delete the team.
    - Deleting a team detaches its branches before dropping memberships.

Failure modes:
    - TeamNotFoundError, UserNotFoundError for unknown ids.
    - CapabilityRequiredError / AccessDeniedError when the actor may not
      manage the team.
    - InvalidRoleError when enrolling an admin or master account, or when
      the requested team role is neither the mirrored one nor ``member``.
    - PrimaryOwnerRemovalError, TeamOwnershipRequiredError, ValidationError.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import case, delete, or_, select, update
from sqlalchemy.orm import Session

from branchbook_kernel.domain.clock import Clock
from branchbook_kernel.domain.dtos import Actor, TeamInfo, TeamMemberInfo
from branchbook_kernel.domain.roles import (
    Capability,
    MembershipStatus,
    Role,
    TeamRole,
    require_capability,
    team_role_for,
)
from branchbook_kernel.exceptions import (
    AccessDeniedError,
    InvalidRoleError,
    PrimaryOwnerRemovalError,
    TeamNotFoundError,
    TeamOwnershipRequiredError,
    UserNotFoundError,
    ValidationError,
)
from branchbook_kernel.logging_config import LogContext, get_logger
from branchbook_kernel.models.branch import Branch
from branchbook_kernel.models.team import OwnerTeam, OwnerTeamMember
from branchbook_kernel.models.user import User
from branchbook_kernel.selectors.user_selector import UserSelector
from branchbook_kernel.services.activity_recorder import ActivityRecorder, ActivitySink
from branchbook_kernel.services.base import BaseService

logger = get_logger("services.team")

_ROLE_ORDER = case(
    {
        TeamRole.OWNER.value: 0,
        TeamRole.CO_OWNER.value: 1,
        TeamRole.MEMBER.value: 2,
    },
    value=OwnerTeamMember.role,
    else_=3,
)


class TeamService(BaseService):
    """Team graph reads and writes."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        activity: ActivitySink | None = None,
    ):
        super().__init__(session, clock)
        self._users = UserSelector(session)
        self._activity = activity or ActivityRecorder(session, clock=self._clock)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _get_team(self, team_id: UUID) -> OwnerTeam:
        team = self.session.get(OwnerTeam, team_id)
        if team is None:
            raise TeamNotFoundError(str(team_id))
        return team

    def get_team(self, team_id: UUID) -> TeamInfo:
        return TeamInfo.from_model(self._get_team(team_id))

    def user_has_team_access(self, user_id: UUID | None, team_id: UUID | None) -> bool:
        """Primary owner, or an active membership of any role."""
        if user_id is None or team_id is None:
            return False
        team = self.session.get(OwnerTeam, team_id)
        if team is None:
            return False
        if team.primary_owner_id == user_id:
            return True
        row = self.session.execute(
            select(OwnerTeamMember.id).where(
                OwnerTeamMember.team_id == team_id,
                OwnerTeamMember.user_id == user_id,
                OwnerTeamMember.status == MembershipStatus.ACTIVE.value,
            )
        ).first()
        return row is not None

    def team_ids_for_user(self, user_id: UUID | None) -> set[UUID]:
        """Ids of teams the user is an active member or primary owner of."""
        if user_id is None:
            return set()
        member_of = select(OwnerTeamMember.team_id).where(
            OwnerTeamMember.user_id == user_id,
            OwnerTeamMember.status == MembershipStatus.ACTIVE.value,
        )
        return set(self.session.execute(
            select(OwnerTeam.id).where(
                or_(
                    OwnerTeam.primary_owner_id == user_id,
                    OwnerTeam.id.in_(member_of),
                )
            )
        ).scalars())

    def find_teams_for_user(self, user_id: UUID) -> list[TeamInfo]:
        ids = self.team_ids_for_user(user_id)
        if not ids:
            return []
        teams = self.session.execute(
            select(OwnerTeam)
            .where(OwnerTeam.id.in_(ids))
            .order_by(OwnerTeam.created_at, OwnerTeam.name)
        ).scalars()
        return [TeamInfo.from_model(t) for t in teams]

    def get_members(self, team_id: UUID) -> list[TeamMemberInfo]:
        """Active members, ordered by team role then join time."""
        self._get_team(team_id)
        rows = self.session.execute(
            select(OwnerTeamMember, User)
            .join(User, User.id == OwnerTeamMember.user_id)
            .where(
                OwnerTeamMember.team_id == team_id,
                OwnerTeamMember.status == MembershipStatus.ACTIVE.value,
                User.status_deleted.is_(False),
            )
            .order_by(_ROLE_ORDER, OwnerTeamMember.joined_at, User.name)
        ).all()
        return [self._member_dto(member, user) for member, user in rows]

    def owner_member_ids(self, team_id: UUID) -> list[UUID]:
        """Live users holding an active ``owner`` team role."""
        return list(self.session.execute(
            select(OwnerTeamMember.user_id)
            .join(User, User.id == OwnerTeamMember.user_id)
            .where(
                OwnerTeamMember.team_id == team_id,
                OwnerTeamMember.status == MembershipStatus.ACTIVE.value,
                OwnerTeamMember.role == TeamRole.OWNER.value,
                User.status_deleted.is_(False),
            )
            .order_by(OwnerTeamMember.joined_at)
        ).scalars())

    def list_teams(self, actor: Actor) -> list[TeamInfo]:
        """A co-owner sees its creator's teams; everyone else their own."""
        if actor.role == Role.CO_OWNER and actor.created_by_user_id is not None:
            return self.find_teams_for_user(actor.created_by_user_id)
        return self.find_teams_for_user(actor.id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_team(self, actor: Actor, name: str) -> TeamInfo:
        require_capability(actor.role, Capability.CREATE_TEAM)
        name = self._clean_name(name)
        now = self._clock.now()

        team = OwnerTeam(name=name, primary_owner_id=actor.id, created_at=now, updated_at=now)
        self.session.add(team)
        self.session.flush()

        self.session.add(OwnerTeamMember(
            team_id=team.id,
            user_id=actor.id,
            role=TeamRole.OWNER.value,
            status=MembershipStatus.ACTIVE.value,
            joined_at=now,
            created_at=now,
            updated_at=now,
        ))
        self.session.flush()

        logger.info(
            "team_created",
            extra={"team_id": str(team.id), "primary_owner_id": str(actor.id)},
        )
        self._audit(actor, "team_created", team.id, name=name)
        return TeamInfo.from_model(team)

    def add_member(
        self,
        actor: Actor,
        team_id: UUID,
        user_id: UUID,
        role: TeamRole | str | None = None,
    ) -> TeamMemberInfo:
        team = self._get_team(team_id)
        self._require_manageable(actor, team)

        user = self._users.find_by_id(user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))
        mirrored = team_role_for(user.role)
        if mirrored is None:
            raise InvalidRoleError(str(user_id), "owner or co-owner", user.role.value)
        team_role = TeamRole(role) if role is not None else mirrored
        if team_role not in (mirrored, TeamRole.MEMBER):
            raise InvalidRoleError(
                str(user_id), f"{mirrored.value} or member", team_role.value,
            )
        now = self._clock.now()

        member = self.session.execute(
            select(OwnerTeamMember).where(
                OwnerTeamMember.team_id == team_id,
                OwnerTeamMember.user_id == user_id,
            )
        ).scalar_one_or_none()

        if member is None:
            member = OwnerTeamMember(
                team_id=team_id,
                user_id=user_id,
                created_at=now,
            )
            self.session.add(member)
            event = "team_member_added"
        else:
            event = "team_member_reactivated"

        member.role = team_role.value
        member.status = MembershipStatus.ACTIVE.value
        member.invited_by = actor.id
        member.joined_at = now
        member.updated_at = now
        self.session.flush()

        with LogContext.bind(team_id=team_id, actor_id=actor.id):
            logger.info(event, extra={"user_id": str(user_id), "role": team_role.value})
        self._audit(actor, event, team_id, member_id=user_id, role=team_role.value)

        db_user = self.session.get(User, user_id)
        return self._member_dto(member, db_user)

    def remove_member(self, actor: Actor, team_id: UUID, user_id: UUID) -> None:
        team = self._get_team(team_id)
        self._require_manageable(actor, team)

        if team.primary_owner_id == user_id:
            raise PrimaryOwnerRemovalError(str(team_id), str(user_id))

        member = self.session.execute(
            select(OwnerTeamMember).where(
                OwnerTeamMember.team_id == team_id,
                OwnerTeamMember.user_id == user_id,
                OwnerTeamMember.status != MembershipStatus.REMOVED.value,
            )
        ).scalar_one_or_none()
        if member is None:
            raise ValidationError(
                f"User {user_id} is not a member of team {team_id}", field="user_id",
            )

        member.status = MembershipStatus.REMOVED.value
        member.updated_at = self._clock.now()
        self.session.flush()

        with LogContext.bind(team_id=team_id, actor_id=actor.id):
            logger.info("team_member_removed", extra={"user_id": str(user_id)})
        self._audit(actor, "team_member_removed", team_id, member_id=user_id)

    def rename_team(self, actor: Actor, team_id: UUID, name: str) -> TeamInfo:
        team = self._get_team(team_id)
        if team.primary_owner_id != actor.id:
            raise TeamOwnershipRequiredError(str(team_id), str(actor.id), "rename")
        old_name = team.name
        team.name = self._clean_name(name)
        team.updated_at = self._clock.now()
        self.session.flush()
        logger.info("team_renamed", extra={"team_id": str(team_id)})
        self._audit(actor, "team_renamed", team_id, old_name=old_name, new_name=team.name)
        return TeamInfo.from_model(team)

    def delete_team(self, actor: Actor, team_id: UUID) -> None:
        team = self._get_team(team_id)
        if team.primary_owner_id != actor.id:
            raise TeamOwnershipRequiredError(str(team_id), str(actor.id), "delete")

        detached = self.session.execute(
            update(Branch).where(Branch.team_id == team_id).values(team_id=None)
        ).rowcount
        self.session.execute(
            delete(OwnerTeamMember).where(OwnerTeamMember.team_id == team_id)
        )
        self.session.delete(team)
        self.session.flush()

        logger.info(
            "team_deleted",
            extra={"team_id": str(team_id), "detached_branches": detached},
        )
        self._audit(actor, "team_deleted", team_id, detached_branches=detached)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _audit(self, actor: Actor, event: str, team_id: UUID, **context: object) -> None:
        self._activity.record_system(
            "info", "team", event, context={"team_id": team_id, **context}, user_id=actor.id,
        )

    def _require_manageable(self, actor: Actor, team: OwnerTeam) -> None:
        require_capability(actor.role, Capability.MANAGE_TEAM_MEMBERS)
        if not self.user_has_team_access(actor.id, team.id):
            raise AccessDeniedError(str(actor.id), "team", str(team.id))
        if actor.role == Role.CO_OWNER and actor.created_by_user_id is not None:
            if not self.user_has_team_access(actor.created_by_user_id, team.id):
                raise AccessDeniedError(str(actor.id), "team", str(team.id))

    @staticmethod
    def _clean_name(name: str | None) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError("Team name is required", field="name")
        return cleaned

    @staticmethod
    def _member_dto(member: OwnerTeamMember, user: User) -> TeamMemberInfo:
        return TeamMemberInfo(
            team_id=member.team_id,
            user_id=member.user_id,
            name=user.name,
            email=user.email,
            user_role=Role(user.role),
            role=TeamRole(member.role),
            status=MembershipStatus(member.status),
            invited_by=member.invited_by,
            joined_at=member.joined_at,
        )
