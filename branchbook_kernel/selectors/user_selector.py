"""
UserSelector -- read-only identity lookups.

Soft-deleted users are absent from every method here.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from branchbook_kernel.domain.dtos import UserInfo
from branchbook_kernel.domain.roles import Role
from branchbook_kernel.models.user import User
from branchbook_kernel.selectors.base import BaseSelector


class UserSelector(BaseSelector):
    """Queries over live user accounts."""

    def find_by_id(self, user_id: UUID | None) -> UserInfo | None:
        if user_id is None:
            return None
        user = self.session.execute(
            select(User).where(User.id == user_id, User.status_deleted.is_(False))
        ).scalar_one_or_none()
        return UserInfo.from_model(user) if user is not None else None

    def find_by_email(self, email: str) -> UserInfo | None:
        user = self.session.execute(
            select(User).where(
                func.lower(User.email) == email.strip().lower(),
                User.status_deleted.is_(False),
            )
        ).scalar_one_or_none()
        return UserInfo.from_model(user) if user is not None else None

    def email_taken(self, email: str) -> bool:
        """True if any row, live or soft-deleted, holds ``email``."""
        count = self.session.execute(
            select(func.count()).select_from(User).where(
                func.lower(User.email) == email.strip().lower()
            )
        ).scalar_one()
        return count > 0

    def list_created_by(
        self,
        creator_id: UUID,
        role: Role | None = None,
    ) -> list[UserInfo]:
        """Live users provisioned by ``creator_id``, ordered by name."""
        stmt = select(User).where(
            User.created_by_user_id == creator_id,
            User.status_deleted.is_(False),
        )
        if role is not None:
            stmt = stmt.where(User.role == role.value)
        users = self.session.execute(stmt.order_by(User.name, User.email)).scalars()
        return [UserInfo.from_model(u) for u in users]

    def list_by_ids(self, user_ids: set[UUID], role: Role | None = None) -> list[UserInfo]:
        if not user_ids:
            return []
        stmt = select(User).where(
            User.id.in_(user_ids),
            User.status_deleted.is_(False),
        )
        if role is not None:
            stmt = stmt.where(User.role == role.value)
        users = self.session.execute(stmt.order_by(User.name, User.email)).scalars()
        return [UserInfo.from_model(u) for u in users]
