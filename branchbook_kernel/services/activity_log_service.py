"""
ActivityLogService -- access-scoped reads of the audit trail.

Responsibility:
    Lists activity rows the caller may see and, for masters, system rows.

Architecture position:
    Kernel > Services.  Scoping comes from AccessResolver; queries from
    ActivitySelector.

Invariants enforced:
    - Owners and co-owners see rows of every branch they reach; admins see
      rows of the branches they are delegated to.  The scope is read from
      storage on every call.
    - An explicit ``branch_id`` must pass ``require_access``.
    - VIEW_ALL_BRANCHES roles read unscoped, including rows of purged
      branches.
    - System rows require VIEW_SYSTEM_LOGS.

Failure modes:
    - AccessDeniedError, BranchNotFoundError for an explicit branch.
    - CapabilityRequiredError from ``list_system_logs``.
    - ValidationError for a bad page, limit or window.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from branchbook_kernel.domain.clock import Clock
from branchbook_kernel.domain.dtos import Actor, LogPage
from branchbook_kernel.domain.roles import Capability, has_capability, require_capability
from branchbook_kernel.exceptions import ValidationError
from branchbook_kernel.logging_config import get_logger
from branchbook_kernel.selectors.activity_selector import ActivitySelector
from branchbook_kernel.services.access_resolver import AccessResolver
from branchbook_kernel.services.base import BaseService

logger = get_logger("services.activity_log")

MAX_PAGE_SIZE = 1000


class ActivityLogService(BaseService):
    """Read side of the audit trail."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        resolver: AccessResolver | None = None,
        default_page_size: int = 50,
    ):
        super().__init__(session, clock)
        self._resolver = resolver or AccessResolver(session)
        self._logs = ActivitySelector(session)
        self._default_page_size = default_page_size

    def list_activity(
        self,
        actor: Actor,
        branch_id: UUID | None = None,
        user_id: UUID | None = None,
        action: str | None = None,
        entity_type: str | None = None,
        entity_id: UUID | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> LogPage:
        limit = self._check_paging(page, limit, start, end)
        return self._logs.find_activity(
            self._scope(actor, branch_id),
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            start=start,
            end=end,
            page=page,
            limit=limit,
        )

    def get_entity_logs(
        self,
        actor: Actor,
        entity_type: str,
        entity_id: UUID | str,
        page: int = 1,
        limit: int | None = None,
    ) -> LogPage:
        """History of one entity, limited to the branches the actor reaches."""
        if not entity_type:
            raise ValidationError("entity_type is required", field="entity_type")
        return self.list_activity(
            actor, entity_type=entity_type, entity_id=entity_id, page=page, limit=limit,
        )

    def list_system_logs(
        self,
        actor: Actor,
        level: str | None = None,
        category: str | None = None,
        user_id: UUID | None = None,
        branch_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> LogPage:
        require_capability(actor.role, Capability.VIEW_SYSTEM_LOGS)
        limit = self._check_paging(page, limit, start, end)
        return self._logs.find_system(
            level=level,
            category=category,
            user_id=user_id,
            branch_id=branch_id,
            start=start,
            end=end,
            page=page,
            limit=limit,
        )

    def _scope(self, actor: Actor, branch_id: UUID | None) -> set[UUID] | None:
        unscoped = has_capability(actor.role, Capability.VIEW_ALL_BRANCHES)
        if branch_id is not None:
            if not unscoped:
                self._resolver.require_access(actor, branch_id)
            return {branch_id}
        if unscoped:
            return None
        ids = self._resolver.accessible_branch_ids(actor.id, actor.role)
        logger.debug(
            "activity_scope_resolved",
            extra={"user_id": str(actor.id), "branch_count": len(ids)},
        )
        return ids

    def _check_paging(
        self,
        page: int,
        limit: int | None,
        start: datetime | None,
        end: datetime | None,
    ) -> int:
        limit = limit or self._default_page_size
        if page < 1:
            raise ValidationError("page must be positive", field="page")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")
        if start is not None and end is not None and start > end:
            raise ValidationError("start must not be after end", field="start")
        return limit
