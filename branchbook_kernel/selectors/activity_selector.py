"""
ActivitySelector -- paged reads over the audit tables.

Scoping is the caller's job: ``find_activity`` takes the set of branch ids
the caller may see (None for unscoped readers).  Rows are returned newest
first with the row id as tie-breaker so paging is stable.
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import ColumnElement, func, select

from branchbook_kernel.domain.dtos import ActivityLogInfo, LogPage, SystemLogInfo
from branchbook_kernel.models.activity_log import ActivityLog, SystemLog
from branchbook_kernel.selectors.base import BaseSelector


class ActivitySelector(BaseSelector):
    """Activity and system log queries."""

    def find_activity(
        self,
        branch_ids: Collection[UUID] | None,
        *,
        user_id: UUID | None = None,
        action: str | None = None,
        entity_type: str | None = None,
        entity_id: UUID | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> LogPage:
        if branch_ids is not None and not branch_ids:
            return LogPage(items=(), total=0, page=page, limit=limit)

        filters: list[ColumnElement[bool]] = []
        if branch_ids is not None:
            filters.append(ActivityLog.branch_id.in_(branch_ids))
        if user_id is not None:
            filters.append(ActivityLog.user_id == user_id)
        if action:
            filters.append(ActivityLog.action == action)
        if entity_type:
            filters.append(ActivityLog.entity_type == entity_type)
        if entity_id is not None:
            filters.append(ActivityLog.entity_id == str(entity_id))
        filters.extend(_window(ActivityLog.created_at, start, end))
        return self._page(ActivityLog, ActivityLogInfo, filters, page, limit)

    def find_system(
        self,
        *,
        level: str | None = None,
        category: str | None = None,
        user_id: UUID | None = None,
        branch_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> LogPage:
        filters: list[ColumnElement[bool]] = []
        if level:
            filters.append(SystemLog.level == level)
        if category:
            filters.append(SystemLog.category == category)
        if user_id is not None:
            filters.append(SystemLog.user_id == user_id)
        if branch_id is not None:
            filters.append(SystemLog.branch_id == branch_id)
        filters.extend(_window(SystemLog.created_at, start, end))
        return self._page(SystemLog, SystemLogInfo, filters, page, limit)

    def _page(
        self,
        model: Any,
        dto: Any,
        filters: list[ColumnElement[bool]],
        page: int,
        limit: int,
    ) -> LogPage:
        total = self.session.execute(
            select(func.count()).select_from(model).where(*filters)
        ).scalar_one()
        rows = self.session.execute(
            select(model)
            .where(*filters)
            .order_by(model.created_at.desc(), model.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()
        return LogPage(
            items=tuple(dto.from_model(row) for row in rows),
            total=total,
            page=page,
            limit=limit,
        )


def _window(
    column: Any,
    start: datetime | None,
    end: datetime | None,
) -> list[ColumnElement[bool]]:
    """Inclusive ``created_at`` bounds."""
    bounds: list[ColumnElement[bool]] = []
    if start is not None:
        bounds.append(column >= start)
    if end is not None:
        bounds.append(column <= end)
    return bounds
