"""
ActivityRecorder -- best-effort audit trail.

Responsibility:
    Writes one ``ActivityLog`` row per mutating operation, with a snapshot of
    the actor's and branch's display fields and a field-level diff of the
    entity, plus ``SystemLog`` rows for system-level events.

Architecture position:
    Kernel > Services.  Called by every mutating service through the
    ``ActivitySink`` protocol.  Branch-scoped changes become activity rows;
    events with no live branch become system rows.

Invariants enforced:
    - Each write runs inside a SAVEPOINT, so a failing audit insert never
      poisons the caller's transaction.
    - Activity rows always name a branch.  Calls without an actor or branch,
      or whose actor/branch cannot be found, are skipped.
    - Display snapshots are served from the injected ``LookupCache``; access
      decisions never read this cache.

Failure modes:
    None surface to the caller.  Storage errors are logged as
    ``activity_log_write_failed`` / ``system_log_write_failed``.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from branchbook_kernel.domain.cache import LookupCache, NullCache
from branchbook_kernel.domain.clock import Clock
from branchbook_kernel.logging_config import get_logger
from branchbook_kernel.models.activity_log import ActivityLog, SystemLog
from branchbook_kernel.models.branch import Branch
from branchbook_kernel.models.user import User
from branchbook_kernel.services.base import BaseService

logger = get_logger("services.activity")


class ActivitySink(Protocol):
    """Receives audit records from mutating services."""

    def record_activity(
        self,
        actor_id: UUID | None,
        action: str,
        entity_type: str,
        entity_id: UUID | str | None,
        branch_id: UUID | None,
        before: Mapping[str, Any] | None = None,
        after: Mapping[str, Any] | None = None,
        status: str = "success",
        error_message: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> UUID | None: ...

    def record_system(
        self,
        level: str,
        category: str,
        message: str,
        context: Mapping[str, Any] | None = None,
        user_id: UUID | None = None,
        branch_id: UUID | None = None,
        error_code: str | None = None,
        stack_trace: str | None = None,
    ) -> UUID | None: ...


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value


def compute_changes(
    before: Mapping[str, Any] | None,
    after: Mapping[str, Any] | None,
) -> dict[str, dict[str, Any]] | None:
    """
    Field-level diff ``{field: {"old": ..., "new": ...}}``.

    Returns None when either side is missing.  Fields whose JSON form is
    unchanged are omitted.
    """
    if before is None or after is None:
        return None
    old, new = _jsonable(before), _jsonable(after)
    changes: dict[str, dict[str, Any]] = {}
    for key in sorted(set(old) | set(new)):
        if old.get(key) != new.get(key):
            changes[key] = {"old": old.get(key), "new": new.get(key)}
    return changes


class ActivityRecorder(BaseService):
    """SQL implementation of ``ActivitySink``."""

    def __init__(
        self,
        session: Session,
        cache: LookupCache | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._cache = cache if cache is not None else NullCache()

    # ------------------------------------------------------------------
    # Display snapshots
    # ------------------------------------------------------------------

    def _actor_snapshot(self, user_id: UUID) -> tuple[str, str, str] | None:
        key = ("user", user_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        row = self.session.execute(
            select(User.name, User.email, User.role).where(User.id == user_id)
        ).first()
        if row is None:
            return None
        snapshot = (row.name, row.email, row.role)
        self._cache.put(key, snapshot)
        return snapshot

    def _branch_name(self, branch_id: UUID) -> str | None:
        key = ("branch", branch_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        name = self.session.execute(
            select(Branch.name).where(Branch.id == branch_id)
        ).scalar_one_or_none()
        if name is not None:
            self._cache.put(key, name)
        return name

    def forget(self, entity: str, entity_id: UUID) -> None:
        """Drop a cached snapshot after the underlying row was renamed."""
        self._cache.invalidate((entity, entity_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_activity(
        self,
        actor_id: UUID | None,
        action: str,
        entity_type: str,
        entity_id: UUID | str | None,
        branch_id: UUID | None,
        before: Mapping[str, Any] | None = None,
        after: Mapping[str, Any] | None = None,
        status: str = "success",
        error_message: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> UUID | None:
        if actor_id is None or branch_id is None:
            logger.debug(
                "activity_log_skipped",
                extra={"action": action, "reason": "missing actor or branch"},
            )
            return None

        try:
            actor = self._actor_snapshot(actor_id)
            branch_name = self._branch_name(branch_id)
            if actor is None or branch_name is None:
                logger.debug(
                    "activity_log_skipped",
                    extra={"action": action, "reason": "unknown actor or branch"},
                )
                return None

            user_name, user_email, user_role = actor
            row = ActivityLog(
                user_id=actor_id,
                user_name=user_name,
                user_email=user_email,
                user_role=user_role,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
                branch_id=branch_id,
                branch_name=branch_name,
                old_values=_jsonable(before) if before is not None else None,
                new_values=_jsonable(after) if after is not None else None,
                changes=compute_changes(before, after),
                status=status,
                error_message=error_message,
                extra_metadata=_jsonable(metadata) if metadata is not None else None,
                created_at=self._clock.now(),
            )
            with self.session.begin_nested():
                self.session.add(row)
        except SQLAlchemyError:
            logger.warning(
                "activity_log_write_failed",
                extra={"action": action, "entity_type": entity_type},
                exc_info=True,
            )
            return None

        logger.debug(
            "activity_logged",
            extra={"action": action, "entity_type": entity_type, "log_id": str(row.id)},
        )
        return row.id

    def record_system(
        self,
        level: str,
        category: str,
        message: str,
        context: Mapping[str, Any] | None = None,
        user_id: UUID | None = None,
        branch_id: UUID | None = None,
        error_code: str | None = None,
        stack_trace: str | None = None,
    ) -> UUID | None:
        try:
            row = SystemLog(
                level=level,
                category=category,
                message=message,
                context=_jsonable(context) if context is not None else None,
                user_id=user_id,
                branch_id=branch_id,
                error_code=error_code,
                stack_trace=stack_trace,
                created_at=self._clock.now(),
            )
            with self.session.begin_nested():
                self.session.add(row)
        except SQLAlchemyError:
            logger.warning(
                "system_log_write_failed",
                extra={"category": category, "level": level},
                exc_info=True,
            )
            return None
        return row.id
