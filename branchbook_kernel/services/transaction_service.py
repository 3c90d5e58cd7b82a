"""
TransactionService -- branch income/expense records behind the edit gate.

Responsibility:
    Creates, reads, lists, updates and soft-deletes transactions.  Updates
    by requesting roles (admins) go through the edit gate: they succeed only
    on an APPROVED edit request and atomically return the workflow to its
    initial state.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - Every operation is scoped by AccessResolver.
    - An admin update is a single compare-and-set UPDATE filtered on
      ``edit_accepted = APPROVED`` that also writes (0, NULL, NULL) to the
      workflow fields, so one approval buys exactly one edit.
    - BYPASS_EDIT_GATE roles update freely and leave the workflow alone.
    - Amounts are positive Decimals.
    - An update must change at least one field; an empty one never reaches
      the edit gate.

Failure modes:
    - EditNotApprovedError for an admin update without an approval.
    - CapabilityRequiredError for roles that may neither bypass nor request.
    - TransactionNotFoundError, AccessDeniedError, BranchNotFoundError.
    - ValidationError for malformed input.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from branchbook_kernel.domain.clock import Clock
from branchbook_kernel.domain.dtos import (
    Actor,
    TransactionInfo,
    TransactionPage,
    TransactionType,
)
from branchbook_kernel.domain.edit_workflow import EditState
from branchbook_kernel.domain.roles import Capability, has_capability, require_capability
from branchbook_kernel.exceptions import (
    CapabilityRequiredError,
    EditNotApprovedError,
    TransactionNotFoundError,
    ValidationError,
)
from branchbook_kernel.logging_config import LogContext, get_logger
from branchbook_kernel.models.transaction import Transaction
from branchbook_kernel.services.access_resolver import AccessResolver
from branchbook_kernel.services.activity_recorder import ActivityRecorder, ActivitySink
from branchbook_kernel.services.base import BaseService

logger = get_logger("services.transaction")

EDITABLE_FIELDS = frozenset({"type", "category", "amount", "note", "transaction_date"})


def _snapshot(txn: Transaction) -> dict[str, Any]:
    return {
        "type": txn.type,
        "category": txn.category,
        "amount": txn.amount,
        "note": txn.note,
        "transaction_date": txn.transaction_date,
    }


def _clean_fields(changes: dict[str, Any]) -> dict[str, Any]:
    """Validate and normalize editable fields; raises ValidationError."""
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(
            f"Cannot update transaction fields: {sorted(unknown)}", field=sorted(unknown)[0],
        )
    cleaned: dict[str, Any] = {}
    for key, value in changes.items():
        if key == "type":
            try:
                cleaned[key] = TransactionType(value).value
            except ValueError:
                raise ValidationError(
                    f"Transaction type must be income or expense, got {value!r}", field="type",
                ) from None
        elif key == "category":
            category = (value or "").strip()
            if not category:
                raise ValidationError("Category is required", field="category")
            cleaned[key] = category
        elif key == "amount":
            try:
                amount = Decimal(str(value))
            except (InvalidOperation, ValueError):
                raise ValidationError(f"Invalid amount: {value!r}", field="amount") from None
            if not amount.is_finite() or amount <= 0:
                raise ValidationError("Amount must be positive", field="amount")
            cleaned[key] = amount
        elif key == "transaction_date":
            if not isinstance(value, date):
                raise ValidationError("transaction_date must be a date", field="transaction_date")
            cleaned[key] = value
        else:
            cleaned[key] = value
    return cleaned


class TransactionService(BaseService):
    """Transaction records."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        resolver: AccessResolver | None = None,
        activity: ActivitySink | None = None,
        default_page_size: int = 20,
    ):
        super().__init__(session, clock)
        self._resolver = resolver or AccessResolver(session)
        self._activity = activity or ActivityRecorder(session, clock=self._clock)
        self._default_page_size = default_page_size

    def _load(self, transaction_id: UUID, include_deleted: bool = False) -> Transaction:
        stmt = select(Transaction).where(Transaction.id == transaction_id)
        if not include_deleted:
            stmt = stmt.where(Transaction.status_deleted.is_(False))
        txn = self.session.execute(stmt).scalar_one_or_none()
        if txn is None:
            raise TransactionNotFoundError(str(transaction_id))
        return txn

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    def create_transaction(
        self,
        actor: Actor,
        branch_id: UUID,
        type: TransactionType | str,
        category: str,
        amount: Decimal | str | int,
        note: str | None = None,
        transaction_date: date | None = None,
    ) -> TransactionInfo:
        self._resolver.require_access(actor, branch_id)
        fields = _clean_fields({
            "type": type,
            "category": category,
            "amount": amount,
            "note": note,
            "transaction_date": transaction_date or self._clock.today(),
        })

        now = self._clock.now()
        txn = Transaction(
            branch_id=branch_id,
            user_id=actor.id,
            edit_accepted=int(EditState.DEFAULT),
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.session.add(txn)
        self.session.flush()

        self._activity.record_activity(
            actor.id, "create", "transaction", txn.id, branch_id, after=_snapshot(txn),
        )
        with LogContext.bind(actor_id=actor.id, branch_id=branch_id, transaction_id=txn.id):
            logger.info(
                "transaction_created",
                extra={"type": fields["type"], "amount": fields["amount"]},
            )
        return TransactionInfo.from_model(txn)

    def get_transaction(self, actor: Actor, transaction_id: UUID) -> TransactionInfo:
        txn = self._load(transaction_id)
        self._resolver.require_access(actor, txn.branch_id)
        return TransactionInfo.from_model(txn)

    def list_transactions(
        self,
        actor: Actor,
        branch_id: UUID,
        type: TransactionType | str | None = None,
        category: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        newest_first: bool = True,
        page: int = 1,
        limit: int | None = None,
    ) -> TransactionPage:
        self._resolver.require_access(actor, branch_id)
        limit = limit or self._default_page_size
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive", field="page")

        filters = [
            Transaction.branch_id == branch_id,
            Transaction.status_deleted.is_(False),
        ]
        if type is not None:
            filters.append(Transaction.type == TransactionType(type).value)
        if category:
            filters.append(Transaction.category == category)
        if start_date is not None:
            filters.append(Transaction.transaction_date >= start_date)
        if end_date is not None:
            filters.append(Transaction.transaction_date <= end_date)

        total = self.session.execute(
            select(func.count()).select_from(Transaction).where(*filters)
        ).scalar_one()

        if newest_first:
            order = (Transaction.transaction_date.desc(), Transaction.created_at.desc())
        else:
            order = (Transaction.transaction_date.asc(), Transaction.created_at.asc())
        rows = self.session.execute(
            select(Transaction)
            .where(*filters)
            .order_by(*order)
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()
        return TransactionPage(
            items=tuple(TransactionInfo.from_model(t) for t in rows),
            total=total,
            page=page,
            limit=limit,
        )

    # ------------------------------------------------------------------
    # Update (edit gate)
    # ------------------------------------------------------------------

    def update_transaction(
        self,
        actor: Actor,
        transaction_id: UUID,
        **changes: Any,
    ) -> TransactionInfo:
        txn = self._load(transaction_id)
        self._resolver.require_access(actor, txn.branch_id)
        fields = _clean_fields(changes)
        if not fields:
            raise ValidationError("No fields to update", field="changes")
        before = _snapshot(txn)
        now = self._clock.now()

        if has_capability(actor.role, Capability.BYPASS_EDIT_GATE):
            for key, value in fields.items():
                setattr(txn, key, value)
            txn.updated_at = now
            self.session.flush()
            gated = False
        elif has_capability(actor.role, Capability.REQUEST_EDIT):
            result = self.session.execute(
                update(Transaction)
                .where(
                    Transaction.id == transaction_id,
                    Transaction.edit_accepted == int(EditState.APPROVED),
                )
                .values(
                    edit_accepted=int(EditState.DEFAULT),
                    edit_reason=None,
                    edit_requested_by=None,
                    updated_at=now,
                    **fields,
                )
                .execution_options(synchronize_session=False)
            )
            self.session.refresh(txn)
            if result.rowcount != 1:
                raise EditNotApprovedError(str(transaction_id), int(txn.edit_accepted))
            gated = True
        else:
            raise CapabilityRequiredError(actor.role.value, Capability.REQUEST_EDIT.value)

        self._activity.record_activity(
            actor.id, "update", "transaction", transaction_id, txn.branch_id,
            before=before, after=_snapshot(txn),
            metadata={"edit_gate": gated},
        )
        with LogContext.bind(actor_id=actor.id, transaction_id=transaction_id):
            logger.info(
                "transaction_updated",
                extra={"fields": sorted(fields), "edit_gate": gated},
            )
        return TransactionInfo.from_model(txn)

    # ------------------------------------------------------------------
    # Soft delete / restore
    # ------------------------------------------------------------------

    def soft_delete_transaction(self, actor: Actor, transaction_id: UUID) -> None:
        require_capability(actor.role, Capability.BYPASS_EDIT_GATE)
        txn = self._load(transaction_id)
        self._resolver.require_access(actor, txn.branch_id)
        txn.mark_deleted(self._clock.now())
        self.session.flush()
        self._activity.record_activity(
            actor.id, "delete", "transaction", transaction_id, txn.branch_id,
            before={"status_deleted": False}, after={"status_deleted": True},
        )
        logger.info("transaction_soft_deleted", extra={"transaction_id": str(transaction_id)})

    def restore_transaction(self, actor: Actor, transaction_id: UUID) -> TransactionInfo:
        require_capability(actor.role, Capability.BYPASS_EDIT_GATE)
        txn = self._load(transaction_id, include_deleted=True)
        if not txn.status_deleted:
            raise TransactionNotFoundError(str(transaction_id))
        self._resolver.require_access(actor, txn.branch_id)
        txn.mark_restored()
        txn.updated_at = self._clock.now()
        self.session.flush()
        self._activity.record_activity(
            actor.id, "restore", "transaction", transaction_id, txn.branch_id,
            before={"status_deleted": True}, after={"status_deleted": False},
        )
        logger.info("transaction_restored", extra={"transaction_id": str(transaction_id)})
        return TransactionInfo.from_model(txn)
