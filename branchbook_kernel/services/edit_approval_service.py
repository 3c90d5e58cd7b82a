"""
EditApprovalService -- transaction edit request / approve / reject.

Responsibility:
    Drives the ``edit_accepted`` state machine on transactions: admins ask
    to edit, owners and co-owners approve or reject, and the requester is
    told the outcome.  Applying an approved edit lives in
    ``TransactionService.update_transaction``.

Architecture position:
    Kernel > Services.  Uses AccessResolver for branch checks, TeamService
    to find notification targets and NotificationDispatcher for delivery.

Invariants enforced:
    - Every guarded transition is a compare-and-set UPDATE filtered on the
      expected ``edit_accepted`` value; zero affected rows means another
      writer got there first and the call fails.
    - A requester cannot stack a second pending request; a different
      requester may take over a pending one.
    - An approved edit cannot be re-requested until it is applied.
    - Rejection keeps the requester and reason for the record.

Failure modes:
    - InvalidEditTransitionError (wrong role, wrong state, lost race) and its
      subclasses DuplicateEditRequestError, EditReasonRequiredError.
    - TransactionNotFoundError, AccessDeniedError.
    - ValidationError for an unknown status filter.
    - Notification failures never surface.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session, aliased

from branchbook_kernel.domain.clock import Clock
from branchbook_kernel.domain.dtos import Actor, EditRequestInfo, TransactionInfo, TransactionType
from branchbook_kernel.domain.edit_workflow import (
    REQUESTABLE_STATES,
    EditState,
    parse_status_filter,
)
from branchbook_kernel.domain.roles import Capability, has_capability
from branchbook_kernel.exceptions import (
    DuplicateEditRequestError,
    EditReasonRequiredError,
    InvalidEditTransitionError,
    TransactionNotFoundError,
    ValidationError,
)
from branchbook_kernel.logging_config import LogContext, get_logger
from branchbook_kernel.models.branch import Branch
from branchbook_kernel.models.transaction import Transaction
from branchbook_kernel.models.user import User
from branchbook_kernel.services.access_resolver import AccessResolver
from branchbook_kernel.services.activity_recorder import ActivityRecorder, ActivitySink
from branchbook_kernel.services.base import BaseService
from branchbook_kernel.services.notification import NotificationDispatcher
from branchbook_kernel.services.team_service import TeamService

logger = get_logger("services.edit_approval")


class EditApprovalService(BaseService):
    """Edit-request workflow over transactions."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        resolver: AccessResolver | None = None,
        teams: TeamService | None = None,
        notifier: NotificationDispatcher | None = None,
        activity: ActivitySink | None = None,
    ):
        super().__init__(session, clock)
        self._teams = teams or TeamService(session, self._clock)
        self._resolver = resolver or AccessResolver(session, self._teams)
        self._notifier = notifier or NotificationDispatcher()
        self._activity = activity or ActivityRecorder(session, clock=self._clock)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def request_edit(self, actor: Actor, transaction_id: UUID, reason: str) -> TransactionInfo:
        """Open (or take over) an edit request: state -> PENDING."""
        if not has_capability(actor.role, Capability.REQUEST_EDIT):
            raise InvalidEditTransitionError(
                str(transaction_id), "request_edit",
                reason=f"role '{actor.role.value}' cannot request edits",
            )
        reason = (reason or "").strip()
        if not reason:
            raise EditReasonRequiredError(str(transaction_id))

        txn = self._load(transaction_id)
        self._resolver.require_access(actor, txn.branch_id)

        state = EditState(txn.edit_accepted)
        previous_requester = txn.edit_requested_by
        if state == EditState.PENDING and previous_requester == actor.id:
            raise DuplicateEditRequestError(str(transaction_id), str(actor.id))
        if state not in REQUESTABLE_STATES:
            raise InvalidEditTransitionError(
                str(transaction_id), "request_edit", int(state),
                reason="an approved edit must be applied first",
            )

        guard = [Transaction.edit_accepted == int(state)]
        if state == EditState.PENDING:
            guard.append(Transaction.edit_requested_by == previous_requester)
        self._compare_and_set(
            txn, "request_edit", state, guard,
            edit_accepted=int(EditState.PENDING),
            edit_requested_by=actor.id,
            edit_reason=reason,
        )

        branch = self.session.get(Branch, txn.branch_id)
        recipients = self._owner_recipients(branch)
        requester_name = self.session.execute(
            select(User.name).where(User.id == actor.id)
        ).scalar_one_or_none() or "An admin"
        self._notifier.notify(
            recipients,
            "Edit request",
            f"{requester_name} requested to edit a transaction in {branch.name}: {reason}",
            {
                "type": "edit_request",
                "transaction_id": str(txn.id),
                "branch_id": str(txn.branch_id),
            },
        )
        self._record(actor, txn, "request_edit", state, reason=reason)
        return TransactionInfo.from_model(txn)

    def approve_edit(self, actor: Actor, transaction_id: UUID) -> TransactionInfo:
        """PENDING -> APPROVED."""
        return self._decide(actor, transaction_id, "approve_edit", EditState.APPROVED)

    def reject_edit(self, actor: Actor, transaction_id: UUID) -> TransactionInfo:
        """PENDING -> REJECTED.  Requester and reason are kept."""
        return self._decide(actor, transaction_id, "reject_edit", EditState.REJECTED)

    def _decide(
        self,
        actor: Actor,
        transaction_id: UUID,
        action: str,
        target: EditState,
    ) -> TransactionInfo:
        if not has_capability(actor.role, Capability.DECIDE_EDIT):
            raise InvalidEditTransitionError(
                str(transaction_id), action,
                reason=f"role '{actor.role.value}' cannot decide edit requests",
            )
        txn = self._load(transaction_id)
        self._resolver.require_access(actor, txn.branch_id)

        state = EditState(txn.edit_accepted)
        if state != EditState.PENDING:
            raise InvalidEditTransitionError(
                str(transaction_id), action, int(state),
                reason="no pending edit request",
            )
        self._compare_and_set(
            txn, action, state, [Transaction.edit_accepted == int(EditState.PENDING)],
            edit_accepted=int(target),
        )

        verdict = "approved" if target == EditState.APPROVED else "rejected"
        self._notifier.notify(
            [txn.edit_requested_by],
            f"Edit request {verdict}",
            f"Your request to edit a transaction was {verdict}.",
            {
                "type": f"edit_{verdict}",
                "transaction_id": str(txn.id),
                "branch_id": str(txn.branch_id),
            },
        )
        self._record(actor, txn, action, state)
        return TransactionInfo.from_model(txn)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def get_edit_requests(
        self,
        actor: Actor,
        branch_id: UUID | None = None,
        status: str | int | EditState | None = "pending",
    ) -> list[EditRequestInfo]:
        """
        Transactions carrying an edit request, newest first.

        Scoped to ``branch_id`` when given (access-checked), otherwise to
        every branch the actor reaches.  Requesting roles only see their
        own submissions.
        """
        try:
            state = parse_status_filter(status)
        except ValueError as exc:
            raise ValidationError(str(exc), field="status") from None

        if branch_id is not None:
            self._resolver.require_access(actor, branch_id)
            branch_ids = {branch_id}
        else:
            branch_ids = self._resolver.accessible_branch_ids(actor.id, actor.role)
        if not branch_ids:
            return []

        requester = aliased(User)
        stmt = (
            select(Transaction, Branch.name, requester.name)
            .join(Branch, Branch.id == Transaction.branch_id)
            .join(requester, requester.id == Transaction.edit_requested_by)
            .where(
                Transaction.branch_id.in_(branch_ids),
                Transaction.status_deleted.is_(False),
                Transaction.edit_requested_by.is_not(None),
            )
        )
        if state is not None:
            stmt = stmt.where(Transaction.edit_accepted == int(state))
        if has_capability(actor.role, Capability.REQUEST_EDIT):
            stmt = stmt.where(Transaction.edit_requested_by == actor.id)

        rows = self.session.execute(
            stmt.order_by(Transaction.updated_at.desc(), Transaction.created_at.desc())
        ).all()
        return [
            EditRequestInfo(
                transaction_id=txn.id,
                branch_id=txn.branch_id,
                branch_name=branch_name,
                state=EditState(txn.edit_accepted),
                reason=txn.edit_reason,
                requested_by=txn.edit_requested_by,
                requester_name=requester_name,
                type=TransactionType(txn.type),
                category=txn.category,
                amount=txn.amount,
                transaction_date=txn.transaction_date,
                updated_at=txn.updated_at,
            )
            for txn, branch_name, requester_name in rows
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, transaction_id: UUID) -> Transaction:
        txn = self.session.execute(
            select(Transaction).where(
                Transaction.id == transaction_id,
                Transaction.status_deleted.is_(False),
            )
        ).scalar_one_or_none()
        if txn is None:
            raise TransactionNotFoundError(str(transaction_id))
        return txn

    def _compare_and_set(
        self,
        txn: Transaction,
        action: str,
        expected: EditState,
        guard: list,
        **values,
    ) -> None:
        result = self.session.execute(
            update(Transaction)
            .where(Transaction.id == txn.id, *guard)
            .values(updated_at=self._clock.now(), **values)
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(txn)
        if result.rowcount != 1:
            raise InvalidEditTransitionError(
                str(txn.id), action, txn.edit_accepted,
                reason=f"state changed concurrently (expected {int(expected)})",
            )

    def _owner_recipients(self, branch: Branch) -> list[UUID]:
        """Active owner-role members of the branch's team, else the branch owner."""
        recipients: list[UUID] = []
        if branch.team_id is not None:
            recipients = self._teams.owner_member_ids(branch.team_id)
        return recipients or [branch.owner_id]

    def _record(
        self,
        actor: Actor,
        txn: Transaction,
        action: str,
        previous: EditState,
        reason: str | None = None,
    ) -> None:
        after = {"edit_accepted": int(txn.edit_accepted), "edit_requested_by": txn.edit_requested_by}
        if reason is not None:
            after["edit_reason"] = reason
        self._activity.record_activity(
            actor.id, action, "transaction", txn.id, txn.branch_id,
            before={"edit_accepted": int(previous)},
            after=after,
        )
        with LogContext.bind(actor_id=actor.id, transaction_id=txn.id, branch_id=txn.branch_id):
            logger.info(
                "edit_state_changed",
                extra={
                    "action": action,
                    "from_state": int(previous),
                    "to_state": int(txn.edit_accepted),
                },
            )
