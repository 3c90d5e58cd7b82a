"""Kernel services.  Every service takes a Session and only flushes."""

from branchbook_kernel.services.access_resolver import AccessResolver
from branchbook_kernel.services.activity_log_service import ActivityLogService
from branchbook_kernel.services.activity_recorder import ActivityRecorder, compute_changes
from branchbook_kernel.services.branch_registry import BranchRegistry
from branchbook_kernel.services.edit_approval_service import EditApprovalService
from branchbook_kernel.services.identity_service import IdentityService
from branchbook_kernel.services.notification import (
    LoggingNotificationSink,
    NotificationDispatcher,
)
from branchbook_kernel.services.subscription_gate import SubscriptionGate
from branchbook_kernel.services.team_service import TeamService
from branchbook_kernel.services.transaction_service import TransactionService

__all__ = [
    "AccessResolver",
    "ActivityLogService",
    "ActivityRecorder",
    "BranchRegistry",
    "EditApprovalService",
    "IdentityService",
    "LoggingNotificationSink",
    "NotificationDispatcher",
    "SubscriptionGate",
    "TeamService",
    "TransactionService",
    "compute_changes",
]
