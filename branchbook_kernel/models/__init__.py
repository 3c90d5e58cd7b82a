"""ORM models.  Importing this package registers every table on Base.metadata."""

from branchbook_kernel.models.activity_log import ActivityLog, SystemLog
from branchbook_kernel.models.branch import Branch, BranchPIC
from branchbook_kernel.models.subscription import Subscription, SubscriptionPlan
from branchbook_kernel.models.team import OwnerTeam, OwnerTeamMember
from branchbook_kernel.models.transaction import Transaction
from branchbook_kernel.models.user import User

__all__ = [
    "User",
    "OwnerTeam",
    "OwnerTeamMember",
    "Branch",
    "BranchPIC",
    "SubscriptionPlan",
    "Subscription",
    "Transaction",
    "ActivityLog",
    "SystemLog",
]
