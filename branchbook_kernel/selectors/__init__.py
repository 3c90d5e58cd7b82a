"""Read-only selectors."""

from branchbook_kernel.selectors.activity_selector import ActivitySelector
from branchbook_kernel.selectors.base import BaseSelector
from branchbook_kernel.selectors.branch_selector import BranchSelector
from branchbook_kernel.selectors.user_selector import UserSelector

__all__ = ["ActivitySelector", "BaseSelector", "BranchSelector", "UserSelector"]
