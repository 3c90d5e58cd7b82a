"""
Typed Exception Hierarchy for the Branchbook Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (an HTTP layer, a CLI, a background job) must map
failures onto responses without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        registry.create_branch(actor, "Outlet 2")
    except Exception as e:
        if "limit" in str(e):  # FRAGILE - message might change
            show_upgrade_prompt()

Example - RIGHT way (what this module enables):
    try:
        registry.create_branch(actor, "Outlet 2")
    except BranchLimitExceededError as e:
        show_upgrade_prompt(current=e.current_branches, maximum=e.max_branches)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BranchbookError:

    BranchbookError (base)
    |
    +-- AccessError
    |   +-- AccessDeniedError
    |   +-- CapabilityRequiredError
    |
    +-- NotFoundError
    |   +-- UserNotFoundError
    |   +-- BranchNotFoundError
    |   +-- TeamNotFoundError
    |   +-- TransactionNotFoundError
    |   +-- SubscriptionNotFoundError
    |   +-- SubscriptionPlanNotFoundError
    |
    +-- InvalidRoleError
    |
    +-- LimitExceededError
    |   +-- BranchLimitExceededError
    |
    +-- InvalidStateTransitionError
    |   +-- InvalidEditTransitionError
    |   |   +-- DuplicateEditRequestError
    |   |   +-- EditReasonRequiredError
    |   |   +-- EditNotApprovedError
    |   +-- InvalidSubscriptionTransitionError
    |
    +-- ValidationError
        +-- EmailAlreadyRegisteredError
        +-- PrimaryOwnerRemovalError
        +-- TeamOwnershipRequiredError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|----------------------------------------
Access          | ACCESS_DENIED                 | Resolver denied actor on a branch/team
                | CAPABILITY_REQUIRED           | Actor's role lacks the capability
----------------|-------------------------------|----------------------------------------
Not found       | USER_NOT_FOUND                | Missing or soft-deleted user
                | BRANCH_NOT_FOUND              | Missing or soft-deleted branch
                | TEAM_NOT_FOUND                | Missing team
                | TRANSACTION_NOT_FOUND         | Missing or soft-deleted transaction
                | SUBSCRIPTION_NOT_FOUND        | Missing subscription
                | SUBSCRIPTION_PLAN_NOT_FOUND   | Missing or inactive plan
----------------|-------------------------------|----------------------------------------
Role            | INVALID_ROLE                  | Target user lacks the required role
----------------|-------------------------------|----------------------------------------
Limits          | BRANCH_LIMIT_EXCEEDED         | Plan ceiling reached
----------------|-------------------------------|----------------------------------------
Workflow        | INVALID_EDIT_TRANSITION       | Edit guard failed (role/state)
                | DUPLICATE_EDIT_REQUEST        | Same requester already pending
                | EDIT_REASON_REQUIRED          | Blank edit reason
                | EDIT_NOT_APPROVED             | Admin update without approval
                | INVALID_SUBSCRIPTION_TRANSITION | Illegal subscription status change
----------------|-------------------------------|----------------------------------------
Validation      | EMAIL_ALREADY_REGISTERED      | Duplicate user email
                | PRIMARY_OWNER_REMOVAL         | Removing a team's primary owner
                | TEAM_OWNERSHIP_REQUIRED       | Non-primary owner renaming/deleting

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Inherit from Exception, not ValueError/PermissionError: domain failures are
   catchable as a group and never confused with programming errors.
2. ``code`` is a class attribute: it is static per type and readable without
   an instance.
3. Best-effort side channels (notifications, activity logs) never raise any
   of these; their failures are logged and dropped.
"""


class BranchbookError(Exception):
    """
    Base exception for all branchbook kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "BRANCHBOOK_ERROR"


# Access-related exceptions


class AccessError(BranchbookError):
    """Base exception for permission failures."""

    code: str = "ACCESS_ERROR"


class AccessDeniedError(AccessError):
    """The access resolver denied the actor on the target resource."""

    code: str = "ACCESS_DENIED"

    def __init__(self, user_id: str, resource_type: str, resource_id: str):
        self.user_id = user_id
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            f"User {user_id} has no access to {resource_type} {resource_id}"
        )


class CapabilityRequiredError(AccessError):
    """The actor's role does not carry the capability for this operation."""

    code: str = "CAPABILITY_REQUIRED"

    def __init__(self, role: str, capability: str):
        self.role = role
        self.capability = capability
        super().__init__(f"Role '{role}' lacks capability '{capability}'")


# Not-found exceptions


class NotFoundError(BranchbookError):
    """Base exception for missing or soft-deleted records."""

    code: str = "NOT_FOUND"


class UserNotFoundError(NotFoundError):
    """User does not exist or is soft-deleted."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class BranchNotFoundError(NotFoundError):
    """Branch does not exist or is soft-deleted."""

    code: str = "BRANCH_NOT_FOUND"

    def __init__(self, branch_id: str):
        self.branch_id = branch_id
        super().__init__(f"Branch not found: {branch_id}")


class TeamNotFoundError(NotFoundError):
    """Owner team does not exist."""

    code: str = "TEAM_NOT_FOUND"

    def __init__(self, team_id: str):
        self.team_id = team_id
        super().__init__(f"Team not found: {team_id}")


class TransactionNotFoundError(NotFoundError):
    """Transaction does not exist or is soft-deleted."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class SubscriptionNotFoundError(NotFoundError):
    """Subscription does not exist."""

    code: str = "SUBSCRIPTION_NOT_FOUND"

    def __init__(self, subscription_id: str):
        self.subscription_id = subscription_id
        super().__init__(f"Subscription not found: {subscription_id}")


class SubscriptionPlanNotFoundError(NotFoundError):
    """Subscription plan does not exist or is inactive."""

    code: str = "SUBSCRIPTION_PLAN_NOT_FOUND"

    def __init__(self, plan_ref: str):
        self.plan_ref = plan_ref
        super().__init__(f"Subscription plan not found: {plan_ref}")


# Role exceptions


class InvalidRoleError(BranchbookError):
    """
    A target user does not hold the role an operation requires.

    Batch operations (set_delegates) abort entirely on the first offender;
    ``user_id`` identifies it.
    """

    code: str = "INVALID_ROLE"

    def __init__(
        self,
        user_id: str,
        expected_role: str,
        actual_role: str | None = None,
    ):
        self.user_id = user_id
        self.expected_role = expected_role
        self.actual_role = actual_role
        super().__init__(
            f"User {user_id} must be a(n) {expected_role} user"
            + (f" (is {actual_role})" if actual_role else "")
        )


# Limit exceptions


class LimitExceededError(BranchbookError):
    """Base exception for subscription ceilings."""

    code: str = "LIMIT_EXCEEDED"


class BranchLimitExceededError(LimitExceededError):
    """
    The billing owner's plan ceiling for branches has been reached.

    Carries the current and maximum counts so the caller can render an
    upgrade prompt.
    """

    code: str = "BRANCH_LIMIT_EXCEEDED"

    def __init__(
        self,
        user_id: str,
        current_branches: int,
        max_branches: int,
        plan_name: str | None = None,
    ):
        self.user_id = user_id
        self.current_branches = current_branches
        self.max_branches = max_branches
        self.plan_name = plan_name
        super().__init__(
            f"Branch limit reached for {user_id}: "
            f"{current_branches}/{max_branches}. Please upgrade your subscription."
        )


# State transition exceptions


class InvalidStateTransitionError(BranchbookError):
    """Base exception for workflow guard failures."""

    code: str = "INVALID_STATE_TRANSITION"


class InvalidEditTransitionError(InvalidStateTransitionError):
    """An edit-workflow guard failed (wrong role or wrong current state)."""

    code: str = "INVALID_EDIT_TRANSITION"

    def __init__(
        self,
        transaction_id: str,
        action: str,
        current_state: int | None = None,
        reason: str = "",
    ):
        self.transaction_id = transaction_id
        self.action = action
        self.current_state = current_state
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Cannot {action} transaction {transaction_id} "
            f"in edit state {current_state}{detail}"
        )


class DuplicateEditRequestError(InvalidEditTransitionError):
    """The same requester already has a pending edit request."""

    code: str = "DUPLICATE_EDIT_REQUEST"

    def __init__(self, transaction_id: str, requester_id: str):
        self.requester_id = requester_id
        super().__init__(
            transaction_id,
            "request_edit",
            current_state=1,
            reason=f"requester {requester_id} already has a pending request",
        )


class EditReasonRequiredError(InvalidEditTransitionError):
    """An edit request was submitted without a reason."""

    code: str = "EDIT_REASON_REQUIRED"

    def __init__(self, transaction_id: str):
        super().__init__(
            transaction_id, "request_edit", reason="edit reason is required",
        )


class EditNotApprovedError(InvalidEditTransitionError):
    """An admin tried to update a transaction whose edit is not approved."""

    code: str = "EDIT_NOT_APPROVED"

    def __init__(self, transaction_id: str, current_state: int):
        super().__init__(
            transaction_id,
            "update",
            current_state=current_state,
            reason="edit request has not been approved by an owner",
        )


class InvalidSubscriptionTransitionError(InvalidStateTransitionError):
    """Subscription status change is not allowed from its current status."""

    code: str = "INVALID_SUBSCRIPTION_TRANSITION"

    def __init__(self, subscription_id: str, from_status: str, to_status: str):
        self.subscription_id = subscription_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Subscription {subscription_id} cannot move "
            f"from {from_status} to {to_status}"
        )


# Validation exceptions


class ValidationError(BranchbookError):
    """Base exception for rejected input that passed transport validation."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class EmailAlreadyRegisteredError(ValidationError):
    """An account, live or soft-deleted, already holds this email."""

    code: str = "EMAIL_ALREADY_REGISTERED"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email already registered: {email}", field="email")


class PrimaryOwnerRemovalError(ValidationError):
    """The primary owner of a team cannot be removed from it."""

    code: str = "PRIMARY_OWNER_REMOVAL"

    def __init__(self, team_id: str, user_id: str):
        self.team_id = team_id
        self.user_id = user_id
        super().__init__(f"Cannot remove primary owner {user_id} from team {team_id}")


class TeamOwnershipRequiredError(ValidationError):
    """Only the team's primary owner may perform this operation."""

    code: str = "TEAM_OWNERSHIP_REQUIRED"

    def __init__(self, team_id: str, user_id: str, action: str):
        self.team_id = team_id
        self.user_id = user_id
        self.action = action
        super().__init__(f"Only the primary owner can {action} team {team_id}")
