"""
Pytest fixtures for the branchbook kernel test suite.

Provides:
- An in-memory SQLite engine and tables, created once per session
- Per-test sessions isolated by outer-transaction rollback
- A DeterministicClock and a recording notification sink
- Kernel services wired to the test session
- Factories for users, teams, branches, delegates and transactions
- Structured log capture

Environment Variables:
- DATABASE_URL: run the suite against another database (e.g. PostgreSQL).
  Defaults to in-memory SQLite.
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from branchbook_kernel.db.engine import create_tables, drop_tables, init_engine_from_url, reset_engine
from branchbook_kernel.domain.clock import DeterministicClock
from branchbook_kernel.domain.dtos import Actor, UserInfo
from branchbook_kernel.domain.edit_workflow import EditState
from branchbook_kernel.domain.roles import Role
from branchbook_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from branchbook_kernel.models.branch import Branch, BranchPIC
from branchbook_kernel.models.team import OwnerTeam, OwnerTeamMember
from branchbook_kernel.models.transaction import Transaction
from branchbook_kernel.models.user import User
from branchbook_kernel.services.access_resolver import AccessResolver
from branchbook_kernel.services.activity_log_service import ActivityLogService
from branchbook_kernel.services.activity_recorder import ActivityRecorder
from branchbook_kernel.services.branch_registry import BranchRegistry
from branchbook_kernel.services.edit_approval_service import EditApprovalService
from branchbook_kernel.services.identity_service import IdentityService
from branchbook_kernel.services.notification import NotificationDispatcher
from branchbook_kernel.services.subscription_gate import SubscriptionGate
from branchbook_kernel.services.team_service import TeamService
from branchbook_kernel.services.transaction_service import TransactionService

DEFAULT_DATABASE_URL = "sqlite://"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture branchbook logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, registry):
            registry.create_branch(...)
            logs = captured_logs()
            assert any(r["message"] == "branch_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("branchbook")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the whole test session."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """
    Session joined to an outer transaction that is rolled back at teardown.

    ``session.commit()`` and ``begin_nested()`` inside a test only release
    savepoints; nothing reaches the database.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Clock and notifications
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


class RecordingSink:
    """Notification sink that keeps every delivery in memory."""

    def __init__(self):
        self.sent: list[dict] = []

    def notify(self, user_ids, title, body, payload):
        self.sent.append({
            "user_ids": list(user_ids),
            "title": title,
            "body": body,
            "payload": dict(payload),
        })

    def titles(self) -> list[str]:
        return [n["title"] for n in self.sent]


@pytest.fixture
def notifications() -> RecordingSink:
    return RecordingSink()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def teams(session, deterministic_clock, activity) -> TeamService:
    return TeamService(session, deterministic_clock, activity=activity)


@pytest.fixture
def resolver(session, teams) -> AccessResolver:
    return AccessResolver(session, teams)


@pytest.fixture
def gate(session, deterministic_clock, teams, activity) -> SubscriptionGate:
    return SubscriptionGate(
        session, deterministic_clock, free_plan_max_branches=1, teams=teams, activity=activity,
    )


@pytest.fixture
def activity(session, deterministic_clock) -> ActivityRecorder:
    return ActivityRecorder(session, clock=deterministic_clock)


@pytest.fixture
def activity_logs(session, deterministic_clock, resolver) -> ActivityLogService:
    return ActivityLogService(session, deterministic_clock, resolver=resolver)


@pytest.fixture
def identity(session, deterministic_clock, teams, activity) -> IdentityService:
    return IdentityService(session, deterministic_clock, teams=teams, activity=activity)


@pytest.fixture
def registry(session, deterministic_clock, gate, resolver, teams, activity) -> BranchRegistry:
    return BranchRegistry(
        session, deterministic_clock,
        gate=gate, resolver=resolver, teams=teams, activity=activity,
    )


@pytest.fixture
def edits(session, deterministic_clock, resolver, teams, notifications, activity) -> EditApprovalService:
    return EditApprovalService(
        session, deterministic_clock,
        resolver=resolver,
        teams=teams,
        notifier=NotificationDispatcher(sink=notifications),
        activity=activity,
    )


@pytest.fixture
def transactions(session, deterministic_clock, resolver, activity) -> TransactionService:
    return TransactionService(
        session, deterministic_clock, resolver=resolver, activity=activity,
    )


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def actor_of():
    """Build the Actor for a user DTO or row."""

    def _actor(user: UserInfo | User) -> Actor:
        return Actor(
            id=user.id,
            role=Role(user.role),
            created_by_user_id=user.created_by_user_id,
        )

    return _actor


@pytest.fixture
def make_user(session, deterministic_clock):
    """Factory: insert a user row and return it."""
    counter = {"n": 0}

    def _make(role=Role.OWNER, name=None, created_by=None, email=None):
        counter["n"] += 1
        role = Role(role)
        now = deterministic_clock.tick()
        user = User(
            email=email or f"{role.value}{counter['n']}@example.com",
            name=name or f"{role.value.title()} {counter['n']}",
            role=role.value,
            created_by_user_id=created_by.id if created_by is not None else None,
            created_at=now,
            updated_at=now,
        )
        session.add(user)
        session.flush()
        return user

    return _make


@pytest.fixture
def make_team(session, deterministic_clock):
    """Factory: insert a team with its primary owner enrolled as an owner member."""

    def _make(primary_owner, name="Team", members=()):
        now = deterministic_clock.tick()
        team = OwnerTeam(name=name, primary_owner_id=primary_owner.id, created_at=now, updated_at=now)
        session.add(team)
        session.flush()
        enrolled = [(primary_owner, "owner")] + [
            (user, "owner" if user.role == Role.OWNER.value else "co-owner") for user in members
        ]
        for user, role in enrolled:
            session.add(OwnerTeamMember(
                team_id=team.id,
                user_id=user.id,
                role=role,
                status="active",
                joined_at=now,
                created_at=now,
                updated_at=now,
            ))
        session.flush()
        return team

    return _make


@pytest.fixture
def make_branch(session, deterministic_clock):
    """Factory: insert a branch row directly, bypassing the subscription gate."""
    counter = {"n": 0}

    def _make(owner, team=None, name=None, delegates=(), deleted=False):
        counter["n"] += 1
        now = deterministic_clock.tick()
        branch = Branch(
            name=name or f"Branch {counter['n']}",
            owner_id=owner.id,
            team_id=team.id if team is not None else None,
            status_active=True,
            created_at=now,
            updated_at=now,
        )
        session.add(branch)
        session.flush()
        for user in delegates:
            session.add(BranchPIC(
                branch_id=branch.id, user_id=user.id, created_at=now, updated_at=now,
            ))
        if deleted:
            branch.mark_deleted(now)
        session.flush()
        return branch

    return _make


@pytest.fixture
def make_transaction(session, deterministic_clock):
    """Factory: insert a transaction row in the given edit state."""

    def _make(
        branch,
        author,
        amount="100.00",
        type="expense",
        category="Supplies",
        state=EditState.DEFAULT,
        requested_by=None,
        reason=None,
    ):
        now = deterministic_clock.tick()
        txn = Transaction(
            branch_id=branch.id,
            user_id=author.id,
            type=type,
            category=category,
            amount=Decimal(amount),
            transaction_date=date(2024, 1, 1),
            edit_accepted=int(state),
            edit_requested_by=requested_by.id if requested_by is not None else None,
            edit_reason=reason,
            created_at=now,
            updated_at=now,
        )
        session.add(txn)
        session.flush()
        return txn

    return _make
