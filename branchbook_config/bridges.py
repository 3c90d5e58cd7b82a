"""
Bridges -- translate KernelSettings into kernel objects.

The kernel never imports this package.  Everything configuration-dependent
(engine pool sizing, log level, free-plan ceiling, cache TTL, notification
workers, page size) is read here and passed into kernel constructors.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from branchbook_config.schema import KernelSettings
from branchbook_kernel.db.engine import init_engine_from_url
from branchbook_kernel.domain.cache import LookupCache, NullCache, TTLCache
from branchbook_kernel.domain.clock import Clock, SystemClock
from branchbook_kernel.logging_config import configure_logging
from branchbook_kernel.services.access_resolver import AccessResolver
from branchbook_kernel.services.activity_log_service import ActivityLogService
from branchbook_kernel.services.activity_recorder import ActivityRecorder
from branchbook_kernel.services.branch_registry import BranchRegistry
from branchbook_kernel.services.edit_approval_service import EditApprovalService
from branchbook_kernel.services.identity_service import IdentityService
from branchbook_kernel.services.notification import NotificationDispatcher, NotificationSink
from branchbook_kernel.services.subscription_gate import SubscriptionGate
from branchbook_kernel.services.team_service import TeamService
from branchbook_kernel.services.transaction_service import TransactionService


@dataclass(frozen=True)
class KernelServices:
    """Every kernel service bound to one session."""

    session: Session
    clock: Clock
    teams: TeamService
    resolver: AccessResolver
    gate: SubscriptionGate
    identity: IdentityService
    activity: ActivityRecorder
    logs: ActivityLogService
    branches: BranchRegistry
    edits: EditApprovalService
    transactions: TransactionService


def init_from_settings(settings: KernelSettings) -> Engine:
    """Configure logging and the engine from settings."""
    configure_logging(level=getattr(logging, settings.log_level))
    db = settings.database
    return init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
    )


def build_lookup_cache(settings: KernelSettings, clock: Clock | None = None) -> LookupCache:
    if settings.lookup_cache_ttl_seconds == 0:
        return NullCache()
    return TTLCache(
        ttl_seconds=settings.lookup_cache_ttl_seconds,
        max_entries=settings.lookup_cache_max_entries,
        clock=clock,
    )


def build_executor(settings: KernelSettings) -> Executor | None:
    """Thread pool for notification delivery, or None for inline delivery."""
    if settings.notification_workers == 0:
        return None
    return ThreadPoolExecutor(
        max_workers=settings.notification_workers,
        thread_name_prefix="branchbook-notify",
    )


def build_kernel(
    session: Session,
    settings: KernelSettings,
    clock: Clock | None = None,
    sink: NotificationSink | None = None,
    executor: Executor | None = None,
    cache: LookupCache | None = None,
) -> KernelServices:
    """
    Wire the kernel services for one session.

    ``cache`` and ``executor`` are process-wide resources; build them once
    with build_lookup_cache()/build_executor() and pass them to every call.
    When omitted, snapshots are not cached and notifications run inline.
    """
    clock = clock or SystemClock()
    activity = ActivityRecorder(session, cache=cache, clock=clock)
    teams = TeamService(session, clock, activity=activity)
    resolver = AccessResolver(session, teams)
    gate = SubscriptionGate(
        session, clock,
        free_plan_max_branches=settings.free_plan_max_branches,
        teams=teams,
        activity=activity,
    )
    notifier = NotificationDispatcher(sink=sink, executor=executor)
    return KernelServices(
        session=session,
        clock=clock,
        teams=teams,
        resolver=resolver,
        gate=gate,
        identity=IdentityService(session, clock, teams=teams, activity=activity),
        activity=activity,
        logs=ActivityLogService(session, clock, resolver=resolver),
        branches=BranchRegistry(
            session, clock,
            gate=gate, resolver=resolver, teams=teams, activity=activity,
        ),
        edits=EditApprovalService(
            session, clock,
            resolver=resolver, teams=teams, notifier=notifier, activity=activity,
        ),
        transactions=TransactionService(
            session, clock,
            resolver=resolver, activity=activity,
            default_page_size=settings.default_page_size,
        ),
    )
