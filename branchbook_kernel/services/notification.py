"""
Notification side channel.

Responsibility:
    Fire-and-forget delivery of user-facing notifications (edit requested,
    approved, rejected).  The push protocol is outside the kernel; a
    ``NotificationSink`` implementation plugs it in.

Failure modes:
    None surface to the caller.  ``NotificationDispatcher.notify`` never
    raises; a failing sink is logged as ``notification_delivery_failed`` and
    the triggering operation is unaffected.
"""

from __future__ import annotations

from collections.abc import Iterable
from concurrent.futures import Executor, Future
from typing import Any, Protocol
from uuid import UUID

from branchbook_kernel.logging_config import get_logger

logger = get_logger("services.notification")


class NotificationSink(Protocol):
    """Delivers a notification to a set of users."""

    def notify(
        self,
        user_ids: list[UUID],
        title: str,
        body: str,
        payload: dict[str, Any],
    ) -> None: ...


class LoggingNotificationSink:
    """Default sink: records each notification as a structured log line."""

    def notify(
        self,
        user_ids: list[UUID],
        title: str,
        body: str,
        payload: dict[str, Any],
    ) -> None:
        logger.info(
            "notification_sent",
            extra={
                "recipients": [str(u) for u in user_ids],
                "title": title,
                "body": body,
                "payload": payload,
            },
        )


class NotificationDispatcher:
    """
    Hands notifications to a sink without blocking or failing the caller.

    With an ``executor`` the sink runs on a worker thread; without one it
    runs inline (still isolated from the caller's errors).
    """

    def __init__(
        self,
        sink: NotificationSink | None = None,
        executor: Executor | None = None,
    ):
        self._sink = sink or LoggingNotificationSink()
        self._executor = executor

    def notify(
        self,
        user_ids: Iterable[UUID],
        title: str,
        body: str,
        payload: dict[str, Any] | None = None,
    ) -> Future | None:
        recipients = list(dict.fromkeys(user_ids))
        if not recipients:
            logger.debug("notification_skipped_no_recipients", extra={"title": title})
            return None
        payload = dict(payload or {})

        if self._executor is None:
            self._deliver(recipients, title, body, payload)
            return None
        try:
            return self._executor.submit(self._deliver, recipients, title, body, payload)
        except RuntimeError:
            # Executor already shut down
            logger.warning(
                "notification_delivery_failed",
                extra={"title": title, "recipient_count": len(recipients)},
                exc_info=True,
            )
            return None

    def _deliver(
        self,
        user_ids: list[UUID],
        title: str,
        body: str,
        payload: dict[str, Any],
    ) -> None:
        try:
            self._sink.notify(user_ids, title, body, payload)
        except Exception:
            logger.warning(
                "notification_delivery_failed",
                extra={"title": title, "recipient_count": len(user_ids)},
                exc_info=True,
            )
