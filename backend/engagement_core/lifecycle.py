from __future__ import annotations

import asyncio
from typing import Any

import structlog

from patient_store.notification_store import NotificationStore

from .errors import InvalidTransitionError, NotFoundError

logger = structlog.get_logger(__name__)

NOTIFICATION_STATUSES = ("pending", "assigned", "responded", "resolved", "dismissed")


class NotificationLifecycle:
    """Staff-driven status changes on persisted escalation notifications."""

    _TRANSITIONS = {
        "pending": {"assigned", "dismissed"},
        "assigned": {"responded", "dismissed"},
        "responded": {"resolved"},
        "resolved": set(),
        "dismissed": set(),
    }

    def __init__(self, store: NotificationStore) -> None:
        self._store = store

    def _transition(
        self,
        notification_id: str,
        next_state: str,
        *,
        assignee_id: str | None = None,
        response: str | None = None,
    ) -> dict[str, Any]:
        current = self._store.get(notification_id)
        if not current:
            raise NotFoundError(f"Notification not found: {notification_id}")
        allowed_next = self._TRANSITIONS.get(current["status"], set())
        if next_state not in allowed_next:
            raise InvalidTransitionError(f"Invalid transition: {current['status']} -> {next_state}")
        updated = self._store.update(
            notification_id=notification_id,
            status=next_state,
            assignee_id=assignee_id,
            response=response,
            responded=next_state == "responded",
        )
        logger.info(
            "notification_transitioned",
            notification_id=notification_id,
            from_status=current["status"],
            to_status=next_state,
            assignee_id=assignee_id,
        )
        return updated or {}

    async def assign(self, notification_id: str, assignee_id: str) -> dict[str, Any]:
        return await asyncio.to_thread(self._transition, notification_id, "assigned", assignee_id=assignee_id)

    async def respond(self, notification_id: str, response: str) -> dict[str, Any]:
        return await asyncio.to_thread(self._transition, notification_id, "responded", response=response)

    async def resolve(self, notification_id: str) -> dict[str, Any]:
        return await asyncio.to_thread(self._transition, notification_id, "resolved")

    async def dismiss(self, notification_id: str) -> dict[str, Any]:
        return await asyncio.to_thread(self._transition, notification_id, "dismissed")

    async def list_notifications(
        self,
        *,
        status: str | None = None,
        priority: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        return await asyncio.to_thread(
            self._store.list_notifications,
            status=status,
            priority=priority,
            limit=limit,
            offset=offset,
        )
