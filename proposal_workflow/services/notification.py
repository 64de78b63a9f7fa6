"""
Proposal Workflow Service
Notification dispatcher.

Produces queued in-app notification records for workflow events. Actual
delivery (email/SMS/push transport) happens elsewhere; this service's
contract ends at a well-formed PENDING record.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict

from proposal_workflow.models.notification import (
    NotificationChannel,
    NotificationPriority,
    WorkflowNotification,
)
from proposal_workflow.models.proposal import Proposal, User

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Proposal Status Update"


class NotificationDispatcher:
    """In-memory notification queue indexed by recipient."""

    def __init__(self, default_channel: str | NotificationChannel = NotificationChannel.IN_APP):
        self.default_channel = NotificationChannel(default_channel)
        self._by_id: dict[str, WorkflowNotification] = {}
        self._by_user: dict[str, list[WorkflowNotification]] = defaultdict(list)
        self._lock = threading.Lock()

    # ── Create ────────────────────────────────────────────────────────────

    def enqueue(
        self,
        proposal: Proposal,
        template_name: str,
        triggering_user: User,
        recipient: User | None = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        channel: NotificationChannel | None = None,
        *,
        templates: dict[str, str] | None = None,
        title: str = DEFAULT_TITLE,
        data: dict | None = None,
    ) -> WorkflowNotification:
        """Queue a notification about ``proposal``.

        Args:
            recipient: Defaults to the triggering user.
            templates: Template name -> message text, usually the workflow
                configuration's notification templates.
        """
        target = recipient or triggering_user
        text = (templates or {}).get(template_name)
        message = (
            f"{text} (proposal {proposal.id})" if text
            else f"Proposal {proposal.id} status has been updated"
        )
        payload = {
            "proposal_id": proposal.id,
            "status": proposal.status.value,
            "triggered_by": triggering_user.id,
        }
        payload.update(data or {})

        notification = WorkflowNotification(
            user_id=target.id,
            proposal_id=proposal.id,
            title=title,
            message=message,
            channel=NotificationChannel(channel) if channel else self.default_channel,
            priority=NotificationPriority(priority),
            template=template_name,
            data=payload,
        )
        with self._lock:
            self._by_id[notification.id] = notification
            self._by_user[target.id].append(notification)
        logger.info(
            "Notification %s queued for %s", template_name, target.id,
            extra={"proposal_id": proposal.id, "notification_id": notification.id},
        )
        return notification

    # ── Query ─────────────────────────────────────────────────────────────

    def get(self, notification_id: str) -> WorkflowNotification | None:
        return self._by_id.get(notification_id)

    def for_user(self, user_id: str, unread_only: bool = False) -> list[WorkflowNotification]:
        """Notifications for a recipient, newest first."""
        items = self._by_user.get(user_id, [])
        if unread_only:
            items = [n for n in items if not n.is_read]
        return list(reversed(items))

    def unread_count(self, user_id: str) -> int:
        return sum(1 for n in self._by_user.get(user_id, []) if not n.is_read)

    def all(self) -> list[WorkflowNotification]:
        return list(self._by_id.values())

    # ── Actions ───────────────────────────────────────────────────────────

    def mark_read(self, notification_id: str) -> bool:
        notification = self._by_id.get(notification_id)
        if notification is None:
            return False
        notification.mark_read()
        return True
