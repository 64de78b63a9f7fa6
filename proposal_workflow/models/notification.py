"""
Proposal Workflow Service
Queued notification record.

Delivery status advances PENDING -> SENT -> DELIVERED -> READ (or FAILED).
Only the READ step is driven in-process; the others belong to the
transport integration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from proposal_workflow.utils.helpers import iso, new_id, utc_now


class NotificationChannel(str, Enum):
    EMAIL = "EMAIL"
    IN_APP = "IN_APP"
    SMS = "SMS"
    PUSH = "PUSH"


class NotificationPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class NotificationStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    FAILED = "FAILED"


@dataclass
class WorkflowNotification:
    user_id: str
    proposal_id: str
    title: str
    message: str
    channel: NotificationChannel = NotificationChannel.IN_APP
    priority: NotificationPriority = NotificationPriority.MEDIUM
    status: NotificationStatus = NotificationStatus.PENDING
    template: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    id: str = field(default_factory=lambda: new_id("notification"))

    @property
    def is_read(self) -> bool:
        return self.status == NotificationStatus.READ

    def mark_read(self, when: datetime | None = None):
        self.status = NotificationStatus.READ
        self.read_at = when or utc_now()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "proposal_id": self.proposal_id,
            "channel": self.channel.value,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "status": self.status.value,
            "template": self.template,
            "data": self.data,
            "is_read": self.is_read,
            "created_at": iso(self.created_at),
            "sent_at": iso(self.sent_at),
            "delivered_at": iso(self.delivered_at),
            "read_at": iso(self.read_at),
        }
