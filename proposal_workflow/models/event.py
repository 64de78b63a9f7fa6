"""
Proposal Workflow Service
Audit trail models.

WorkflowEvent and WorkflowComment are frozen: once written they are never
mutated or deleted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from proposal_workflow.models.proposal import ProposalStatus, User, UserRole
from proposal_workflow.utils.helpers import iso, new_id, utc_now


class EventType(str, Enum):
    STATUS_CHANGE = "STATUS_CHANGE"
    ASSIGNMENT = "ASSIGNMENT"
    COMMENT = "COMMENT"
    APPROVAL = "APPROVAL"
    REJECTION = "REJECTION"
    ESCALATION = "ESCALATION"
    DEADLINE = "DEADLINE"


@dataclass(frozen=True)
class WorkflowEvent:
    proposal_id: str
    event_type: EventType
    user_id: str
    user_name: str
    user_role: UserRole | None
    description: str
    from_status: ProposalStatus | None = None
    to_status: ProposalStatus | None = None
    details: dict[str, Any] = field(default_factory=dict)
    is_internal: bool = False
    created_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: new_id("event"))

    @classmethod
    def by(cls, user: User, proposal_id: str, event_type: EventType,
           description: str, **kwargs) -> "WorkflowEvent":
        """Build an event attributed to ``user``."""
        return cls(
            proposal_id=proposal_id,
            event_type=event_type,
            user_id=user.id,
            user_name=user.name,
            user_role=user.role,
            description=description,
            **kwargs,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "event_type": self.event_type.value,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value if self.to_status else None,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_role": self.user_role.value if self.user_role else None,
            "description": self.description,
            "details": self.details,
            "is_internal": self.is_internal,
            "created_at": iso(self.created_at),
        }


@dataclass(frozen=True)
class WorkflowComment:
    proposal_id: str
    step_id: str
    user_id: str
    user_name: str
    user_role: UserRole
    content: str
    is_internal: bool = False
    attachments: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: new_id("comment"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "step_id": self.step_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_role": self.user_role.value,
            "content": self.content,
            "is_internal": self.is_internal,
            "attachments": list(self.attachments),
            "created_at": iso(self.created_at),
        }
