"""
Proposal Workflow Service
Append-only audit log and step comment store.

Both stores index by proposal id so a per-proposal query never scans the
whole log. Nothing here updates or deletes a record.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict

from proposal_workflow.core.exceptions import ValidationError
from proposal_workflow.models.event import EventType, WorkflowComment, WorkflowEvent

logger = logging.getLogger(__name__)


class EventLog:
    """Append-only list of workflow events keyed by proposal id."""

    def __init__(self):
        self._by_proposal: dict[str, list[WorkflowEvent]] = defaultdict(list)
        self._all: list[WorkflowEvent] = []
        self._lock = threading.Lock()

    def append(self, event: WorkflowEvent) -> WorkflowEvent:
        if not getattr(event, "proposal_id", None):
            raise ValidationError("Event must reference a proposal", details={"field": "proposal_id"})
        with self._lock:
            self._by_proposal[event.proposal_id].append(event)
            self._all.append(event)
        logger.debug(
            "Event %s appended", event.event_type.value,
            extra={"proposal_id": event.proposal_id, "event_type": event.event_type.value},
        )
        return event

    def for_proposal(self, proposal_id: str, include_internal: bool = True) -> tuple[WorkflowEvent, ...]:
        """Events for one proposal, oldest first."""
        events = self._by_proposal.get(proposal_id, ())
        if include_internal:
            return tuple(events)
        return tuple(e for e in events if not e.is_internal)

    def of_type(self, proposal_id: str, event_type: EventType) -> tuple[WorkflowEvent, ...]:
        return tuple(e for e in self._by_proposal.get(proposal_id, ()) if e.event_type == event_type)

    def last_of_type(self, proposal_id: str, event_type: EventType) -> WorkflowEvent | None:
        for event in reversed(self._by_proposal.get(proposal_id, ())):
            if event.event_type == event_type:
                return event
        return None

    def all_events(self) -> tuple[WorkflowEvent, ...]:
        return tuple(self._all)

    def __len__(self):
        return len(self._all)


class CommentStore:
    """Step comments keyed by (proposal_id, step_id)."""

    def __init__(self):
        self._comments: dict[tuple[str, str], list[WorkflowComment]] = defaultdict(list)
        self._lock = threading.Lock()

    def add(self, comment: WorkflowComment) -> WorkflowComment:
        with self._lock:
            self._comments[(comment.proposal_id, comment.step_id)].append(comment)
        return comment

    def for_step(self, proposal_id: str, step_id: str) -> tuple[WorkflowComment, ...]:
        return tuple(self._comments.get((proposal_id, step_id), ()))
