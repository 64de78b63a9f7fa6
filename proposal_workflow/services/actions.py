"""
Proposal Workflow Service
Transition side-effect actions.

Actions run after the engine has computed the new proposal value. Each one
is best-effort: a failure is logged and reported in the returned outcomes,
and never undoes the status change.

Each action is keyed by (proposal_id, transition_id, action index,
proposal.updated_at); a key that already ran is skipped, so a retried
dispatch does not notify or email twice.

Action parameters:
    NOTIFY        template, recipient_role?, priority?
    ASSIGN        role?, user_id?
    UPDATE_FIELD  field, value
    SEND_EMAIL    to? (defaults to the actor's email), template?, message?
    CREATE_TASK   title, assignee_role?, due_hours?
    LOG_EVENT     event_type? (default COMMENT), description?
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from proposal_workflow.core.exceptions import ValidationError
from proposal_workflow.models.event import EventType, WorkflowEvent
from proposal_workflow.models.notification import NotificationPriority
from proposal_workflow.models.proposal import PROTECTED_FIELDS, Proposal, User, UserRole
from proposal_workflow.models.workflow import ActionType, WorkflowAction, WorkflowConfiguration, WorkflowTransition
from proposal_workflow.utils.helpers import iso, new_id, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ActionOutcome:
    index: int
    type: ActionType
    success: bool
    skipped: bool = False
    error: str | None = None
    detail: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {"index": self.index, "type": self.type.value, "success": self.success}
        if self.skipped:
            data["skipped"] = True
        if self.error:
            data["error"] = self.error
        if self.detail:
            data["detail"] = self.detail
        return data


class ActionRunner:
    """Executes a transition's configured actions in order."""

    def __init__(self, dispatcher, event_log, email_service=None, directory=None):
        self.dispatcher = dispatcher
        self.event_log = event_log
        self.email_service = email_service
        self.directory = directory
        self.tasks: list[dict] = []
        self._executed: set[tuple] = set()
        self._lock = threading.Lock()

    @staticmethod
    def idempotency_key(proposal: Proposal, transition: WorkflowTransition, index: int) -> tuple:
        return (proposal.id, transition.id, index, iso(proposal.updated_at))

    def run(self, proposal: Proposal, transition: WorkflowTransition, user: User,
            config: WorkflowConfiguration) -> list[ActionOutcome]:
        """Run every action of ``transition`` against the updated ``proposal``.

        UPDATE_FIELD mutates ``proposal`` in place.
        """
        outcomes = []
        for index, action in enumerate(transition.actions):
            key = self.idempotency_key(proposal, transition, index)
            with self._lock:
                if key in self._executed:
                    outcomes.append(ActionOutcome(index, action.type, success=True, skipped=True))
                    continue
                self._executed.add(key)
            try:
                detail = self._dispatch(action, proposal, transition, user, config)
                outcomes.append(ActionOutcome(index, action.type, success=True, detail=detail or {}))
            except Exception as exc:
                logger.exception(
                    "Action %s #%d failed for proposal %s", action.type.value, index, proposal.id,
                    extra={"proposal_id": proposal.id, "transition_id": transition.id},
                )
                outcomes.append(ActionOutcome(index, action.type, success=False, error=str(exc)))
        return outcomes

    def _dispatch(self, action: WorkflowAction, proposal, transition, user, config) -> dict | None:
        handler = {
            ActionType.NOTIFY: self._notify,
            ActionType.ASSIGN: self._assign,
            ActionType.UPDATE_FIELD: self._update_field,
            ActionType.SEND_EMAIL: self._send_email,
            ActionType.CREATE_TASK: self._create_task,
            ActionType.LOG_EVENT: self._log_event,
        }[action.type]
        return handler(action.parameters, proposal, transition, user, config)

    # ── Handlers ──────────────────────────────────────────────────────────

    def _notify(self, params, proposal, transition, user, config):
        template = params.get("template") or transition.notification_template or "proposal_update"
        priority = NotificationPriority(params.get("priority", NotificationPriority.MEDIUM.value))
        recipients = [user]
        role = params.get("recipient_role")
        if role and self.directory is not None:
            recipients = self.directory.active_with_role(UserRole(role)) or [user]
        sent = [
            self.dispatcher.enqueue(
                proposal, template, user, recipient=r, priority=priority,
                templates=config.notifications.templates,
            ).id
            for r in recipients
        ]
        return {"notifications": sent}

    def _assign(self, params, proposal, transition, user, config):
        role = params.get("role")
        assignee = params.get("user_id")
        if not role and not assignee:
            raise ValidationError("ASSIGN action needs a role or user_id")
        target = assignee or role
        event = self.event_log.append(WorkflowEvent.by(
            user, proposal.id, EventType.ASSIGNMENT,
            f"Proposal assigned to {target}",
            details={"role": role, "user_id": assignee, "transition_id": transition.id},
            is_internal=True,
            created_at=proposal.updated_at,
        ))
        return {"event_id": event.id}

    def _update_field(self, params, proposal, transition, user, config):
        name = params.get("field")
        if name not in Proposal.field_names() or name in PROTECTED_FIELDS:
            raise ValidationError(f"Field cannot be updated by an action: {name}",
                                  details={"field": name})
        try:
            value = Proposal.coerce_field(name, params.get("value"))
        except ValueError as exc:
            raise ValidationError(str(exc), details={"field": name}) from exc
        setattr(proposal, name, value)
        return {"field": name}

    def _send_email(self, params, proposal, transition, user, config):
        if self.email_service is None:
            raise ValidationError("No email service configured")
        to_email = params.get("to") or user.email
        if not to_email:
            raise ValidationError("SEND_EMAIL action has no recipient address")
        template = params.get("template", "proposal_update")
        record = self.email_service.send_from_template(
            to_email=to_email,
            template_name=template,
            context={
                "proposal_id": proposal.id,
                "status": proposal.status.value,
                "message": params.get("message") or config.notifications.templates.get(
                    transition.notification_template or "", ""),
            },
        )
        if record is None:
            raise ValidationError(f"Unknown email template: {template}")
        if record.status == "failed":
            raise RuntimeError(record.error_message or "Email delivery failed")
        return {"to": to_email, "status": record.status}

    def _create_task(self, params, proposal, transition, user, config):
        task = {
            "id": new_id("task"),
            "proposal_id": proposal.id,
            "transition_id": transition.id,
            "title": params.get("title") or f"Follow up on proposal {proposal.id}",
            "assignee_role": params.get("assignee_role"),
            "due_hours": params.get("due_hours"),
            "created_by": user.id,
            "created_at": iso(utc_now()),
        }
        self.tasks.append(task)
        return {"task_id": task["id"]}

    def _log_event(self, params, proposal, transition, user, config):
        event_type = EventType(params.get("event_type", EventType.COMMENT.value))
        if event_type == EventType.STATUS_CHANGE:
            raise ValidationError("LOG_EVENT may not write STATUS_CHANGE events")
        event = self.event_log.append(WorkflowEvent.by(
            user, proposal.id, event_type,
            params.get("description") or f"Action logged by transition {transition.id}",
            details={"transition_id": transition.id},
            is_internal=True,
            created_at=proposal.updated_at,
        ))
        return {"event_id": event.id}

    def tasks_for(self, proposal_id: str) -> list[dict]:
        return [t for t in self.tasks if t["proposal_id"] == proposal_id]
