"""
Proposal Workflow Service
Service facade used by the HTTP layer and the CLI.

Wires the configuration store, engine, event log, notification dispatcher,
action runner, proposal repository and user directory together, and owns
the read-modify-write cycle around the engine:

    lock(proposal) -> re-read latest -> version check -> engine -> save(v)

Usage:
    service = WorkflowService.build(app.config)
    result = service.transition("prop-1", user, "draft-to-submitted")
"""

from __future__ import annotations

import logging
from datetime import datetime

from proposal_workflow.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
    WorkflowError,
)
from proposal_workflow.models.event import EventType
from proposal_workflow.models.proposal import DEFAULT_WORKFLOW_ID, Proposal, ProposalStatus, User, UserRole
from proposal_workflow.models.result import TransitionResult
from proposal_workflow.models.workflow import PermissionAction, RecipientPolicy, default_workflow, with_cancellation
from proposal_workflow.services.actions import ActionRunner
from proposal_workflow.services.config_store import WorkflowConfigurationStore
from proposal_workflow.services.email_service import EmailService
from proposal_workflow.services.event_log import CommentStore, EventLog
from proposal_workflow.services.metrics import MetricsReporter
from proposal_workflow.services.notification import NotificationDispatcher
from proposal_workflow.services.proposal_store import ProposalRepository, UserDirectory
from proposal_workflow.services.workflow_engine import WorkflowEngine
from proposal_workflow.utils.helpers import new_id

logger = logging.getLogger(__name__)

SYSTEM_USER = User(id="system", name="Workflow Scheduler", role=UserRole.ADMIN)


class WorkflowService:

    def __init__(self, *, store, engine, event_log, dispatcher, repository, directory,
                 action_runner=None, email_service=None, default_workflow_id=DEFAULT_WORKFLOW_ID):
        self.store = store
        self.engine = engine
        self.event_log = event_log
        self.dispatcher = dispatcher
        self.repository = repository
        self.directory = directory
        self.action_runner = action_runner
        self.email_service = email_service
        self.default_workflow_id = default_workflow_id
        self.metrics = MetricsReporter(engine, repository, event_log)

    @classmethod
    def build(cls, config=None) -> "WorkflowService":
        """Assemble the in-memory service graph from a Flask-style config mapping."""
        config = config or {}
        store = WorkflowConfigurationStore()
        event_log = EventLog()
        dispatcher = NotificationDispatcher(config.get("NOTIFICATION_DEFAULT_CHANNEL") or "IN_APP")
        directory = UserDirectory()
        email_service = EmailService.from_config(config)
        runner = ActionRunner(dispatcher, event_log, email_service, directory)
        engine = WorkflowEngine(
            store, event_log, dispatcher,
            comments=CommentStore(), action_runner=runner, directory=directory,
        )
        service = cls(
            store=store, engine=engine, event_log=event_log, dispatcher=dispatcher,
            repository=ProposalRepository(), directory=directory,
            action_runner=runner, email_service=email_service,
            default_workflow_id=config.get("WORKFLOW_DEFAULT_ID") or DEFAULT_WORKFLOW_ID,
        )
        if config.get("WORKFLOW_SEED_DEFAULT", True):
            service.seed_default_workflow(
                enable_cancellation=bool(config.get("WORKFLOW_ENABLE_CANCELLATION")),
                recipient_policy=config.get("WORKFLOW_NOTIFY_RECIPIENTS"),
            )
        return service

    def seed_default_workflow(self, *, enable_cancellation=False, recipient_policy=None):
        workflow = default_workflow()
        workflow.id = self.default_workflow_id
        if enable_cancellation:
            workflow = with_cancellation(workflow)
        if recipient_policy:
            workflow.notifications.recipient_policy = RecipientPolicy(recipient_policy)
        return self.store.save(workflow)

    # ── Users ─────────────────────────────────────────────────────────────

    def resolve_user(self, user: User) -> User:
        """Record a header-supplied identity; deactivated accounts stay deactivated."""
        known = self.directory.get(user.id)
        if known is not None and not known.is_active:
            return known
        return self.directory.register(user)

    # ── Proposals ─────────────────────────────────────────────────────────

    def create_proposal(self, data: dict, user: User) -> Proposal:
        """Create a DRAFT proposal owned by the acting therapist."""
        if user.role != UserRole.THERAPIST or not user.is_active:
            raise AuthorizationError(user.id, user.role.value, "create proposals",
                                     reason="only active therapists create proposals")
        if not data.get("patient_id"):
            raise ValidationError("patient_id is required", details={"field": "patient_id"})

        payload = dict(data)
        payload.update({
            "id": data.get("id") or new_id("proposal"),
            "therapist_id": user.id,
            "status": ProposalStatus.DRAFT.value,
            "workflow_id": data.get("workflow_id") or self.default_workflow_id,
        })
        for key in ("version", "created_at", "updated_at", "submitted_at", "reviewed_at", "reviewed_by"):
            payload.pop(key, None)
        if payload["workflow_id"] not in self.store:
            raise NotFoundError("Workflow", payload["workflow_id"])
        try:
            proposal = Proposal.from_dict(payload)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid proposal: {exc}") from exc

        stored = self.repository.add(proposal)
        logger.info("Proposal %s created by %s", stored.id, user.id,
                    extra={"proposal_id": stored.id, "workflow_id": stored.workflow_id})
        return stored

    def get_proposal(self, proposal_id: str, viewer: User) -> Proposal:
        proposal = self.repository.require(proposal_id)
        if not self.engine.authorize(viewer, proposal, PermissionAction.VIEW):
            raise AuthorizationError(viewer.id, viewer.role.value, f"view proposal {proposal_id}")
        return proposal

    def workflow_view(self, proposal_id: str, viewer: User) -> dict:
        proposal = self.get_proposal(proposal_id, viewer)
        engine = self.engine
        current = engine.current_step(proposal)
        nxt = engine.next_step(proposal)
        prev = engine.previous_step(proposal)
        due = engine.step_due_at(proposal)
        return {
            "proposal_id": proposal.id,
            "status": proposal.status.value,
            "version": proposal.version,
            "current_step": current.to_dict() if current else None,
            "next_step": nxt.to_dict() if nxt else None,
            "previous_step": prev.to_dict() if prev else None,
            "steps": [s.to_dict() for s in engine.steps_with_status(proposal)],
            "available_transitions": [t.to_dict() for t in engine.available_transitions(proposal, viewer)],
            "due_at": due.isoformat() if due else None,
            "is_overdue": engine.is_overdue(proposal),
        }

    # ── State changes ─────────────────────────────────────────────────────

    def transition(self, proposal_id: str, user: User, transition_id: str,
                   notes: str | None = None, expected_version: int | None = None) -> TransitionResult:
        try:
            lock = self.repository.lock(proposal_id)
        except NotFoundError as exc:
            return TransitionResult.failure(exc)
        with lock:
            try:
                proposal = self.repository.require(proposal_id)
                if expected_version is not None and expected_version != proposal.version:
                    raise ConflictError("Proposal", "version", str(expected_version))
            except WorkflowError as exc:
                return TransitionResult.failure(exc)

            result = self.engine.apply_transition(proposal, user, transition_id, notes)
            if not result.success:
                return result
            try:
                saved = self.repository.save(result.updated_proposal, expected_version=proposal.version)
            except ConflictError as exc:
                return TransitionResult.failure(exc)
            return TransitionResult.ok(saved)

    def escalate(self, proposal_id: str, user: User, reason: str) -> TransitionResult:
        try:
            lock = self.repository.lock(proposal_id)
        except NotFoundError as exc:
            return TransitionResult.failure(exc)
        with lock:
            proposal = self.repository.require(proposal_id)
            return self.engine.escalate(proposal, user, reason)

    def overdue(self, workflow_id: str | None = None, now: datetime | None = None) -> list[Proposal]:
        return self.engine.overdue_proposals(self.repository.list(workflow_id=workflow_id),
                                             workflow_id, now)

    def escalate_overdue(self, system_user: User = SYSTEM_USER, now: datetime | None = None) -> list[str]:
        """Escalate each overdue proposal once per step visit. Returns escalated ids."""
        escalated = []
        for proposal in self.overdue(now=now):
            entered = self.engine.step_entered_at(proposal)
            already = any(
                e.created_at >= entered
                for e in self.event_log.of_type(proposal.id, EventType.ESCALATION)
            )
            if already:
                continue
            config = self.store.get(proposal.workflow_id)
            rules = config.notifications.escalation_rules if config else []
            reason = rules[0].message if rules and rules[0].message else "Proposal review overdue"
            result = self.escalate(proposal.id, system_user, reason)
            if result.success:
                escalated.append(proposal.id)
            else:
                logger.warning("Could not escalate overdue proposal %s: %s", proposal.id, result.error,
                               extra={"proposal_id": proposal.id})
        return escalated

    # ── Comments, events, notifications ───────────────────────────────────

    def add_comment(self, proposal_id: str, step_id: str, user: User, content: str,
                    is_internal: bool = False, attachments=None):
        proposal = self.repository.require(proposal_id)
        return self.engine.add_comment(proposal, step_id, user, content, is_internal, attachments)

    def step_comments(self, proposal_id: str, step_id: str, viewer: User):
        proposal = self.get_proposal(proposal_id, viewer)
        return self.engine.step_comments(proposal.id, step_id, viewer)

    def events(self, proposal_id: str, viewer: User):
        proposal = self.get_proposal(proposal_id, viewer)
        return self.engine.proposal_events(proposal.id, viewer)

    def notifications_for(self, user: User, unread_only: bool = False):
        return self.dispatcher.for_user(user.id, unread_only=unread_only)

    def mark_notification_read(self, notification_id: str, user: User) -> bool:
        notification = self.dispatcher.get(notification_id)
        if notification is None or notification.user_id != user.id:
            raise NotFoundError("Notification", notification_id)
        return self.dispatcher.mark_read(notification_id)
