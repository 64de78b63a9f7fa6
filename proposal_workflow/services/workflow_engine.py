"""
Proposal Workflow Service
Workflow engine.

Computes step/transition state for a proposal under a workflow
configuration and applies transitions:

  1. resolve configuration + transition          (NotFoundError)
  2. role / permission gate                       (AuthorizationError)
  3. from-status match + guard conditions         (PreconditionError)
  4. build the updated copy (status, updated_at, status-specific fields)
  5. run side-effect actions (best-effort, never rolled back)
  6. append one STATUS_CHANGE event
  7. queue the transition notification
  8. return the updated copy

State-changing calls never raise domain errors to the caller: they return a
TransitionResult. The input proposal is never mutated; persisting the
returned copy is the caller's job (see WorkflowService).

Usage:
    engine = WorkflowEngine(store, event_log, dispatcher)
    result = engine.apply_transition(proposal, user, "draft-to-submitted")
    if result.success:
        repo.save(result.updated_proposal, expected_version=proposal.version)
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timedelta

from proposal_workflow.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    PreconditionError,
    ValidationError,
    WorkflowError,
)
from proposal_workflow.models.event import EventType, WorkflowComment, WorkflowEvent
from proposal_workflow.models.notification import NotificationPriority
from proposal_workflow.models.proposal import Proposal, ProposalStatus, User, UserRole
from proposal_workflow.models.result import TransitionResult
from proposal_workflow.models.workflow import (
    PermissionAction,
    RecipientPolicy,
    StepStatus,
    WorkflowConfiguration,
    WorkflowStep,
    WorkflowTransition,
    derived_step,
)
from proposal_workflow.services.conditions import describe, first_failing
from proposal_workflow.services.event_log import CommentStore
from proposal_workflow.utils.helpers import utc_now

logger = logging.getLogger(__name__)

ESCALATION_TEMPLATE = "proposal_escalated"


class WorkflowEngine:
    """Rules evaluator over an injected configuration store."""

    def __init__(self, store, event_log, dispatcher, *, comments=None,
                 action_runner=None, directory=None, clock=utc_now):
        self.store = store
        self.event_log = event_log
        self.dispatcher = dispatcher
        self.comments = comments if comments is not None else CommentStore()
        self.action_runner = action_runner
        self.directory = directory
        self.clock = clock

    # ═════════════════════════════════════════════════════════════════════
    # Configuration lookup
    # ═════════════════════════════════════════════════════════════════════

    def _config(self, proposal: Proposal, workflow_id: str | None) -> WorkflowConfiguration | None:
        return self.store.get(workflow_id or proposal.workflow_id)

    def _require_config(self, proposal: Proposal, workflow_id: str | None) -> WorkflowConfiguration:
        config = self._config(proposal, workflow_id)
        if config is None:
            raise NotFoundError("Workflow", workflow_id or proposal.workflow_id)
        return config

    # ═════════════════════════════════════════════════════════════════════
    # Steps
    # ═════════════════════════════════════════════════════════════════════

    def current_step(self, proposal: Proposal, workflow_id: str | None = None) -> WorkflowStep | None:
        config = self._config(proposal, workflow_id)
        if config is None:
            return None
        step = config.step_for_status(proposal.status)
        if step is None:
            logger.error(
                "Workflow %s has no step for status %s", config.id, proposal.status.value,
                extra={"proposal_id": proposal.id, "workflow_id": config.id},
            )
        return step

    def _neighbour(self, proposal, workflow_id, offset) -> WorkflowStep | None:
        current = self.current_step(proposal, workflow_id)
        if current is None:
            return None
        return self._config(proposal, workflow_id).step_at(current.order + offset)

    def next_step(self, proposal: Proposal, workflow_id: str | None = None) -> WorkflowStep | None:
        return self._neighbour(proposal, workflow_id, 1)

    def previous_step(self, proposal: Proposal, workflow_id: str | None = None) -> WorkflowStep | None:
        return self._neighbour(proposal, workflow_id, -1)

    def steps_with_status(self, proposal: Proposal, workflow_id: str | None = None) -> list[WorkflowStep]:
        """Copies of every step, ordered, with a derived display status."""
        config = self._config(proposal, workflow_id)
        if config is None:
            return []
        current = self.current_step(proposal, workflow_id)
        steps = []
        for step in sorted(config.steps, key=lambda s: s.order):
            if current is None:
                status = StepStatus.PENDING
            elif step.order < current.order:
                status = StepStatus.COMPLETED
            elif step.order == current.order:
                status = StepStatus.IN_PROGRESS
            else:
                status = StepStatus.PENDING
            steps.append(derived_step(step, status))
        return steps

    # ═════════════════════════════════════════════════════════════════════
    # Authorisation & transitions
    # ═════════════════════════════════════════════════════════════════════

    def authorize(self, user: User, proposal: Proposal, action: PermissionAction,
                  workflow_id: str | None = None) -> bool:
        config = self._config(proposal, workflow_id)
        return config is not None and self._permits(user, config, action)

    @staticmethod
    def _permits(user: User, config: WorkflowConfiguration, action: PermissionAction) -> bool:
        return user.is_active and user.role in config.permissions.roles_for(PermissionAction(action))

    def _role_allows(self, user: User, transition: WorkflowTransition) -> bool:
        return transition.required_role is None or transition.required_role == user.role

    def available_transitions(self, proposal: Proposal, user: User,
                              workflow_id: str | None = None) -> list[WorkflowTransition]:
        config = self._config(proposal, workflow_id)
        if config is None:
            return []
        return [
            t for t in config.transitions
            if t.from_status == proposal.status
            and self._role_allows(user, t)
            and self._permits(user, config, t.implied_action)
        ]

    def apply_transition(self, proposal: Proposal, user: User, transition_id: str,
                         notes: str | None = None, workflow_id: str | None = None) -> TransitionResult:
        try:
            updated = self._apply(proposal, user, transition_id, notes, workflow_id)
        except WorkflowError as exc:
            logger.info(
                "Transition %s rejected for proposal %s: %s", transition_id, proposal.id, exc,
                extra={"proposal_id": proposal.id, "transition_id": transition_id},
            )
            return TransitionResult.failure(exc)
        return TransitionResult.ok(updated)

    def _apply(self, proposal, user, transition_id, notes, workflow_id) -> Proposal:
        config = self._require_config(proposal, workflow_id)
        transition = config.transition(transition_id)
        if transition is None:
            raise NotFoundError("Transition", transition_id)

        action = transition.implied_action
        if not self._role_allows(user, transition):
            raise AuthorizationError(
                user.id, user.role.value, f"apply {transition_id}",
                reason=f"requires role {transition.required_role.value}",
            )
        if not self._permits(user, config, action):
            raise AuthorizationError(user.id, user.role.value, f"{action.value.lower()} proposal {proposal.id}")

        if transition.from_status != proposal.status:
            raise PreconditionError(
                f"proposal status is {proposal.status.value}, "
                f"transition {transition_id} requires {transition.from_status.value}"
            )
        failed = first_failing(proposal, transition.conditions)
        if failed is not None:
            raise PreconditionError(describe(failed))

        updated = self._updated_copy(proposal, user, transition.to_status, notes)

        outcomes = []
        if transition.actions and self.action_runner is not None:
            outcomes = self.action_runner.run(updated, transition, user, config)

        details = {"transition_id": transition_id, "notes": notes}
        if outcomes:
            details["actions"] = [o.to_dict() for o in outcomes]
        self.event_log.append(WorkflowEvent.by(
            user, proposal.id, EventType.STATUS_CHANGE,
            f"Status changed from {proposal.status.value} to {transition.to_status.value}",
            from_status=proposal.status,
            to_status=transition.to_status,
            details=details,
            created_at=updated.updated_at,
        ))

        if transition.notification_template and config.notifications.enabled:
            for recipient in self._transition_recipients(config, updated, user):
                self.dispatcher.enqueue(
                    updated, transition.notification_template, user,
                    recipient=recipient, templates=config.notifications.templates,
                )

        logger.info(
            "Proposal %s: %s -> %s by %s", proposal.id,
            proposal.status.value, transition.to_status.value, user.id,
            extra={"proposal_id": proposal.id, "workflow_id": config.id,
                   "transition_id": transition_id},
        )
        return updated

    def _updated_copy(self, proposal: Proposal, user: User, to_status: ProposalStatus,
                      notes: str | None) -> Proposal:
        now = self.clock()
        updated = copy.deepcopy(proposal)
        updated.status = to_status
        updated.updated_at = now
        if to_status == ProposalStatus.SUBMITTED:
            updated.submitted_at = now
        elif to_status == ProposalStatus.UNDER_REVIEW:
            updated.reviewed_at = now
            updated.reviewed_by = user.id
        elif to_status == ProposalStatus.APPROVED:
            updated.final_approval_notes = notes
        elif to_status == ProposalStatus.REJECTED:
            updated.approval_notes = notes
        return updated

    def _transition_recipients(self, config: WorkflowConfiguration, updated: Proposal,
                               actor: User) -> list[User]:
        """Actor by default; with the next_role policy, whoever can act next."""
        if config.notifications.recipient_policy != RecipientPolicy.NEXT_ROLE or self.directory is None:
            return [actor]
        roles = []
        for t in config.transitions:
            if t.from_status == updated.status and t.required_role and t.required_role not in roles:
                roles.append(t.required_role)
        recipients = self._users_with_roles(roles)
        return recipients or [actor]

    def _users_with_roles(self, roles) -> list[User]:
        if self.directory is None:
            return []
        seen, users = set(), []
        for role in roles:
            for u in self.directory.active_with_role(role):
                if u.id not in seen:
                    seen.add(u.id)
                    users.append(u)
        return users

    # ═════════════════════════════════════════════════════════════════════
    # Escalation
    # ═════════════════════════════════════════════════════════════════════

    def escalate(self, proposal: Proposal, user: User, reason: str,
                 workflow_id: str | None = None) -> TransitionResult:
        """Flag a proposal for attention. Status and assignee are unchanged."""
        try:
            config = self._require_config(proposal, workflow_id)
            if not self._permits(user, config, PermissionAction.ESCALATE):
                raise AuthorizationError(user.id, user.role.value, f"escalate proposal {proposal.id}")
            if proposal.is_terminal:
                raise PreconditionError(f"proposal is already {proposal.status.value}")
        except WorkflowError as exc:
            logger.info("Escalation rejected for proposal %s: %s", proposal.id, exc,
                        extra={"proposal_id": proposal.id})
            return TransitionResult.failure(exc)

        escalate_to = []
        for rule in config.notifications.escalation_rules:
            if rule.escalate_to not in escalate_to:
                escalate_to.append(rule.escalate_to)
        step = self.current_step(proposal, config.id)

        self.event_log.append(WorkflowEvent.by(
            user, proposal.id, EventType.ESCALATION,
            f"Proposal escalated: {reason}",
            details={
                "reason": reason,
                "step_id": step.id if step else None,
                "escalate_to": [r.value for r in escalate_to],
            },
            is_internal=True,
            created_at=self.clock(),
        ))

        recipients = [user] + [u for u in self._users_with_roles(escalate_to) if u.id != user.id]
        if config.notifications.enabled:
            for recipient in recipients:
                self.dispatcher.enqueue(
                    proposal, ESCALATION_TEMPLATE, user, recipient=recipient,
                    priority=NotificationPriority.HIGH,
                    templates=config.notifications.templates,
                    data={"reason": reason},
                )
        logger.warning(
            "Proposal %s escalated by %s: %s", proposal.id, user.id, reason,
            extra={"proposal_id": proposal.id, "workflow_id": config.id,
                   "event_type": EventType.ESCALATION.value},
        )
        return TransitionResult.ok(proposal)

    # ═════════════════════════════════════════════════════════════════════
    # Comments & events
    # ═════════════════════════════════════════════════════════════════════

    def add_comment(self, proposal: Proposal, step_id: str, user: User, content: str,
                    is_internal: bool = False, attachments=None) -> WorkflowComment:
        """Attach a note to a step.

        Raises:
            AuthorizationError: the user may not view the proposal.
            NotFoundError: unknown workflow or step.
            ValidationError: empty content.
        """
        config = self._require_config(proposal, None)
        if not self._permits(user, config, PermissionAction.VIEW):
            raise AuthorizationError(user.id, user.role.value, f"comment on proposal {proposal.id}")
        if config.step(step_id) is None:
            raise NotFoundError("Step", step_id)
        if not content or not content.strip():
            raise ValidationError("Comment content is required", details={"field": "content"})
        if user.role == UserRole.THERAPIST:
            is_internal = False

        comment = self.comments.add(WorkflowComment(
            proposal_id=proposal.id,
            step_id=step_id,
            user_id=user.id,
            user_name=user.name,
            user_role=user.role,
            content=content.strip(),
            is_internal=bool(is_internal),
            attachments=tuple(attachments or ()),
            created_at=self.clock(),
        ))
        self.event_log.append(WorkflowEvent.by(
            user, proposal.id, EventType.COMMENT,
            f"Comment added to step {step_id}",
            details={"comment_id": comment.id, "step_id": step_id},
            is_internal=comment.is_internal,
            created_at=comment.created_at,
        ))
        return comment

    def step_comments(self, proposal_id: str, step_id: str, viewer: User | None = None) -> list[WorkflowComment]:
        comments = self.comments.for_step(proposal_id, step_id)
        if viewer is not None and viewer.role == UserRole.THERAPIST:
            return [c for c in comments if not c.is_internal]
        return list(comments)

    def proposal_events(self, proposal_id: str, viewer: User | None = None) -> tuple[WorkflowEvent, ...]:
        include_internal = viewer is None or viewer.role != UserRole.THERAPIST
        return self.event_log.for_proposal(proposal_id, include_internal=include_internal)

    # ═════════════════════════════════════════════════════════════════════
    # Deadlines
    # ═════════════════════════════════════════════════════════════════════

    def step_entered_at(self, proposal: Proposal) -> datetime:
        last = self.event_log.last_of_type(proposal.id, EventType.STATUS_CHANGE)
        return last.created_at if last else proposal.updated_at

    def step_due_at(self, proposal: Proposal, workflow_id: str | None = None) -> datetime | None:
        config = self._config(proposal, workflow_id)
        if config is None or not config.deadlines.enabled or proposal.is_terminal:
            return None
        step = self.current_step(proposal, config.id)
        if step is None:
            return None
        hours = config.deadlines.hours_for(step.id)
        return self.step_entered_at(proposal) + timedelta(hours=hours)

    def is_overdue(self, proposal: Proposal, workflow_id: str | None = None,
                   now: datetime | None = None) -> bool:
        due = self.step_due_at(proposal, workflow_id)
        return due is not None and (now or self.clock()) > due

    def overdue_proposals(self, proposals, workflow_id: str | None = None,
                          now: datetime | None = None) -> list[Proposal]:
        now = now or self.clock()
        return [
            p for p in proposals
            if (workflow_id is None or p.workflow_id == workflow_id)
            and self.is_overdue(p, workflow_id, now)
        ]
