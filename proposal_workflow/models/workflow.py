"""
Proposal Workflow Service
Workflow configuration domain model.

Models:
    - WorkflowStep: one named stage of the pipeline (order + responsible role)
    - WorkflowCondition: field-level guard evaluated against a proposal
    - WorkflowAction: side effect executed after a transition is applied
    - WorkflowTransition: permitted status change, gated by role/conditions
    - NotificationSettings / DeadlineSettings / PermissionSettings
    - WorkflowConfiguration: named pipeline definition (steps + transitions)

Factories:
    - default_workflow(): the shipped six-step approval pipeline
    - cancellation_transitions() / with_cancellation(): opt-in CANCELLED edges
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from proposal_workflow.core.exceptions import ValidationError
from proposal_workflow.models.proposal import DEFAULT_WORKFLOW_ID, ProposalStatus, UserRole
from proposal_workflow.utils.helpers import iso, parse_datetime, utc_now


# ═════════════════════════════════════════════════════════════════════════════
# Enums
# ═════════════════════════════════════════════════════════════════════════════

class StepStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    REJECTED = "REJECTED"


class TransitionTrigger(str, Enum):
    AUTOMATIC = "AUTOMATIC"
    MANUAL = "MANUAL"
    CONDITIONAL = "CONDITIONAL"


class ConditionOperator(str, Enum):
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    CONTAINS = "CONTAINS"
    IS_EMPTY = "IS_EMPTY"
    IS_NOT_EMPTY = "IS_NOT_EMPTY"


class ActionType(str, Enum):
    NOTIFY = "NOTIFY"
    ASSIGN = "ASSIGN"
    UPDATE_FIELD = "UPDATE_FIELD"
    SEND_EMAIL = "SEND_EMAIL"
    CREATE_TASK = "CREATE_TASK"
    LOG_EVENT = "LOG_EVENT"


class PermissionAction(str, Enum):
    VIEW = "VIEW"
    EDIT = "EDIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    ESCALATE = "ESCALATE"


class RecipientPolicy(str, Enum):
    """Who receives the notification a transition sends."""
    ACTOR = "actor"
    NEXT_ROLE = "next_role"


_TRUE_WORDS = frozenset({"true", "1", "yes"})
_FALSE_WORDS = frozenset({"false", "0", "no"})


def _flag(value, default: bool) -> bool:
    """Read a JSON boolean; "true"/"false" strings are accepted, anything else is a ValueError."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _TRUE_WORDS | _FALSE_WORDS:
        return value.strip().lower() in _TRUE_WORDS
    raise ValueError(f"expected a boolean, got {value!r}")


# Semantic status -> step mapping of the shipped pipeline.
DEFAULT_STATUS_STEPS: dict[str, str] = {
    ProposalStatus.DRAFT.value: "draft",
    ProposalStatus.SUBMITTED.value: "submission",
    ProposalStatus.UNDER_REVIEW.value: "coordinator-review",
    ProposalStatus.REJECTED.value: "coordinator-review",
    ProposalStatus.APPROVED.value: "final-approval",
    ProposalStatus.COMPLETED.value: "implementation",
}


# ═════════════════════════════════════════════════════════════════════════════
# Data classes
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class WorkflowStep:
    id: str
    name: str
    order: int
    description: str = ""
    required: bool = True
    can_skip: bool = False
    assigned_role: UserRole | None = None
    status: StepStatus = StepStatus.PENDING

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowStep":
        role = data.get("assigned_role")
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            order=int(data["order"]),
            description=data.get("description", ""),
            required=_flag(data.get("required"), True),
            can_skip=_flag(data.get("can_skip"), False),
            assigned_role=UserRole(role) if role else None,
            status=StepStatus(data.get("status", StepStatus.PENDING.value)),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "order": self.order,
            "required": self.required,
            "can_skip": self.can_skip,
            "assigned_role": self.assigned_role.value if self.assigned_role else None,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class WorkflowCondition:
    field: str
    operator: ConditionOperator
    value: Any = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowCondition":
        return cls(
            field=data["field"],
            operator=ConditionOperator(data["operator"]),
            value=data.get("value"),
            description=data.get("description", ""),
        )

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "operator": self.operator.value,
            "value": self.value,
            "description": self.description,
        }


@dataclass(frozen=True)
class WorkflowAction:
    type: ActionType
    parameters: dict = field(default_factory=dict)
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowAction":
        return cls(
            type=ActionType(data["type"]),
            parameters=dict(data.get("parameters") or {}),
            description=data.get("description", ""),
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "parameters": self.parameters,
            "description": self.description,
        }


@dataclass(frozen=True)
class WorkflowTransition:
    id: str
    from_status: ProposalStatus
    to_status: ProposalStatus
    trigger: TransitionTrigger = TransitionTrigger.MANUAL
    conditions: tuple[WorkflowCondition, ...] = ()
    actions: tuple[WorkflowAction, ...] = ()
    required_role: UserRole | None = None
    required_approval: bool = False
    notification_template: str | None = None

    @property
    def implied_action(self) -> PermissionAction:
        """Permission a user needs to be offered this transition."""
        if self.to_status == ProposalStatus.APPROVED:
            return PermissionAction.APPROVE
        if self.to_status == ProposalStatus.REJECTED:
            return PermissionAction.REJECT
        return PermissionAction.EDIT

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowTransition":
        role = data.get("required_role")
        return cls(
            id=data["id"],
            from_status=ProposalStatus(data["from_status"]),
            to_status=ProposalStatus(data["to_status"]),
            trigger=TransitionTrigger(data.get("trigger", TransitionTrigger.MANUAL.value)),
            conditions=tuple(WorkflowCondition.from_dict(c) for c in data.get("conditions") or []),
            actions=tuple(WorkflowAction.from_dict(a) for a in data.get("actions") or []),
            required_role=UserRole(role) if role else None,
            required_approval=_flag(data.get("required_approval"), False),
            notification_template=data.get("notification_template"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "trigger": self.trigger.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "required_role": self.required_role.value if self.required_role else None,
            "required_approval": self.required_approval,
            "notification_template": self.notification_template,
        }


@dataclass
class EscalationRule:
    delay: int
    escalate_to: UserRole
    message: str = ""

    def to_dict(self) -> dict:
        return {"delay": self.delay, "escalate_to": self.escalate_to.value, "message": self.message}


@dataclass
class NotificationSettings:
    enabled: bool = True
    templates: dict[str, str] = field(default_factory=dict)
    channels: list[str] = field(default_factory=lambda: ["IN_APP"])
    escalation_rules: list[EscalationRule] = field(default_factory=list)
    recipient_policy: RecipientPolicy = RecipientPolicy.ACTOR

    @classmethod
    def from_dict(cls, data: dict) -> "NotificationSettings":
        return cls(
            enabled=_flag(data.get("enabled"), True),
            templates=dict(data.get("templates") or {}),
            channels=list(data.get("channels") or ["IN_APP"]),
            escalation_rules=[
                EscalationRule(
                    delay=int(r.get("delay", 0)),
                    escalate_to=UserRole(r["escalate_to"]),
                    message=r.get("message", ""),
                )
                for r in data.get("escalation_rules") or []
            ],
            recipient_policy=RecipientPolicy(data.get("recipient_policy", RecipientPolicy.ACTOR.value)),
        )

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "templates": self.templates,
            "channels": self.channels,
            "escalation_rules": [r.to_dict() for r in self.escalation_rules],
            "recipient_policy": self.recipient_policy.value,
        }


@dataclass
class DeadlineSettings:
    enabled: bool = False
    default_deadline: int = 48          # hours
    step_deadlines: dict[str, int] = field(default_factory=dict)
    escalation_delay: int = 12          # hours

    def hours_for(self, step_id: str) -> int:
        return self.step_deadlines.get(step_id, self.default_deadline)

    @classmethod
    def from_dict(cls, data: dict) -> "DeadlineSettings":
        return cls(
            enabled=_flag(data.get("enabled"), False),
            default_deadline=int(data.get("default_deadline", 48)),
            step_deadlines={k: int(v) for k, v in (data.get("step_deadlines") or {}).items()},
            escalation_delay=int(data.get("escalation_delay", 12)),
        )

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "default_deadline": self.default_deadline,
            "step_deadlines": self.step_deadlines,
            "escalation_delay": self.escalation_delay,
        }


@dataclass
class PermissionSettings:
    can_view: list[UserRole] = field(default_factory=list)
    can_edit: list[UserRole] = field(default_factory=list)
    can_approve: list[UserRole] = field(default_factory=list)
    can_reject: list[UserRole] = field(default_factory=list)
    can_escalate: list[UserRole] = field(default_factory=list)

    def roles_for(self, action: PermissionAction) -> list[UserRole]:
        return {
            PermissionAction.VIEW: self.can_view,
            PermissionAction.EDIT: self.can_edit,
            PermissionAction.APPROVE: self.can_approve,
            PermissionAction.REJECT: self.can_reject,
            PermissionAction.ESCALATE: self.can_escalate,
        }[action]

    @classmethod
    def from_dict(cls, data: dict) -> "PermissionSettings":
        def _roles(key):
            return [UserRole(r) for r in data.get(key) or []]

        return cls(
            can_view=_roles("can_view"),
            can_edit=_roles("can_edit"),
            can_approve=_roles("can_approve"),
            can_reject=_roles("can_reject"),
            can_escalate=_roles("can_escalate"),
        )

    def to_dict(self) -> dict:
        return {
            key: [getattr(r, "value", r) for r in getattr(self, key)]
            for key in ("can_view", "can_edit", "can_approve", "can_reject", "can_escalate")
        }


@dataclass
class WorkflowConfiguration:
    """Named, versioned pipeline definition."""
    id: str
    name: str
    steps: list[WorkflowStep]
    transitions: list[WorkflowTransition]
    description: str = ""
    is_active: bool = True
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    deadlines: DeadlineSettings = field(default_factory=DeadlineSettings)
    permissions: PermissionSettings = field(default_factory=PermissionSettings)
    status_steps: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_STATUS_STEPS))
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def step(self, step_id: str) -> WorkflowStep | None:
        return next((s for s in self.steps if s.id == step_id), None)

    def step_at(self, order: int) -> WorkflowStep | None:
        return next((s for s in self.steps if s.order == order), None)

    def transition(self, transition_id: str) -> WorkflowTransition | None:
        return next((t for t in self.transitions if t.id == transition_id), None)

    def step_for_status(self, status: ProposalStatus) -> WorkflowStep | None:
        step_id = self.status_steps.get(status.value)
        return self.step(step_id) if step_id else None

    def copy(self) -> "WorkflowConfiguration":
        return copy.deepcopy(self)

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowConfiguration":
        """Build a configuration from a JSON payload.

        Raises:
            ValidationError: on missing keys or unknown enum values.
        """
        try:
            config = cls(
                id=data["id"],
                name=data.get("name", data["id"]),
                description=data.get("description", ""),
                is_active=_flag(data.get("is_active"), True),
                steps=[WorkflowStep.from_dict(s) for s in data.get("steps") or []],
                transitions=[WorkflowTransition.from_dict(t) for t in data.get("transitions") or []],
                notifications=NotificationSettings.from_dict(data.get("notifications") or {}),
                deadlines=DeadlineSettings.from_dict(data.get("deadlines") or {}),
                permissions=PermissionSettings.from_dict(data.get("permissions") or {}),
                status_steps=dict(data.get("status_steps") or DEFAULT_STATUS_STEPS),
            )
        except KeyError as exc:
            raise ValidationError(f"Missing field: {exc.args[0]}", details={"field": exc.args[0]}) from exc
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid workflow configuration: {exc}") from exc
        created = parse_datetime(data.get("created_at"))
        if created:
            config.created_at = created
        return config

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "steps": [s.to_dict() for s in self.steps],
            "transitions": [t.to_dict() for t in self.transitions],
            "notifications": self.notifications.to_dict(),
            "deadlines": self.deadlines.to_dict(),
            "permissions": self.permissions.to_dict(),
            "status_steps": self.status_steps,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Factories
# ═════════════════════════════════════════════════════════════════════════════

def default_workflow() -> WorkflowConfiguration:
    """Six-step therapeutic proposal approval pipeline."""
    T, C, A = UserRole.THERAPIST, UserRole.COORDINATOR, UserRole.ADMIN
    S = ProposalStatus

    steps = [
        WorkflowStep("draft", "Draft Creation", 1,
                     "Therapist creates initial proposal draft", assigned_role=T),
        WorkflowStep("submission", "Proposal Submission", 2,
                     "Therapist submits proposal for review", assigned_role=T),
        WorkflowStep("coordinator-review", "Coordinator Review", 3,
                     "Coordinator reviews proposal and pricing", assigned_role=C),
        WorkflowStep("budget-approval", "Budget Approval", 4,
                     "Administrator approves budget and costs", assigned_role=A),
        WorkflowStep("final-approval", "Final Approval", 5,
                     "Final administrative approval", assigned_role=A),
        WorkflowStep("implementation", "Implementation", 6,
                     "Proposal implementation and therapy start", assigned_role=T),
    ]
    transitions = [
        WorkflowTransition("draft-to-submitted", S.DRAFT, S.SUBMITTED,
                           required_role=T, notification_template="proposal_submitted"),
        WorkflowTransition("submitted-to-review", S.SUBMITTED, S.UNDER_REVIEW,
                           trigger=TransitionTrigger.AUTOMATIC, required_role=C,
                           notification_template="proposal_under_review"),
        WorkflowTransition("review-to-approved", S.UNDER_REVIEW, S.APPROVED,
                           required_role=A, required_approval=True,
                           notification_template="proposal_approved"),
        WorkflowTransition("review-to-rejected", S.UNDER_REVIEW, S.REJECTED,
                           required_role=C, notification_template="proposal_rejected"),
        WorkflowTransition("approved-to-implementation", S.APPROVED, S.COMPLETED,
                           required_role=T, notification_template="proposal_implementation"),
    ]
    return WorkflowConfiguration(
        id=DEFAULT_WORKFLOW_ID,
        name="Proposal Approval Workflow",
        description="Default workflow for therapeutic proposal approval",
        steps=steps,
        transitions=transitions,
        notifications=NotificationSettings(
            enabled=True,
            templates={
                "proposal_submitted": "New proposal submitted for review",
                "proposal_under_review": "Proposal is under review",
                "proposal_approved": "Proposal has been approved",
                "proposal_rejected": "Proposal has been rejected",
                "proposal_implementation": "Proposal ready for implementation",
                "proposal_escalated": "Proposal has been escalated",
            },
            channels=["EMAIL", "IN_APP"],
            escalation_rules=[EscalationRule(delay=24, escalate_to=A, message="Proposal review overdue")],
        ),
        deadlines=DeadlineSettings(
            enabled=True,
            default_deadline=48,
            step_deadlines={"coordinator-review": 24, "budget-approval": 48, "final-approval": 24},
            escalation_delay=12,
        ),
        permissions=PermissionSettings(
            can_view=[T, C, A],
            can_edit=[T, C],
            can_approve=[C, A],
            can_reject=[C, A],
            can_escalate=[C, A],
        ),
    )


def cancellation_transitions() -> list[WorkflowTransition]:
    """CANCELLED edges that the shipped pipeline leaves out."""
    S = ProposalStatus
    return [
        WorkflowTransition("review-to-cancelled", S.UNDER_REVIEW, S.CANCELLED,
                           required_role=UserRole.COORDINATOR,
                           notification_template="proposal_cancelled"),
        WorkflowTransition("approved-to-cancelled", S.APPROVED, S.CANCELLED,
                           required_role=UserRole.ADMIN,
                           notification_template="proposal_cancelled"),
        WorkflowTransition("rejected-to-cancelled", S.REJECTED, S.CANCELLED,
                           required_role=UserRole.ADMIN,
                           notification_template="proposal_cancelled"),
    ]


def with_cancellation(config: WorkflowConfiguration,
                      closing_step: str = "implementation") -> WorkflowConfiguration:
    """Return a copy of ``config`` with the cancellation edges added.

    CANCELLED is mapped onto ``closing_step`` so every status still resolves
    to exactly one step.
    """
    result = config.copy()
    existing = {t.id for t in result.transitions}
    result.transitions.extend(t for t in cancellation_transitions() if t.id not in existing)
    result.status_steps[ProposalStatus.CANCELLED.value] = closing_step
    result.notifications.templates.setdefault("proposal_cancelled", "Proposal has been cancelled")
    return result


def derived_step(step: WorkflowStep, status: StepStatus) -> WorkflowStep:
    return replace(step, status=status)
