"""
Proposal Workflow Service
Proposal & user domain model.

Models:
    - User: acting user; role drives every authorisation check
    - Proposal: treatment-plan approval request moving through the pipeline

A proposal is created in DRAFT by a therapist and afterwards mutated only by
workflow transitions (the engine returns an updated copy; the repository
bumps ``version`` on save).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any

from proposal_workflow.utils.helpers import iso, parse_datetime, utc_now

DEFAULT_WORKFLOW_ID = "default-proposal-workflow"


# ── Enums ────────────────────────────────────────────────────────────────────

class ProposalStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


TERMINAL_STATUSES = frozenset({
    ProposalStatus.REJECTED,
    ProposalStatus.CANCELLED,
    ProposalStatus.COMPLETED,
})


class Priority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class UserRole(str, Enum):
    THERAPIST = "THERAPIST"
    COORDINATOR = "COORDINATOR"
    ADMIN = "ADMIN"


# Fields hidden from each viewer role when a proposal is serialised.
_HIDDEN_FIELDS: dict[UserRole, frozenset[str]] = {
    UserRole.THERAPIST: frozenset({
        "estimated_cost", "pricing_notes", "budget_approval",
        "insurance_coverage", "payment_terms", "coordinator_notes",
        "admin_notes", "final_approval_notes",
    }),
    UserRole.COORDINATOR: frozenset({"admin_notes", "final_approval_notes"}),
    UserRole.ADMIN: frozenset(),
}

# Fields a workflow action may never overwrite.
PROTECTED_FIELDS = frozenset({
    "id", "status", "workflow_id", "version", "created_at", "updated_at",
})

_DATETIME_FIELDS = ("created_at", "updated_at", "submitted_at", "reviewed_at")

# JSON type accepted for each plain field; datetimes and enums are handled
# separately in Proposal.coerce_field.
_FIELD_TYPES: dict[str, type] = {
    "patient_id": str,
    "therapist_id": str,
    "selected_services": list,
    "total_sessions": int,
    "estimated_duration": int,
    "estimated_cost": float,
    "currency": str,
    "notes": str,
    "goals": list,
    "expected_outcomes": list,
    "follow_up_required": bool,
    "follow_up_notes": str,
    "reviewed_by": str,
    "coordinator_notes": str,
    "pricing_notes": str,
    "approval_notes": str,
    "admin_notes": str,
    "final_approval_notes": str,
    "budget_approval": bool,
    "insurance_coverage": dict,
    "payment_terms": dict,
}

_NULLABLE_FIELDS = frozenset({
    "therapist_id", "follow_up_notes", "submitted_at", "reviewed_at",
    "reviewed_by", "coordinator_notes", "pricing_notes", "approval_notes",
    "admin_notes", "final_approval_notes", "budget_approval",
    "insurance_coverage", "payment_terms",
})


@dataclass(frozen=True)
class User:
    """Acting user. Identity lifecycle is owned elsewhere."""
    id: str
    name: str
    role: UserRole
    email: str = ""
    is_active: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "is_active": self.is_active,
        }


@dataclass
class Proposal:
    """Treatment-plan approval request."""
    id: str
    patient_id: str
    therapist_id: str | None = None
    workflow_id: str = DEFAULT_WORKFLOW_ID
    selected_services: list[dict] = field(default_factory=list)
    total_sessions: int = 0
    estimated_duration: int = 0
    estimated_cost: float = 0.0
    currency: str = "USD"
    status: ProposalStatus = ProposalStatus.DRAFT
    priority: Priority = Priority.MEDIUM
    notes: str = ""
    goals: list[str] = field(default_factory=list)
    expected_outcomes: list[str] = field(default_factory=list)
    follow_up_required: bool = False
    follow_up_notes: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    submitted_at: datetime | None = None
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    coordinator_notes: str | None = None
    pricing_notes: str | None = None
    approval_notes: str | None = None
    admin_notes: str | None = None
    final_approval_notes: str | None = None
    budget_approval: bool | None = None
    insurance_coverage: dict | None = None
    payment_terms: dict | None = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def field_names(cls) -> set[str]:
        return {f.name for f in fields(cls)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Proposal":
        """Build a proposal from a JSON payload; unknown keys are ignored.

        Raises ValueError on an unknown status or priority, or a value of
        the wrong JSON type.
        """
        known = cls.field_names()
        kwargs = {k: v for k, v in data.items() if k in known}
        if "status" in kwargs:
            kwargs["status"] = ProposalStatus(kwargs["status"])
        for name in list(kwargs):
            if name == "priority" or name in _FIELD_TYPES:
                kwargs[name] = cls.coerce_field(name, kwargs[name])
        for name in _DATETIME_FIELDS:
            if name in kwargs:
                kwargs[name] = parse_datetime(kwargs[name])
        for name in ("created_at", "updated_at"):
            if kwargs.get(name) is None:
                kwargs.pop(name, None)
        return cls(**kwargs)

    @classmethod
    def coerce_field(cls, name: str, value: Any) -> Any:
        """Convert a JSON value to the Python type of field ``name``.

        Raises ValueError for unknown fields and values that do not fit.
        """
        if value is None:
            if name in _NULLABLE_FIELDS:
                return None
            raise ValueError(f"{name} may not be null")
        if name in ("status", "priority"):
            enum_type = ProposalStatus if name == "status" else Priority
            try:
                return enum_type(value)
            except ValueError:
                raise ValueError(f"{name} has no value {value!r}") from None
        if name in _DATETIME_FIELDS:
            parsed = parse_datetime(value)
            if parsed is None:
                raise ValueError(f"{name} is not a valid timestamp: {value!r}")
            return parsed

        expected = _FIELD_TYPES.get(name)
        if expected is None:
            raise ValueError(f"Unknown proposal field: {name}")
        if expected in (int, float):
            # bool is an int subclass; numeric fields refuse it
            numeric = (int, float) if expected is float else (int,)
            if isinstance(value, numeric) and not isinstance(value, bool):
                return expected(value)
        elif isinstance(value, expected):
            return value
        raise ValueError(f"{name} expects {expected.__name__}, got {type(value).__name__}")

    def to_dict(self, viewer_role: UserRole | None = None) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["priority"] = self.priority.value
        for name in _DATETIME_FIELDS:
            data[name] = iso(getattr(self, name))
        if viewer_role is not None:
            for hidden in _HIDDEN_FIELDS.get(viewer_role, ()):
                data.pop(hidden, None)
        return data

    def __repr__(self):
        return f"<Proposal {self.id} {self.status.value} v{self.version}>"
