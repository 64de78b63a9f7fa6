"""
Proposal Workflow Service
Workflow configuration store.

Holds named pipeline definitions in memory and refuses to store one that
would leave a proposal status without a step.

Usage:
    from proposal_workflow.services.config_store import WorkflowConfigurationStore

    store = WorkflowConfigurationStore()
    store.save(default_workflow())
    config = store.get("default-proposal-workflow")
"""

from __future__ import annotations

import logging
import threading

from proposal_workflow.core.exceptions import ValidationError
from proposal_workflow.models.proposal import ProposalStatus, UserRole
from proposal_workflow.models.workflow import WorkflowConfiguration
from proposal_workflow.utils.helpers import utc_now

logger = logging.getLogger(__name__)

_KNOWN_STATUSES = {s.value for s in ProposalStatus}
_KNOWN_ROLES = {r.value for r in UserRole}


# ═════════════════════════════════════════════════════════════════════════════
# Validation
# ═════════════════════════════════════════════════════════════════════════════

def _status_value(status) -> str:
    return status.value if isinstance(status, ProposalStatus) else str(status)


def validate_configuration(config: WorkflowConfiguration) -> None:
    """Raise ValidationError if ``config`` is structurally unusable.

    Rules:
      - at least one step; step ids unique
      - step orders unique and contiguous (n, n+1, ...)
      - transition ids unique; from/to statuses are known ProposalStatus values
      - every transition's to_status maps to a configured step
      - permission lists only name known roles
    """
    if not config.id:
        raise ValidationError("Workflow id is required", details={"field": "id"})
    if not config.steps:
        raise ValidationError("Workflow must define at least one step", details={"field": "steps"})

    step_ids = [s.id for s in config.steps]
    duplicates = sorted({sid for sid in step_ids if step_ids.count(sid) > 1})
    if duplicates:
        raise ValidationError("Step ids must be unique", details={"duplicates": duplicates})

    orders = sorted(s.order for s in config.steps)
    if len(set(orders)) != len(orders):
        raise ValidationError("Step orders must be unique", details={"orders": orders})
    if orders != list(range(orders[0], orders[0] + len(orders))):
        raise ValidationError("Step orders must be contiguous", details={"orders": orders})

    for status, step_id in config.status_steps.items():
        if status not in _KNOWN_STATUSES:
            raise ValidationError(f"Unknown status in status mapping: {status}",
                                  details={"status": status})
        if step_id not in step_ids:
            raise ValidationError(f"Status {status} maps to unknown step {step_id}",
                                  details={"status": status, "step_id": step_id})

    seen: set[str] = set()
    for t in config.transitions:
        if t.id in seen:
            raise ValidationError(f"Duplicate transition id: {t.id}", details={"transition_id": t.id})
        seen.add(t.id)
        for attr in ("from_status", "to_status"):
            value = _status_value(getattr(t, attr))
            if value not in _KNOWN_STATUSES:
                raise ValidationError(
                    f"Transition {t.id} references undefined status {value}",
                    details={"transition_id": t.id, attr: value},
                )
        to_value = _status_value(t.to_status)
        if to_value not in config.status_steps:
            raise ValidationError(
                f"Transition {t.id} targets {to_value}, which maps to no step",
                details={"transition_id": t.id, "to_status": to_value},
            )

    for key, roles in config.permissions.to_dict().items():
        unknown = [r for r in roles if r not in _KNOWN_ROLES]
        if unknown:
            raise ValidationError(f"Unknown role(s) in {key}", details={key: unknown})


# ═════════════════════════════════════════════════════════════════════════════
# Store
# ═════════════════════════════════════════════════════════════════════════════

class WorkflowConfigurationStore:
    """In-memory repository of workflow configurations, keyed by id."""

    def __init__(self, configs=None):
        self._configs: dict[str, WorkflowConfiguration] = {}
        self._lock = threading.Lock()
        for config in configs or ():
            self.save(config)

    def get(self, workflow_id: str) -> WorkflowConfiguration | None:
        """A private copy; changes reach the store only through save()."""
        config = self._configs.get(workflow_id)
        return config.copy() if config is not None else None

    def list_all(self) -> list[WorkflowConfiguration]:
        return [c.copy() for c in self._configs.values()]

    def list_active(self) -> list[WorkflowConfiguration]:
        return [c.copy() for c in self._configs.values() if c.is_active]

    def save(self, config: WorkflowConfiguration) -> WorkflowConfiguration:
        """Validate and upsert a copy of ``config``; returns the stamped copy."""
        config = config.copy()
        validate_configuration(config)
        now = utc_now()
        with self._lock:
            existing = self._configs.get(config.id)
            config.created_at = existing.created_at if existing else (config.created_at or now)
            config.updated_at = now
            self._configs[config.id] = config
        logger.info(
            "Workflow configuration %s %s", config.id, "updated" if existing else "created",
            extra={"workflow_id": config.id},
        )
        return config.copy()

    def delete(self, workflow_id: str) -> bool:
        with self._lock:
            removed = self._configs.pop(workflow_id, None)
        if removed:
            logger.info("Workflow configuration %s deleted", workflow_id,
                        extra={"workflow_id": workflow_id})
        return removed is not None

    def __contains__(self, workflow_id):
        return workflow_id in self._configs

    def __len__(self):
        return len(self._configs)
