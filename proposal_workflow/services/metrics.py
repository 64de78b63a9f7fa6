"""
Proposal Workflow Service
Workflow metrics.

Read-side aggregation over the proposal repository and the event log.
Nothing here mutates state.

Usage:
    reporter = MetricsReporter(engine, repository, event_log)
    metrics = reporter.summarize("default-proposal-workflow")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from proposal_workflow.models.event import EventType
from proposal_workflow.models.proposal import (
    DEFAULT_WORKFLOW_ID,
    TERMINAL_STATUSES,
    ProposalStatus,
)
from proposal_workflow.utils.helpers import hours_between, iso, safe_pct, utc_now


def _avg(values) -> float:
    values = list(values)
    return round(sum(values) / len(values), 2) if values else 0.0


@dataclass
class UserPerformance:
    user_id: str
    user_name: str
    proposals_processed: int = 0
    average_processing_time: float = 0.0
    completion_rate: float = 0.0
    overdue_count: int = 0

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "user_name": self.user_name,
            "proposals_processed": self.proposals_processed,
            "average_processing_time": self.average_processing_time,
            "completion_rate": self.completion_rate,
            "overdue_count": self.overdue_count,
        }


@dataclass
class WorkflowMetrics:
    workflow_id: str
    total_proposals: int = 0
    proposals_by_status: dict[str, int] = field(
        default_factory=lambda: {s.value: 0 for s in ProposalStatus})
    average_processing_time: float = 0.0
    average_steps_to_completion: float = 0.0
    completion_rate: float = 0.0
    rejection_rate: float = 0.0
    escalation_rate: float = 0.0
    overdue_proposals: int = 0
    pending_approvals: int = 0
    user_performance: list[UserPerformance] = field(default_factory=list)
    generated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "workflow_id": self.workflow_id,
            "total_proposals": self.total_proposals,
            "proposals_by_status": self.proposals_by_status,
            "average_processing_time": self.average_processing_time,
            "average_steps_to_completion": self.average_steps_to_completion,
            "completion_rate": self.completion_rate,
            "rejection_rate": self.rejection_rate,
            "escalation_rate": self.escalation_rate,
            "overdue_proposals": self.overdue_proposals,
            "pending_approvals": self.pending_approvals,
            "user_performance": [u.to_dict() for u in self.user_performance],
            "generated_at": iso(self.generated_at),
        }


class MetricsReporter:

    def __init__(self, engine, repository, event_log):
        self.engine = engine
        self.repository = repository
        self.event_log = event_log

    def summarize(self, workflow_id: str | None = None, proposals=None,
                  now: datetime | None = None) -> WorkflowMetrics:
        """Compute metrics for one workflow.

        Processing time is measured in hours from proposal creation to the
        STATUS_CHANGE that put it in a terminal status. Rates are percentages
        of the total with one decimal.
        """
        workflow_id = workflow_id or DEFAULT_WORKFLOW_ID
        now = now or utc_now()
        metrics = WorkflowMetrics(workflow_id=workflow_id, generated_at=now)
        config = self.engine.store.get(workflow_id)
        if config is None:
            return metrics

        if proposals is None:
            proposals = self.repository.list(workflow_id=workflow_id)
        else:
            proposals = [p for p in proposals if p.workflow_id == workflow_id]
        total = len(proposals)
        metrics.total_proposals = total
        for p in proposals:
            metrics.proposals_by_status[p.status.value] += 1

        processing, steps_to_complete = [], []
        escalated = 0
        for p in proposals:
            changes = self.event_log.of_type(p.id, EventType.STATUS_CHANGE)
            if self.event_log.of_type(p.id, EventType.ESCALATION):
                escalated += 1
            if p.status in TERMINAL_STATUSES:
                closing = next((e for e in reversed(changes) if e.to_status == p.status), None)
                if closing is not None:
                    processing.append(hours_between(p.created_at, closing.created_at))
            if p.status == ProposalStatus.COMPLETED:
                steps_to_complete.append(len(changes))

        by_status = metrics.proposals_by_status
        metrics.average_processing_time = _avg(processing)
        metrics.average_steps_to_completion = _avg(steps_to_complete)
        metrics.completion_rate = safe_pct(by_status[ProposalStatus.COMPLETED.value], total)
        metrics.rejection_rate = safe_pct(by_status[ProposalStatus.REJECTED.value], total)
        metrics.escalation_rate = safe_pct(escalated, total)
        metrics.overdue_proposals = len(self.engine.overdue_proposals(proposals, workflow_id, now))

        approval_statuses = {t.from_status for t in config.transitions if t.required_approval}
        metrics.pending_approvals = sum(1 for p in proposals if p.status in approval_statuses)
        metrics.user_performance = self._user_performance(config, proposals)
        return metrics

    def _user_performance(self, config, proposals) -> list[UserPerformance]:
        stats: dict[str, dict] = {}
        for p in proposals:
            entered = p.created_at
            for event in self.event_log.of_type(p.id, EventType.STATUS_CHANGE):
                s = stats.setdefault(event.user_id, {
                    "name": event.user_name, "proposals": set(), "durations": [],
                    "completed": set(), "overdue": 0,
                })
                duration = hours_between(entered, event.created_at)
                s["proposals"].add(p.id)
                s["durations"].append(duration)
                if p.status == ProposalStatus.COMPLETED:
                    s["completed"].add(p.id)
                if config.deadlines.enabled and event.from_status is not None:
                    step_id = config.status_steps.get(event.from_status.value)
                    if step_id and duration > config.deadlines.hours_for(step_id):
                        s["overdue"] += 1
                entered = event.created_at

        return [
            UserPerformance(
                user_id=user_id,
                user_name=s["name"],
                proposals_processed=len(s["proposals"]),
                average_processing_time=_avg(s["durations"]),
                completion_rate=safe_pct(len(s["completed"]), len(s["proposals"])),
                overdue_count=s["overdue"],
            )
            for user_id, s in sorted(stats.items())
        ]
