"""Tagged result returned by state-changing engine calls."""

from __future__ import annotations

from dataclasses import dataclass

from proposal_workflow.core.exceptions import WorkflowError
from proposal_workflow.models.proposal import Proposal


@dataclass(frozen=True)
class TransitionResult:
    success: bool
    updated_proposal: Proposal | None = None
    error: str | None = None
    error_type: str | None = None

    @classmethod
    def ok(cls, proposal: Proposal) -> "TransitionResult":
        return cls(success=True, updated_proposal=proposal)

    @classmethod
    def failure(cls, exc: WorkflowError) -> "TransitionResult":
        return cls(success=False, error=str(exc), error_type=type(exc).__name__)

    def to_dict(self, viewer_role=None) -> dict:
        if self.success:
            return {
                "success": True,
                "proposal": self.updated_proposal.to_dict(viewer_role),
            }
        return {"success": False, "error": self.error, "error_type": self.error_type}
