"""
Workflow metrics aggregation.

Timeline used by most tests (hours after T0):

  prop-1: submit +1 (therapist), review +2 (coordinator),
          approve +30 (admin, 28h in coordinator-review), complete +32
  prop-2: submit +1, review +2, escalate +3 (coordinator), reject +5
  prop-3: still DRAFT
"""

from datetime import datetime, timedelta, timezone

import pytest

from proposal_workflow.models.proposal import ProposalStatus

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _h(hours):
    return T0 + timedelta(hours=hours)


def _step(service, at, proposal_id, user, transition_id):
    service.engine.clock = lambda: _h(at)
    result = service.transition(proposal_id, user, transition_id)
    assert result.success, result.error


@pytest.fixture()
def history(service, make_proposal, therapist, coordinator, admin):
    p1 = make_proposal(created_at=T0)
    p2 = make_proposal(created_at=T0)
    make_proposal(created_at=T0)

    _step(service, 1, p1.id, therapist, "draft-to-submitted")
    _step(service, 1, p2.id, therapist, "draft-to-submitted")
    _step(service, 2, p1.id, coordinator, "submitted-to-review")
    _step(service, 2, p2.id, coordinator, "submitted-to-review")
    service.engine.clock = lambda: _h(3)
    assert service.escalate(p2.id, coordinator, "Missing referral").success
    _step(service, 5, p2.id, coordinator, "review-to-rejected")
    _step(service, 30, p1.id, admin, "review-to-approved")
    _step(service, 32, p1.id, therapist, "approved-to-implementation")
    return service.metrics.summarize(now=_h(50))


class TestWorkflowMetrics:

    def test_counts(self, history):
        assert history.total_proposals == 3
        assert history.proposals_by_status["COMPLETED"] == 1
        assert history.proposals_by_status["REJECTED"] == 1
        assert history.proposals_by_status["DRAFT"] == 1
        assert history.proposals_by_status["UNDER_REVIEW"] == 0

    def test_processing_time_and_steps(self, history):
        assert history.average_processing_time == 18.5
        assert history.average_steps_to_completion == 4.0

    def test_rates(self, history):
        assert history.completion_rate == 33.3
        assert history.rejection_rate == 33.3
        assert history.escalation_rate == 33.3

    def test_overdue_and_pending(self, history):
        assert history.overdue_proposals == 1
        assert history.pending_approvals == 0

    def test_pending_approvals_counts_review(self, service, make_proposal):
        make_proposal(ProposalStatus.UNDER_REVIEW)
        make_proposal(ProposalStatus.UNDER_REVIEW)
        make_proposal(ProposalStatus.SUBMITTED)
        assert service.metrics.summarize(now=T0).pending_approvals == 2

    def test_unknown_workflow_is_zeroed(self, service, make_proposal):
        make_proposal()
        metrics = service.metrics.summarize("no-such-workflow")
        assert metrics.total_proposals == 0
        assert metrics.average_processing_time == 0.0
        assert metrics.user_performance == []
        assert set(metrics.proposals_by_status.values()) == {0}

    def test_empty_workflow(self, service):
        metrics = service.metrics.summarize()
        assert metrics.total_proposals == 0
        assert metrics.completion_rate == 0.0

    def test_serialises(self, history):
        data = history.to_dict()
        assert data["workflow_id"] == "default-proposal-workflow"
        assert data["generated_at"] == _h(50).isoformat()
        assert len(data["user_performance"]) == 3


class TestUserPerformance:

    def _by_user(self, history):
        return {u.user_id: u for u in history.user_performance}

    def test_sorted_by_user(self, history):
        assert [u.user_id for u in history.user_performance] == ["u-admin", "u-coord", "u-ther"]

    def test_therapist(self, history):
        ther = self._by_user(history)["u-ther"]
        assert ther.proposals_processed == 2
        assert ther.average_processing_time == 1.33
        assert ther.completion_rate == 50.0
        assert ther.overdue_count == 0

    def test_coordinator(self, history):
        coord = self._by_user(history)["u-coord"]
        assert coord.user_name == "Sam Coordinator"
        assert coord.average_processing_time == 1.67
        assert coord.overdue_count == 0

    def test_admin_overdue_in_review(self, history):
        admin = self._by_user(history)["u-admin"]
        assert admin.proposals_processed == 1
        assert admin.average_processing_time == 28.0
        assert admin.completion_rate == 100.0
        assert admin.overdue_count == 1
