"""
Transition side-effect actions.

Actions run after the new proposal value is computed; a failing action is
reported in the STATUS_CHANGE event details and never undoes the status
change. Re-running the same action key is a no-op.
"""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from proposal_workflow.models.event import EventType
from proposal_workflow.models.proposal import Priority, ProposalStatus, UserRole
from proposal_workflow.models.workflow import ActionType, WorkflowAction, default_workflow


def _with_actions(store, *actions, transition_id="draft-to-submitted"):
    wf = default_workflow()
    idx = next(i for i, t in enumerate(wf.transitions) if t.id == transition_id)
    wf.transitions[idx] = replace(wf.transitions[idx], actions=tuple(actions))
    store.save(wf)
    return wf.transitions[idx]


def _status_event(event_log, proposal_id):
    return event_log.last_of_type(proposal_id, EventType.STATUS_CHANGE)


class TestActionTypes:

    def test_notify_role(self, engine, store, dispatcher, make_proposal, therapist, coordinator):
        _with_actions(store, WorkflowAction(ActionType.NOTIFY, {
            "template": "proposal_submitted", "recipient_role": "COORDINATOR", "priority": "HIGH",
        }))
        engine.apply_transition(make_proposal(), therapist, "draft-to-submitted")

        [n] = dispatcher.for_user(coordinator.id)
        assert n.template == "proposal_submitted"
        assert n.priority.value == "HIGH"

    def test_assign_logs_assignment_event(self, engine, store, event_log, make_proposal, therapist):
        _with_actions(store, WorkflowAction(ActionType.ASSIGN, {"role": "COORDINATOR"}))
        proposal = make_proposal()
        engine.apply_transition(proposal, therapist, "draft-to-submitted")

        [assignment] = event_log.of_type(proposal.id, EventType.ASSIGNMENT)
        assert assignment.details["role"] == "COORDINATOR"
        assert assignment.is_internal is True

    def test_update_field(self, engine, store, make_proposal, therapist):
        _with_actions(store, WorkflowAction(ActionType.UPDATE_FIELD, {"field": "priority_note", "value": 1}),
                      WorkflowAction(ActionType.UPDATE_FIELD, {"field": "follow_up_required", "value": True}))
        proposal = make_proposal()
        updated = engine.apply_transition(proposal, therapist, "draft-to-submitted").updated_proposal

        assert updated.follow_up_required is True
        assert proposal.follow_up_required is False

    def test_send_email_log_only(self, service, store, make_proposal, therapist):
        _with_actions(store, WorkflowAction(ActionType.SEND_EMAIL, {"template": "proposal_update"}))
        service.engine.apply_transition(make_proposal(), therapist, "draft-to-submitted")

        [record] = service.email_service.outbox
        assert record.to_email == therapist.email
        assert record.status == "sent"
        assert "SUBMITTED" in record.subject

    def test_create_task(self, service, store, make_proposal, therapist):
        _with_actions(store, WorkflowAction(ActionType.CREATE_TASK, {
            "title": "Book first session", "assignee_role": "THERAPIST", "due_hours": 72,
        }))
        proposal = make_proposal()
        service.engine.apply_transition(proposal, therapist, "draft-to-submitted")

        [task] = service.action_runner.tasks_for(proposal.id)
        assert task["title"] == "Book first session"
        assert task["due_hours"] == 72

    def test_log_event_defaults_to_comment(self, engine, store, event_log, make_proposal, therapist):
        _with_actions(store, WorkflowAction(ActionType.LOG_EVENT, {"description": "Pricing locked"}))
        proposal = make_proposal()
        engine.apply_transition(proposal, therapist, "draft-to-submitted")

        [logged] = event_log.of_type(proposal.id, EventType.COMMENT)
        assert logged.description == "Pricing locked"


class TestFailureSemantics:

    @pytest.mark.parametrize("action", [
        WorkflowAction(ActionType.UPDATE_FIELD, {"field": "status", "value": "COMPLETED"}),
        WorkflowAction(ActionType.LOG_EVENT, {"event_type": "STATUS_CHANGE"}),
        WorkflowAction(ActionType.ASSIGN, {}),
        WorkflowAction(ActionType.SEND_EMAIL, {"template": "no-such-template"}),
    ])
    def test_failure_does_not_roll_back(self, engine, store, event_log, make_proposal, therapist, action):
        _with_actions(store, action, WorkflowAction(ActionType.CREATE_TASK, {"title": "after"}))
        proposal = make_proposal()

        result = engine.apply_transition(proposal, therapist, "draft-to-submitted")

        assert result.success is True
        assert result.updated_proposal.status == ProposalStatus.SUBMITTED
        outcomes = _status_event(event_log, proposal.id).details["actions"]
        assert outcomes[0]["success"] is False
        assert outcomes[0]["error"]
        assert outcomes[1]["success"] is True

    def test_status_change_logged_once_with_failures(self, engine, store, event_log, make_proposal, therapist):
        _with_actions(store, WorkflowAction(ActionType.UPDATE_FIELD, {"field": "id", "value": "hijack"}))
        proposal = make_proposal()
        engine.apply_transition(proposal, therapist, "draft-to-submitted")
        assert len(event_log.of_type(proposal.id, EventType.STATUS_CHANGE)) == 1


class TestFieldValues:

    def test_enum_and_timestamp_values_are_converted(self, service, store, make_proposal, therapist):
        _with_actions(store,
                      WorkflowAction(ActionType.UPDATE_FIELD, {"field": "priority", "value": "HIGH"}),
                      WorkflowAction(ActionType.UPDATE_FIELD,
                                     {"field": "submitted_at", "value": "2026-03-02T10:00:00Z"}))
        proposal = make_proposal()

        result = service.transition(proposal.id, therapist, "draft-to-submitted")

        assert result.success is True
        stored = service.repository.get(proposal.id)
        assert stored.priority == Priority.HIGH
        assert stored.submitted_at == datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
        assert result.to_dict(UserRole.ADMIN)["proposal"]["priority"] == "HIGH"
        assert stored.to_dict()["submitted_at"] == "2026-03-02T10:00:00+00:00"

    @pytest.mark.parametrize("field_name, value", [
        ("priority", "URGENT"),
        ("estimated_cost", "lots"),
        ("total_sessions", True),
        ("reviewed_at", "yesterday"),
        ("goals", "walk again"),
        ("patient_id", None),
    ])
    def test_ill_typed_value_fails_action_only(self, service, store, event_log, make_proposal, therapist,
                                               field_name, value):
        _with_actions(store, WorkflowAction(ActionType.UPDATE_FIELD, {"field": field_name, "value": value}))
        proposal = make_proposal()

        result = service.transition(proposal.id, therapist, "draft-to-submitted")

        assert result.success is True
        stored = service.repository.get(proposal.id)
        assert stored.status == ProposalStatus.SUBMITTED
        assert getattr(stored, field_name) == getattr(proposal, field_name)
        assert stored.to_dict(UserRole.ADMIN)["status"] == "SUBMITTED"
        [outcome] = _status_event(event_log, proposal.id).details["actions"]
        assert outcome["success"] is False
        assert field_name in outcome["error"]

    def test_integer_accepted_for_float_field(self, engine, store, make_proposal, therapist):
        _with_actions(store, WorkflowAction(ActionType.UPDATE_FIELD, {"field": "estimated_cost", "value": 900}))
        updated = engine.apply_transition(make_proposal(), therapist, "draft-to-submitted").updated_proposal
        assert updated.estimated_cost == 900.0
        assert isinstance(updated.estimated_cost, float)


class TestIdempotency:

    def test_same_key_runs_once(self, service, store, make_proposal, therapist):
        transition = _with_actions(store, WorkflowAction(ActionType.CREATE_TASK, {"title": "once"}))
        runner = service.action_runner
        proposal = make_proposal(ProposalStatus.SUBMITTED)
        config = store.get("default-proposal-workflow")

        first = runner.run(proposal, transition, therapist, config)
        second = runner.run(proposal, transition, therapist, config)

        assert first[0].skipped is False
        assert second[0].skipped is True
        assert len(runner.tasks_for(proposal.id)) == 1

    def test_new_updated_at_is_new_key(self, service, store, make_proposal, therapist):
        transition = _with_actions(store, WorkflowAction(ActionType.CREATE_TASK, {"title": "again"}))
        runner = service.action_runner
        config = store.get("default-proposal-workflow")
        proposal = make_proposal(ProposalStatus.SUBMITTED)

        runner.run(proposal, transition, therapist, config)
        later = replace(proposal, updated_at=proposal.updated_at.replace(hour=proposal.updated_at.hour + 1))
        runner.run(later, transition, therapist, config)

        assert len(runner.tasks_for(proposal.id)) == 2
