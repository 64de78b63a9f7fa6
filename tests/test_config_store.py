"""
Workflow configuration store: CRUD, validation rules and the optional
cancellation edges.
"""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from proposal_workflow.core.exceptions import ValidationError
from proposal_workflow.models.proposal import ProposalStatus, UserRole
from proposal_workflow.models.workflow import (
    PermissionSettings,
    WorkflowConfiguration,
    WorkflowTransition,
    default_workflow,
    with_cancellation,
)
from proposal_workflow.services.config_store import WorkflowConfigurationStore, validate_configuration


def _workflow(workflow_id="wf-test", **changes):
    wf = default_workflow()
    wf.id = workflow_id
    for key, value in changes.items():
        setattr(wf, key, value)
    return wf


# ═════════════════════════════════════════════════════════════════════════════
# Default configuration
# ═════════════════════════════════════════════════════════════════════════════


class TestDefaultWorkflow:

    def test_shape(self):
        wf = default_workflow()
        assert wf.id == "default-proposal-workflow"
        assert [s.id for s in sorted(wf.steps, key=lambda s: s.order)] == [
            "draft", "submission", "coordinator-review",
            "budget-approval", "final-approval", "implementation",
        ]
        assert [t.id for t in wf.transitions] == [
            "draft-to-submitted", "submitted-to-review", "review-to-approved",
            "review-to-rejected", "approved-to-implementation",
        ]

    def test_policies(self):
        wf = default_workflow()
        assert wf.deadlines.enabled is True
        assert wf.deadlines.default_deadline == 48
        assert wf.deadlines.step_deadlines == {
            "coordinator-review": 24, "budget-approval": 48, "final-approval": 24,
        }
        assert wf.permissions.can_edit == [UserRole.THERAPIST, UserRole.COORDINATOR]
        assert wf.transition("review-to-approved").required_approval is True
        assert wf.notifications.templates["proposal_submitted"] == "New proposal submitted for review"

    def test_validates(self):
        validate_configuration(default_workflow())

    def test_dict_round_trip_preserves_rules(self):
        wf = default_workflow()
        rebuilt = WorkflowConfiguration.from_dict(wf.to_dict())
        assert rebuilt.to_dict()["transitions"] == wf.to_dict()["transitions"]
        assert rebuilt.permissions == wf.permissions


# ═════════════════════════════════════════════════════════════════════════════
# Store CRUD
# ═════════════════════════════════════════════════════════════════════════════


class TestStore:

    def test_get_missing(self):
        assert WorkflowConfigurationStore().get("nope") is None

    def test_save_and_get(self):
        store = WorkflowConfigurationStore()
        wf = store.save(_workflow())
        assert store.get("wf-test").to_dict() == wf.to_dict()
        assert len(store) == 1

    def test_returned_configs_are_detached(self):
        store = WorkflowConfigurationStore()
        original = _workflow()
        saved = store.save(original)

        original.name = "Edited original"
        saved.steps[1].order = 9
        fetched = store.get("wf-test")
        fetched.deadlines.enabled = False
        store.list_all()[0].name = "Edited listing"

        current = store.get("wf-test")
        assert current.name == "Proposal Approval Workflow"
        assert current.steps[1].order == 2
        assert current.deadlines.enabled is True

    def test_edits_apply_through_save(self):
        store = WorkflowConfigurationStore([_workflow()])
        wf = store.get("wf-test")
        wf.name = "Renamed"
        store.save(wf)
        assert store.get("wf-test").name == "Renamed"

    def test_save_stamps_updated_at_and_keeps_created_at(self):
        store = WorkflowConfigurationStore()
        first = store.save(_workflow())
        created = first.created_at
        first_update = first.updated_at

        second = store.save(_workflow(name="Renamed"))

        assert second.created_at == created
        assert second.updated_at >= first_update
        assert store.get("wf-test").name == "Renamed"

    def test_list_active(self):
        store = WorkflowConfigurationStore([_workflow("a"), _workflow("b", is_active=False)])
        assert {c.id for c in store.list_all()} == {"a", "b"}
        assert [c.id for c in store.list_active()] == ["a"]

    def test_delete(self):
        store = WorkflowConfigurationStore([_workflow()])
        assert store.delete("wf-test") is True
        assert store.delete("wf-test") is False
        assert store.get("wf-test") is None

    def test_invalid_save_leaves_store_untouched(self):
        store = WorkflowConfigurationStore([_workflow()])
        broken = _workflow(name="Broken")
        broken.steps[1].order = 9
        with pytest.raises(ValidationError):
            store.save(broken)
        assert store.get("wf-test").name == "Proposal Approval Workflow"


# ═════════════════════════════════════════════════════════════════════════════
# Validation rules
# ═════════════════════════════════════════════════════════════════════════════


class TestValidation:

    def test_duplicate_orders(self):
        wf = _workflow()
        wf.steps[1].order = 1
        with pytest.raises(ValidationError, match="unique"):
            validate_configuration(wf)

    def test_gap_in_orders(self):
        wf = _workflow()
        wf.steps[-1].order = 8
        with pytest.raises(ValidationError, match="contiguous") as exc:
            validate_configuration(wf)
        assert exc.value.details["orders"] == [1, 2, 3, 4, 5, 8]

    def test_orders_need_not_start_at_one(self):
        wf = _workflow()
        for step in wf.steps:
            step.order += 10
        validate_configuration(wf)

    def test_duplicate_step_ids(self):
        wf = _workflow()
        wf.steps[1].id = "draft"
        with pytest.raises(ValidationError, match="Step ids"):
            validate_configuration(wf)

    def test_no_steps(self):
        with pytest.raises(ValidationError):
            validate_configuration(_workflow(steps=[]))

    def test_transition_to_unmapped_status(self):
        wf = _workflow()
        wf.transitions.append(WorkflowTransition(
            "review-to-cancelled", ProposalStatus.UNDER_REVIEW, ProposalStatus.CANCELLED))
        with pytest.raises(ValidationError, match="maps to no step"):
            validate_configuration(wf)

    def test_transition_with_undefined_status(self):
        wf = _workflow()
        wf.transitions.append(WorkflowTransition("bogus", "DRAFT", "ARCHIVED"))
        with pytest.raises(ValidationError, match="undefined status ARCHIVED"):
            validate_configuration(wf)

    def test_duplicate_transition_ids(self):
        wf = _workflow()
        wf.transitions.append(replace(wf.transitions[0]))
        with pytest.raises(ValidationError, match="Duplicate transition"):
            validate_configuration(wf)

    def test_status_mapped_to_unknown_step(self):
        wf = _workflow()
        wf.status_steps["APPROVED"] = "ceremony"
        with pytest.raises(ValidationError, match="unknown step"):
            validate_configuration(wf)

    def test_unknown_permission_role(self):
        wf = _workflow(permissions=PermissionSettings(can_view=["SUPERUSER"]))
        with pytest.raises(ValidationError, match="can_view"):
            validate_configuration(wf)

    def test_from_dict_rejects_unknown_enum(self):
        data = default_workflow().to_dict()
        data["transitions"][0]["to_status"] = "ARCHIVED"
        with pytest.raises(ValidationError):
            WorkflowConfiguration.from_dict(data)

    def test_from_dict_requires_id(self):
        with pytest.raises(ValidationError, match="id"):
            WorkflowConfiguration.from_dict({"name": "No id"})

    def test_from_dict_keeps_created_at(self):
        data = default_workflow().to_dict()
        data["created_at"] = "2025-01-01T00:00:00Z"
        wf = WorkflowConfiguration.from_dict(data)
        assert wf.created_at == datetime(2025, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw, expected", [
        (True, True), (False, False), ("false", False), ("False", False), ("true", True), (None, True),
    ])
    def test_from_dict_reads_is_active(self, raw, expected):
        data = default_workflow().to_dict()
        data["is_active"] = raw
        assert WorkflowConfiguration.from_dict(data).is_active is expected

    @pytest.mark.parametrize("raw", ["maybe", 2, [], {}])
    def test_from_dict_rejects_non_boolean_flags(self, raw):
        data = default_workflow().to_dict()
        data["is_active"] = raw
        with pytest.raises(ValidationError, match="boolean"):
            WorkflowConfiguration.from_dict(data)

    def test_from_dict_reads_nested_flags(self):
        data = default_workflow().to_dict()
        data["deadlines"]["enabled"] = "false"
        data["transitions"][2]["required_approval"] = "false"
        wf = WorkflowConfiguration.from_dict(data)
        assert wf.deadlines.enabled is False
        assert wf.transitions[2].required_approval is False


# ═════════════════════════════════════════════════════════════════════════════
# Cancellation edges
# ═════════════════════════════════════════════════════════════════════════════


class TestCancellation:

    def test_default_has_no_cancelled_edge(self):
        assert not any(t.to_status == ProposalStatus.CANCELLED for t in default_workflow().transitions)

    def test_with_cancellation_adds_edges(self):
        base = default_workflow()
        wf = with_cancellation(base)
        validate_configuration(wf)

        cancel = {t.id: t for t in wf.transitions if t.to_status == ProposalStatus.CANCELLED}
        assert cancel["review-to-cancelled"].required_role == UserRole.COORDINATOR
        assert cancel["approved-to-cancelled"].required_role == UserRole.ADMIN
        assert cancel["rejected-to-cancelled"].from_status == ProposalStatus.REJECTED
        assert wf.status_steps["CANCELLED"] == "implementation"
        assert len(base.transitions) == 5

    def test_with_cancellation_is_idempotent(self):
        wf = with_cancellation(with_cancellation(default_workflow()))
        assert len(wf.transitions) == 8

    def test_cancel_via_engine(self, service, make_proposal, coordinator):
        service.store.save(with_cancellation(default_workflow()))
        proposal = make_proposal(ProposalStatus.UNDER_REVIEW)

        result = service.engine.apply_transition(proposal, coordinator, "review-to-cancelled")

        assert result.success is True
        assert result.updated_proposal.status == ProposalStatus.CANCELLED
        assert service.engine.current_step(result.updated_proposal).id == "implementation"
