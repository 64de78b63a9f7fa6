"""
Proposal workflow blueprint.

Endpoints (all under /api/v1):
    POST /proposals                                   create a DRAFT proposal
    GET  /proposals                                   list (?status=, ?workflow_id=)
    GET  /proposals/overdue                           proposals past their step deadline
    GET  /proposals/<id>                              role-filtered proposal
    GET  /proposals/<id>/workflow                     steps, current/next/previous, transitions
    POST /proposals/<id>/transitions                  apply a transition
    GET  /proposals/<id>/events                       audit trail
    GET  /proposals/<id>/steps/<step_id>/comments     step comments
    POST /proposals/<id>/steps/<step_id>/comments     add a comment
    POST /proposals/<id>/escalate                     flag for attention
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from proposal_workflow.blueprints import (
    RequestError,
    current_user,
    flag_field,
    get_service,
    json_body,
    register_error_handlers,
    text_field,
)
from proposal_workflow.models.proposal import ProposalStatus
from proposal_workflow.models.workflow import PermissionAction
from proposal_workflow.utils.errors import E, result_error

logger = logging.getLogger(__name__)

workflow_bp = register_error_handlers(Blueprint("workflow_bp", __name__, url_prefix="/api/v1"))


# ═════════════════════════════════════════════════════════════════════════
# Proposals
# ═════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/proposals", methods=["POST"])
def create_proposal():
    user = current_user()
    proposal = get_service().create_proposal(json_body(), user)
    return jsonify({"proposal": proposal.to_dict(user.role)}), 201


@workflow_bp.route("/proposals", methods=["GET"])
def list_proposals():
    user = current_user()
    svc = get_service()
    status = request.args.get("status")
    if status:
        try:
            status = ProposalStatus(status.upper())
        except ValueError:
            raise RequestError(f"Unknown status: {status}", code=E.VALIDATION_INVALID) from None
    items = [
        p for p in svc.repository.list(workflow_id=request.args.get("workflow_id"), status=status)
        if svc.engine.authorize(user, p, PermissionAction.VIEW)
    ]
    return jsonify({"items": [p.to_dict(user.role) for p in items], "total": len(items)}), 200


@workflow_bp.route("/proposals/overdue", methods=["GET"])
def overdue_proposals():
    user = current_user()
    svc = get_service()
    items = [
        p for p in svc.overdue(workflow_id=request.args.get("workflow_id"))
        if svc.engine.authorize(user, p, PermissionAction.VIEW)
    ]
    return jsonify({
        "items": [
            {**p.to_dict(user.role), "due_at": svc.engine.step_due_at(p).isoformat()}
            for p in items
        ],
        "total": len(items),
    }), 200


@workflow_bp.route("/proposals/<proposal_id>", methods=["GET"])
def get_proposal(proposal_id):
    user = current_user()
    proposal = get_service().get_proposal(proposal_id, user)
    return jsonify({"proposal": proposal.to_dict(user.role)}), 200


@workflow_bp.route("/proposals/<proposal_id>/workflow", methods=["GET"])
def proposal_workflow(proposal_id):
    user = current_user()
    return jsonify(get_service().workflow_view(proposal_id, user)), 200


# ═════════════════════════════════════════════════════════════════════════
# Transitions & escalation
# ═════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/proposals/<proposal_id>/transitions", methods=["POST"])
def apply_transition(proposal_id):
    user = current_user()
    data = json_body()
    transition_id = text_field(data, "transition_id", required=True)
    expected_version = data.get("expected_version")
    if expected_version is not None:
        if isinstance(expected_version, bool):
            raise RequestError("expected_version must be an integer", code=E.VALIDATION_INVALID)
        try:
            expected_version = int(expected_version)
        except (TypeError, ValueError):
            raise RequestError("expected_version must be an integer", code=E.VALIDATION_INVALID) from None

    result = get_service().transition(
        proposal_id, user, transition_id,
        notes=text_field(data, "notes"), expected_version=expected_version,
    )
    if not result.success:
        return result_error(result)
    return jsonify(result.to_dict(user.role)), 200


@workflow_bp.route("/proposals/<proposal_id>/escalate", methods=["POST"])
def escalate_proposal(proposal_id):
    user = current_user()
    reason = text_field(json_body(), "reason", required=True)
    result = get_service().escalate(proposal_id, user, reason)
    if not result.success:
        return result_error(result)
    return jsonify(result.to_dict(user.role)), 200


# ═════════════════════════════════════════════════════════════════════════
# Events & comments
# ═════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/proposals/<proposal_id>/events", methods=["GET"])
def proposal_events(proposal_id):
    user = current_user()
    events = get_service().events(proposal_id, user)
    return jsonify({"items": [e.to_dict() for e in events], "total": len(events)}), 200


@workflow_bp.route("/proposals/<proposal_id>/steps/<step_id>/comments", methods=["GET"])
def list_comments(proposal_id, step_id):
    user = current_user()
    comments = get_service().step_comments(proposal_id, step_id, user)
    return jsonify({"items": [c.to_dict() for c in comments], "total": len(comments)}), 200


@workflow_bp.route("/proposals/<proposal_id>/steps/<step_id>/comments", methods=["POST"])
def add_comment(proposal_id, step_id):
    user = current_user()
    data = json_body()
    content = text_field(data, "content", required=True)
    attachments = data.get("attachments") or []
    if not isinstance(attachments, list):
        raise RequestError("attachments must be a list", code=E.VALIDATION_INVALID)
    comment = get_service().add_comment(
        proposal_id, step_id, user, content,
        is_internal=flag_field(data, "is_internal"),
        attachments=[str(a) for a in attachments],
    )
    return jsonify({"comment": comment.to_dict()}), 201
