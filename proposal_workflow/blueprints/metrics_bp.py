"""
Workflow metrics blueprint.

    GET /api/v1/workflows/<id>/metrics   aggregate KPIs (coordinators and admins)
"""

from flask import Blueprint, jsonify

from proposal_workflow.blueprints import current_user, get_service, register_error_handlers
from proposal_workflow.core.exceptions import AuthorizationError
from proposal_workflow.models.proposal import UserRole

metrics_bp = register_error_handlers(Blueprint("metrics_bp", __name__, url_prefix="/api/v1"))


@metrics_bp.route("/workflows/<workflow_id>/metrics", methods=["GET"])
def workflow_metrics(workflow_id):
    user = current_user()
    if user.role == UserRole.THERAPIST:
        raise AuthorizationError(user.id, user.role.value, "view workflow metrics")
    return jsonify(get_service().metrics.summarize(workflow_id).to_dict()), 200
