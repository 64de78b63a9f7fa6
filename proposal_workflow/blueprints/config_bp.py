"""
Workflow configuration blueprint.

    GET    /api/v1/workflows           list (?active=true)
    GET    /api/v1/workflows/<id>      one configuration
    PUT    /api/v1/workflows/<id>      create or replace (ADMIN)
    DELETE /api/v1/workflows/<id>      remove (ADMIN)
"""

import logging

from flask import Blueprint, jsonify, request

from proposal_workflow.blueprints import current_user, get_service, json_body, register_error_handlers
from proposal_workflow.core.exceptions import AuthorizationError, NotFoundError
from proposal_workflow.models.proposal import UserRole
from proposal_workflow.models.workflow import WorkflowConfiguration
from proposal_workflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

config_bp = register_error_handlers(Blueprint("config_bp", __name__, url_prefix="/api/v1"))


def _require_admin(user, action):
    if user.role != UserRole.ADMIN:
        raise AuthorizationError(user.id, user.role.value, action)


@config_bp.route("/workflows", methods=["GET"])
def list_workflows():
    current_user()
    store = get_service().store
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    items = store.list_active() if active_only else store.list_all()
    return jsonify({"items": [c.to_dict() for c in items], "total": len(items)}), 200


@config_bp.route("/workflows/<workflow_id>", methods=["GET"])
def get_workflow(workflow_id):
    current_user()
    config = get_service().store.get(workflow_id)
    if config is None:
        raise NotFoundError("Workflow", workflow_id)
    return jsonify(config.to_dict()), 200


@config_bp.route("/workflows/<workflow_id>", methods=["PUT"])
def put_workflow(workflow_id):
    user = current_user()
    _require_admin(user, "change workflow configurations")
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "Workflow configuration body is required")
    if data.get("id", workflow_id) != workflow_id:
        return api_error(E.VALIDATION_INVALID, "Body id does not match URL",
                         details={"id": data.get("id"), "workflow_id": workflow_id})

    store = get_service().store
    created = workflow_id not in store
    config = store.save(WorkflowConfiguration.from_dict({**data, "id": workflow_id}))
    logger.info("Workflow %s saved by %s", workflow_id, user.id, extra={"workflow_id": workflow_id})
    return jsonify(config.to_dict()), 201 if created else 200


@config_bp.route("/workflows/<workflow_id>", methods=["DELETE"])
def delete_workflow(workflow_id):
    user = current_user()
    _require_admin(user, "delete workflow configurations")
    if not get_service().store.delete(workflow_id):
        raise NotFoundError("Workflow", workflow_id)
    return jsonify({"deleted": workflow_id}), 200
