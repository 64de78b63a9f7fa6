"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  - simple 200 for load balancers
    GET /api/v1/health/live   - store sizes and configuration status
"""

import logging

from flask import Blueprint, jsonify

from proposal_workflow.blueprints import get_service

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    svc = get_service()
    checks = {
        "workflows": {"status": "ok", "active": len(svc.store.list_active())},
        "proposals": {"status": "ok", "count": len(svc.repository)},
        "events": {"status": "ok", "count": len(svc.event_log)},
        "email": {"status": "ok", "mode": "smtp" if svc.email_service.is_configured() else "log-only"},
    }
    if svc.default_workflow_id not in svc.store:
        checks["workflows"]["status"] = "degraded"
        logger.warning("Health check: default workflow %s is not configured", svc.default_workflow_id)
    overall = all(c["status"] == "ok" for c in checks.values())
    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), 200 if overall else 503
