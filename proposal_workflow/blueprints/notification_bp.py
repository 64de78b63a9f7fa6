"""
Notification blueprint: the acting user's in-app inbox.

    GET  /api/v1/notifications               newest first (?unread=true)
    POST /api/v1/notifications/<id>/read     mark one as read
"""

from flask import Blueprint, jsonify, request

from proposal_workflow.blueprints import current_user, get_service, register_error_handlers

notification_bp = register_error_handlers(Blueprint("notification_bp", __name__, url_prefix="/api/v1"))


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    user = current_user()
    svc = get_service()
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    items = svc.notifications_for(user, unread_only=unread_only)
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": len(items),
        "unread_count": svc.dispatcher.unread_count(user.id),
    }), 200


@notification_bp.route("/notifications/<notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    user = current_user()
    svc = get_service()
    svc.mark_notification_read(notification_id, user)
    return jsonify(svc.dispatcher.get(notification_id).to_dict()), 200
