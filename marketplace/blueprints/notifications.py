from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_current_user
from werkzeug.exceptions import NotFound

from marketplace.blueprints.common import query_bool
from marketplace.config import Config
from marketplace.security import current_user_required
from marketplace.services.notification_service import NotificationService
from marketplace.utils import parse_int

notifications_bp = Blueprint("notifications", __name__)


@notifications_bp.route("/api/notifications", methods=["GET"])
@current_user_required
def get_notifications():
    """Get notifications for the current user."""
    user_id = get_current_user().userID
    notification_service = NotificationService()
    limit = parse_int(
        request.args.get("limit", Config.DEFAULT_PAGE_SIZE),
        "limit",
        minimum=1,
        maximum=NotificationService.MAX_PER_USER,
    )
    notifications = notification_service.get_notifications(
        user_id=user_id,
        unread_only=bool(query_bool("unread_only")),
        limit=limit,
    )
    return jsonify({
        "notifications": notifications,
        "unread_count": notification_service.get_unread_count(user_id),
    })


@notifications_bp.route("/api/notifications/unread-count", methods=["GET"])
@current_user_required
def get_unread_count():
    return jsonify({"unread_count": NotificationService().get_unread_count(get_current_user().userID)})


@notifications_bp.route("/api/notifications/<notification_id>/read", methods=["POST"])
@current_user_required
def mark_notification_read(notification_id: str):
    """Mark a notification as read."""
    user_id = get_current_user().userID
    notification_service = NotificationService()
    if not notification_service.mark_as_read(user_id, notification_id):
        raise NotFound("Notification not found")
    return jsonify({
        "success": True,
        "unread_count": notification_service.get_unread_count(user_id),
    })


@notifications_bp.route("/api/notifications/read-all", methods=["POST"])
@current_user_required
def mark_all_notifications_read():
    """Mark all notifications as read."""
    count = NotificationService().mark_all_as_read(get_current_user().userID)
    return jsonify({
        "success": True,
        "marked_count": count,
        "unread_count": 0,
    })
