from __future__ import annotations

from flask import Blueprint, jsonify
from flask_jwt_extended import get_current_user

from marketplace.blueprints.common import get_json_body, require_fields
from marketplace.blueprints.serializers import serialize_user
from marketplace.database import get_db
from marketplace.security import current_user_required
from marketplace.services.user_service import UserService

users_bp = Blueprint("users", __name__)


@users_bp.route("/api/users/me", methods=["GET"])
@current_user_required
def get_me():
    return jsonify(serialize_user(get_current_user()))


@users_bp.route("/api/users/me", methods=["PATCH"])
@current_user_required
def update_me():
    user = UserService(get_db()).update_profile(get_current_user(), get_json_body())
    return jsonify(serialize_user(user))


@users_bp.route("/api/users/me/password", methods=["PATCH"])
@current_user_required
def change_password():
    payload = get_json_body()
    require_fields(payload, "current_password", "new_password")
    UserService(get_db()).change_password(
        get_current_user(),
        payload["current_password"],
        payload["new_password"],
    )
    return jsonify({"message": "Password updated successfully"})
