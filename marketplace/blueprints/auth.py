from __future__ import annotations

from flask import Blueprint, jsonify
from flask_jwt_extended import get_current_user, jwt_required

from marketplace.blueprints.common import get_json_body, require_fields
from marketplace.blueprints.serializers import serialize_user
from marketplace.database import get_db
from marketplace.security import current_user_required
from marketplace.services.auth_service import AuthService

auth_bp = Blueprint("auth", __name__)


def _get_auth_service() -> AuthService:
    return AuthService(get_db())


def _token_response(result, status: int = 200):
    body = {
        "access_token": result["access_token"],
        "refresh_token": result["refresh_token"],
        "token_type": "Bearer",
    }
    if "user" in result:
        body["user"] = serialize_user(result["user"])
    return jsonify(body), status


@auth_bp.route("/api/auth/register", methods=["POST"])
def register():
    payload = get_json_body()
    require_fields(payload, "email", "password")
    result = _get_auth_service().register(
        email=payload["email"],
        password=payload["password"],
        first_name=payload.get("first_name"),
        last_name=payload.get("last_name"),
        phone=payload.get("phone"),
    )
    return _token_response(result, 201)


@auth_bp.route("/api/auth/login", methods=["POST"])
def login():
    payload = get_json_body()
    require_fields(payload, "email", "password")
    result = _get_auth_service().login(payload["email"], payload["password"])
    return _token_response(result)


@auth_bp.route("/api/auth/refresh", methods=["POST"])
@jwt_required(refresh=True)
def refresh():
    return _token_response(_get_auth_service().refresh(get_current_user()))


@auth_bp.route("/api/auth/logout", methods=["POST"])
@current_user_required
def logout():
    _get_auth_service().logout(get_current_user())
    return jsonify({"message": "Logged out successfully"})


@auth_bp.route("/api/auth/forgot-password", methods=["POST"])
def forgot_password():
    payload = get_json_body()
    require_fields(payload, "email")
    message = _get_auth_service().forgot_password(payload["email"])
    return jsonify({"message": message})


@auth_bp.route("/api/auth/reset-password", methods=["POST"])
def reset_password():
    payload = get_json_body()
    require_fields(payload, "token", "new_password")
    _get_auth_service().reset_password(payload["token"], payload["new_password"])
    return jsonify({"message": "Password has been reset"})


@auth_bp.route("/api/auth/profile", methods=["GET"])
@current_user_required
def profile():
    return jsonify(serialize_user(get_current_user()))
