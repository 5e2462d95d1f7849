"""Bearer-token authentication and role guards."""
from __future__ import annotations

from functools import wraps
from typing import Callable

from flask import Flask, g
from flask_jwt_extended import JWTManager, get_current_user, jwt_required
from werkzeug.exceptions import Forbidden

from marketplace.database import get_db
from marketplace.errors import error_response
from marketplace.models import User, UserRole
from marketplace.services.vendor_service import VendorService

jwt = JWTManager()


@jwt.user_identity_loader
def _user_identity(user: User) -> str:
    return str(user.userID)


@jwt.additional_claims_loader
def _additional_claims(user: User) -> dict:
    return {"roles": user.roles}


@jwt.user_lookup_loader
def _load_user(_jwt_header: dict, jwt_data: dict):
    user = get_db().get(User, int(jwt_data["sub"]))
    if user is None or not user.is_active:
        return None
    g.current_user_id = user.userID
    return user


@jwt.token_in_blocklist_loader
def _is_token_revoked(_jwt_header: dict, jwt_data: dict) -> bool:
    # Only the most recently issued refresh token stays usable.
    if jwt_data.get("type") != "refresh":
        return False
    user = get_db().get(User, int(jwt_data["sub"]))
    return user is None or user.refresh_token_jti != jwt_data.get("jti")


@jwt.user_lookup_error_loader
def _user_lookup_error(_jwt_header: dict, _jwt_data: dict):
    return error_response("User not found or inactive", "Unauthorized", 401)


@jwt.unauthorized_loader
def _missing_token(reason: str):
    return error_response(reason, "Unauthorized", 401)


@jwt.invalid_token_loader
def _invalid_token(reason: str):
    return error_response(reason, "Unauthorized", 401)


@jwt.expired_token_loader
def _expired_token(_jwt_header: dict, _jwt_data: dict):
    return error_response("Token has expired", "Unauthorized", 401)


@jwt.revoked_token_loader
def _revoked_token(_jwt_header: dict, _jwt_data: dict):
    return error_response("Token has been revoked", "Unauthorized", 401)


def init_security(app: Flask) -> None:
    jwt.init_app(app)


def current_user_required(fn: Callable) -> Callable:
    """Require a valid access token and load the user onto the request."""

    @wraps(fn)
    @jwt_required()
    def wrapper(*args, **kwargs):
        return fn(*args, **kwargs)

    return wrapper


def roles_required(*roles: UserRole) -> Callable:
    def decorator(fn: Callable) -> Callable:
        @wraps(fn)
        @jwt_required()
        def wrapper(*args, **kwargs):
            user = get_current_user()
            if not any(user.has_role(role) for role in roles):
                raise Forbidden("Insufficient permissions")
            return fn(*args, **kwargs)

        return wrapper

    return decorator


admin_required = roles_required(UserRole.ADMIN)


def approved_vendor_required(fn: Callable) -> Callable:
    """Require the caller to own an approved vendor; exposes it as ``g.vendor``."""

    @wraps(fn)
    @jwt_required()
    def wrapper(*args, **kwargs):
        g.vendor = VendorService(get_db()).require_approved_vendor(get_current_user())
        return fn(*args, **kwargs)

    return wrapper
