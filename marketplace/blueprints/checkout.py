from __future__ import annotations

from flask import Blueprint, jsonify
from flask_jwt_extended import get_current_user

from marketplace.blueprints.common import get_json_body, require_fields
from marketplace.blueprints.serializers import serialize_checkout_summary
from marketplace.database import get_db
from marketplace.security import current_user_required
from marketplace.services.checkout_service import CheckoutService

checkout_bp = Blueprint("checkout", __name__)


def _get_checkout_service() -> CheckoutService:
    return CheckoutService(get_db())


@checkout_bp.route("/api/checkout/summary", methods=["POST"])
@current_user_required
def summary():
    payload = get_json_body()
    result = _get_checkout_service().summary(get_current_user(), payload.get("coupon_code"))
    return jsonify(serialize_checkout_summary(result))


@checkout_bp.route("/api/checkout/apply-coupon", methods=["POST"])
@current_user_required
def apply_coupon():
    payload = get_json_body()
    require_fields(payload, "coupon_code")
    result = _get_checkout_service().summary(get_current_user(), payload["coupon_code"])
    return jsonify(serialize_checkout_summary(result))


@checkout_bp.route("/api/checkout/remove-coupon", methods=["POST"])
@current_user_required
def remove_coupon():
    result = _get_checkout_service().summary(get_current_user())
    return jsonify(serialize_checkout_summary(result))


@checkout_bp.route("/api/checkout/create-session", methods=["POST"])
@current_user_required
def create_session():
    payload = get_json_body()
    require_fields(payload, "shipping_address")
    session = _get_checkout_service().create_session(
        get_current_user(),
        shipping_address=payload["shipping_address"],
        billing_address=payload.get("billing_address"),
        coupon_code=payload.get("coupon_code"),
        notes=payload.get("notes"),
    )
    session["total"] = float(session["total"])
    return jsonify(session), 201
