from __future__ import annotations

from flask import Blueprint, g, jsonify
from flask_jwt_extended import get_current_user

from marketplace.blueprints.common import get_json_body, pagination_args
from marketplace.blueprints.serializers import serialize_payment, serialize_payout, serialize_refund
from marketplace.database import get_db
from marketplace.security import admin_required, approved_vendor_required, current_user_required
from marketplace.services.payment_service import PaymentService
from marketplace.services.payout_service import PayoutService

payments_bp = Blueprint("payments", __name__)


def _get_payment_service() -> PaymentService:
    return PaymentService(get_db())


@payments_bp.route("/api/payments/webhook", methods=["POST"])
def payment_webhook():
    return jsonify(_get_payment_service().handle_webhook(get_json_body()))


@payments_bp.route("/api/payments/<int:order_id>", methods=["GET"])
@current_user_required
def get_payment(order_id: int):
    payment = _get_payment_service().get_payment_for_order(get_current_user(), order_id)
    return jsonify(serialize_payment(payment))


@payments_bp.route("/api/payments/<int:order_id>/refund", methods=["POST"])
@admin_required
def refund_payment(order_id: int):
    payload = get_json_body()
    refund = _get_payment_service().refund(order_id, payload.get("amount"), payload.get("reason"))
    return jsonify(serialize_refund(refund)), 201


@payments_bp.route("/api/vendor/payouts", methods=["GET"])
@approved_vendor_required
def list_payouts():
    page, limit = pagination_args()
    result = PayoutService(get_db()).list_for_vendor(g.vendor, page, limit)
    return jsonify(result.to_dict(serialize_payout))


@payments_bp.route("/api/vendor/payouts/request", methods=["POST"])
@approved_vendor_required
def request_payout():
    payout = PayoutService(get_db()).request_payout(g.vendor)
    return jsonify(serialize_payout(payout)), 201
