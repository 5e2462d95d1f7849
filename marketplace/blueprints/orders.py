from __future__ import annotations

from flask import Blueprint, g, jsonify, request
from flask_jwt_extended import get_current_user

from marketplace.blueprints.common import get_json_body, pagination_args, require_fields
from marketplace.blueprints.serializers import serialize_order, serialize_order_item, serialize_vendor_order
from marketplace.database import get_db
from marketplace.models import OrderStatus
from marketplace.security import approved_vendor_required, current_user_required
from marketplace.services.order_service import OrderService

orders_bp = Blueprint("orders", __name__)


def _get_order_service() -> OrderService:
    return OrderService(get_db())


# --- Customer ---

@orders_bp.route("/api/orders", methods=["GET"])
@current_user_required
def list_orders():
    page, limit = pagination_args()
    result = _get_order_service().list_for_user(
        get_current_user(), page, limit, status=request.args.get("status")
    )
    return jsonify(result.to_dict(serialize_order))


@orders_bp.route("/api/orders/<int:order_id>", methods=["GET"])
@current_user_required
def get_order(order_id: int):
    return jsonify(serialize_order(_get_order_service().get_for_user(get_current_user(), order_id)))


@orders_bp.route("/api/orders/<int:order_id>/cancel", methods=["POST"])
@current_user_required
def cancel_order(order_id: int):
    payload = get_json_body()
    order = _get_order_service().cancel(get_current_user(), order_id, payload.get("reason"))
    return jsonify(serialize_order(order))


@orders_bp.route("/api/orders/<int:order_id>/return", methods=["POST"])
@current_user_required
def request_return(order_id: int):
    payload = get_json_body()
    require_fields(payload, "reason")
    order = _get_order_service().request_return(get_current_user(), order_id, payload["reason"])
    return jsonify(serialize_order(order))


# --- Vendor ---

@orders_bp.route("/api/vendor/orders", methods=["GET"])
@approved_vendor_required
def list_vendor_orders():
    page, limit = pagination_args()
    vendor = g.vendor
    result = _get_order_service().list_for_vendor(vendor, page, limit, status=request.args.get("status"))
    return jsonify(result.to_dict(lambda order: serialize_vendor_order(order, vendor)))


@orders_bp.route("/api/vendor/orders/<int:order_id>", methods=["GET"])
@approved_vendor_required
def get_vendor_order(order_id: int):
    order = _get_order_service().get_for_vendor(g.vendor, order_id)
    return jsonify(serialize_vendor_order(order, g.vendor))


@orders_bp.route("/api/vendor/orders/<int:order_id>/items/<int:item_id>/status", methods=["PATCH"])
@approved_vendor_required
def update_item_status(order_id: int, item_id: int):
    payload = get_json_body()
    require_fields(payload, "status")
    order, item = _get_order_service().update_item_fulfillment(
        g.vendor,
        order_id,
        item_id,
        payload["status"],
        tracking_number=payload.get("tracking_number"),
    )
    return jsonify({
        "item": serialize_order_item(item),
        "order_status": OrderStatus(order.status).value,
    })
