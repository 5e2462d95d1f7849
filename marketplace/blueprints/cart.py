from __future__ import annotations

from flask import Blueprint, jsonify
from flask_jwt_extended import get_current_user

from marketplace.blueprints.common import get_json_body, require_fields
from marketplace.blueprints.serializers import serialize_cart
from marketplace.database import get_db
from marketplace.security import current_user_required
from marketplace.services.cart_service import CartService
from marketplace.utils import parse_int

cart_bp = Blueprint("cart", __name__)


def _get_cart_service() -> CartService:
    return CartService(get_db())


@cart_bp.route("/api/cart", methods=["GET"])
@current_user_required
def get_cart():
    return jsonify(serialize_cart(_get_cart_service().get_or_create(get_current_user())))


@cart_bp.route("/api/cart/items", methods=["POST"])
@current_user_required
def add_item():
    payload = get_json_body()
    require_fields(payload, "product_id")
    variant_id = payload.get("variant_id")
    cart = _get_cart_service().add_item(
        get_current_user(),
        product_id=parse_int(payload["product_id"], "product_id"),
        variant_id=None if variant_id is None else parse_int(variant_id, "variant_id"),
        quantity=parse_int(payload.get("quantity", 1), "quantity", minimum=1),
    )
    return jsonify(serialize_cart(cart)), 201


@cart_bp.route("/api/cart/items/<int:item_id>", methods=["PATCH"])
@current_user_required
def update_item(item_id: int):
    payload = get_json_body()
    require_fields(payload, "quantity")
    cart = _get_cart_service().update_item(
        get_current_user(),
        item_id,
        parse_int(payload["quantity"], "quantity", minimum=1),
    )
    return jsonify(serialize_cart(cart))


@cart_bp.route("/api/cart/items/<int:item_id>", methods=["DELETE"])
@current_user_required
def remove_item(item_id: int):
    return jsonify(serialize_cart(_get_cart_service().remove_item(get_current_user(), item_id)))


@cart_bp.route("/api/cart", methods=["DELETE"])
@current_user_required
def clear_cart():
    return jsonify(serialize_cart(_get_cart_service().clear(get_current_user())))
