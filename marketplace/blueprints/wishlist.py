from __future__ import annotations

from flask import Blueprint, jsonify
from flask_jwt_extended import get_current_user

from marketplace.blueprints.common import get_json_body, require_fields
from marketplace.blueprints.serializers import serialize_wishlist_item
from marketplace.database import get_db
from marketplace.security import current_user_required
from marketplace.services.wishlist_service import WishlistService
from marketplace.utils import parse_int

wishlist_bp = Blueprint("wishlist", __name__)


@wishlist_bp.route("/api/wishlist", methods=["GET"])
@current_user_required
def list_wishlist():
    items = WishlistService(get_db()).list_items(get_current_user())
    return jsonify({"data": [serialize_wishlist_item(item) for item in items]})


@wishlist_bp.route("/api/wishlist", methods=["POST"])
@current_user_required
def add_to_wishlist():
    payload = get_json_body()
    require_fields(payload, "product_id")
    item = WishlistService(get_db()).add(get_current_user(), parse_int(payload["product_id"], "product_id"))
    return jsonify(serialize_wishlist_item(item)), 201


@wishlist_bp.route("/api/wishlist/<int:product_id>", methods=["DELETE"])
@current_user_required
def remove_from_wishlist(product_id: int):
    WishlistService(get_db()).remove(get_current_user(), product_id)
    return "", 204
