from __future__ import annotations

from flask import Blueprint, jsonify

from marketplace.blueprints.serializers import serialize_category, serialize_category_detail
from marketplace.database import get_db
from marketplace.services.category_service import CategoryService

categories_bp = Blueprint("categories", __name__)


@categories_bp.route("/api/categories", methods=["GET"])
def category_tree():
    roots = CategoryService(get_db()).get_tree()
    return jsonify({"data": [serialize_category(category) for category in roots]})


@categories_bp.route("/api/categories/<int:category_id>", methods=["GET"])
def get_category(category_id: int):
    category = CategoryService(get_db()).get_category(category_id)
    return jsonify(serialize_category_detail(category))
