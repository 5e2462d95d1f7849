from __future__ import annotations

from flask import Blueprint, jsonify
from flask_jwt_extended import get_current_user

from marketplace.blueprints.common import get_json_body, pagination_args, require_fields
from marketplace.blueprints.serializers import serialize_review
from marketplace.database import get_db
from marketplace.security import current_user_required
from marketplace.services.review_service import ReviewService

reviews_bp = Blueprint("reviews", __name__)


def _get_review_service() -> ReviewService:
    return ReviewService(get_db())


@reviews_bp.route("/api/products/<int:product_id>/reviews", methods=["GET"])
def list_reviews(product_id: int):
    page, limit = pagination_args()
    result = _get_review_service().list_approved(product_id, page, limit)
    return jsonify(result.to_dict(serialize_review))


@reviews_bp.route("/api/products/<int:product_id>/ratings", methods=["GET"])
def rating_summary(product_id: int):
    return jsonify(_get_review_service().rating_summary(product_id))


@reviews_bp.route("/api/products/<int:product_id>/reviews", methods=["POST"])
@current_user_required
def create_review(product_id: int):
    payload = get_json_body()
    require_fields(payload, "rating")
    review = _get_review_service().create(get_current_user(), product_id, payload)
    return jsonify(serialize_review(review)), 201


@reviews_bp.route("/api/products/<int:product_id>/reviews/<int:review_id>", methods=["PATCH"])
@current_user_required
def update_review(product_id: int, review_id: int):
    review = _get_review_service().update(get_current_user(), product_id, review_id, get_json_body())
    return jsonify(serialize_review(review))


@reviews_bp.route("/api/products/<int:product_id>/reviews/<int:review_id>", methods=["DELETE"])
@current_user_required
def delete_review(product_id: int, review_id: int):
    _get_review_service().delete(get_current_user(), product_id, review_id)
    return "", 204
