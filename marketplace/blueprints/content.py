from __future__ import annotations

from flask import Blueprint, jsonify, request

from marketplace.blueprints.common import pagination_args
from marketplace.blueprints.serializers import serialize_page, serialize_post
from marketplace.database import get_db
from marketplace.services.content_service import ContentService

content_bp = Blueprint("content", __name__)


@content_bp.route("/api/pages/<string:slug>", methods=["GET"])
def get_page(slug: str):
    return jsonify(serialize_page(ContentService(get_db()).get_published_page(slug)))


@content_bp.route("/api/blog/posts", methods=["GET"])
def list_posts():
    page, limit = pagination_args()
    result = ContentService(get_db()).list_published_posts(page, limit, tag=request.args.get("tag"))
    return jsonify(result.to_dict(serialize_post))


@content_bp.route("/api/blog/posts/<string:slug>", methods=["GET"])
def get_post(slug: str):
    return jsonify(serialize_post(ContentService(get_db()).get_published_post(slug)))
