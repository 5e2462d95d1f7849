from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from marketplace.blueprints.common import get_json_body, pagination_args, query_bool
from marketplace.blueprints.serializers import serialize_product, serialize_variant
from marketplace.database import get_db
from marketplace.security import approved_vendor_required
from marketplace.services.product_service import ProductService

products_bp = Blueprint("products", __name__)


def _get_product_service() -> ProductService:
    return ProductService(get_db())


# --- Public storefront ---

@products_bp.route("/api/products", methods=["GET"])
def list_products():
    page, limit = pagination_args()
    result = _get_product_service().list_public(
        page,
        limit,
        q=request.args.get("q"),
        category=request.args.get("category"),
        vendor=request.args.get("vendor"),
        min_price=request.args.get("min_price"),
        max_price=request.args.get("max_price"),
        featured=query_bool("featured"),
        sort=request.args.get("sort"),
    )
    return jsonify(result.to_dict(serialize_product))


@products_bp.route("/api/products/<string:id_or_slug>", methods=["GET"])
def get_product(id_or_slug: str):
    product = _get_product_service().get_public(id_or_slug)
    return jsonify(serialize_product(product, detail=True))


@products_bp.route("/api/vendors/<int:vendor_id>/products", methods=["GET"])
def list_vendor_storefront(vendor_id: int):
    page, limit = pagination_args()
    result = _get_product_service().list_for_vendor_storefront(vendor_id, page, limit)
    return jsonify(result.to_dict(serialize_product))


# --- Vendor catalog ---

@products_bp.route("/api/vendor/products", methods=["GET"])
@approved_vendor_required
def list_own_products():
    page, limit = pagination_args()
    result = _get_product_service().list_own(g.vendor, page, limit, status=request.args.get("status"))
    return jsonify(result.to_dict(serialize_product))


@products_bp.route("/api/vendor/products", methods=["POST"])
@approved_vendor_required
def create_product():
    product = _get_product_service().create(g.vendor, get_json_body())
    return jsonify(serialize_product(product, detail=True)), 201


@products_bp.route("/api/vendor/products/<int:product_id>", methods=["PATCH"])
@approved_vendor_required
def update_product(product_id: int):
    product = _get_product_service().update(g.vendor, product_id, get_json_body())
    return jsonify(serialize_product(product, detail=True))


@products_bp.route("/api/vendor/products/<int:product_id>", methods=["DELETE"])
@approved_vendor_required
def archive_product(product_id: int):
    product = _get_product_service().archive(g.vendor, product_id)
    return jsonify(serialize_product(product))


@products_bp.route("/api/vendor/products/<int:product_id>/variants", methods=["POST"])
@approved_vendor_required
def add_variant(product_id: int):
    variant = _get_product_service().add_variant(g.vendor, product_id, get_json_body())
    return jsonify(serialize_variant(variant)), 201


@products_bp.route("/api/vendor/products/<int:product_id>/variants/<int:variant_id>", methods=["PATCH"])
@approved_vendor_required
def update_variant(product_id: int, variant_id: int):
    variant = _get_product_service().update_variant(g.vendor, product_id, variant_id, get_json_body())
    return jsonify(serialize_variant(variant))


@products_bp.route("/api/vendor/products/<int:product_id>/variants/<int:variant_id>", methods=["DELETE"])
@approved_vendor_required
def delete_variant(product_id: int, variant_id: int):
    _get_product_service().delete_variant(g.vendor, product_id, variant_id)
    return "", 204
