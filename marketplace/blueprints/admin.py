from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, jsonify, request

from marketplace.blueprints.common import get_json_body, pagination_args, query_int, require_fields
from marketplace.blueprints.serializers import (
    money_to_float,
    serialize_category,
    serialize_dt,
    serialize_order,
    serialize_page,
    serialize_payout,
    serialize_post,
    serialize_product,
    serialize_refund,
    serialize_review,
    serialize_user,
    serialize_vendor,
)
from marketplace.database import get_db
from marketplace.observability import get_metrics_snapshot
from marketplace.security import admin_required
from marketplace.services.admin_service import AdminService
from marketplace.services.category_service import CategoryService
from marketplace.services.content_service import ContentService
from marketplace.services.order_service import OrderService
from marketplace.services.payment_service import PaymentService
from marketplace.services.payout_service import PayoutService
from marketplace.services.product_service import ProductService
from marketplace.services.review_service import ReviewService
from marketplace.services.user_service import UserService
from marketplace.services.vendor_service import VendorService

admin_bp = Blueprint("admin", __name__)


# --- Dashboard and reports ---

@admin_bp.route("/api/admin/dashboard/metrics", methods=["GET"])
@admin_required
def dashboard_metrics():
    stats = AdminService(get_db()).dashboard()
    stats["gmv"] = money_to_float(stats["gmv"])
    stats["recent_orders"] = [serialize_order(order) for order in stats["recent_orders"]]
    return jsonify(stats)


@admin_bp.route("/api/admin/reports/sales", methods=["GET"])
@admin_required
def sales_report():
    report = AdminService(get_db()).sales_report(
        period=request.args.get("period"),
        start=request.args.get("start"),
        end=request.args.get("end"),
    )
    return jsonify({
        "period": report["period"],
        "start": serialize_dt(report["start"]),
        "end": serialize_dt(report["end"]),
        "data": [_serialize_bucket(bucket) for bucket in report["data"]],
        "total_orders": report["total_orders"],
        "total_revenue": money_to_float(report["total_revenue"]),
    })


@admin_bp.route("/api/admin/reports/products", methods=["GET"])
@admin_required
def products_report():
    report = AdminService(get_db()).products_report()
    for row in report["best_sellers"]:
        row["revenue"] = money_to_float(row["revenue"])
    return jsonify(report)


@admin_bp.route("/api/admin/metrics", methods=["GET"])
@admin_required
def admin_metrics():
    return jsonify(get_metrics_snapshot())


# --- Users ---

@admin_bp.route("/api/admin/users", methods=["GET"])
@admin_required
def list_users():
    page, limit = pagination_args()
    result = UserService(get_db()).list_users(
        page,
        limit,
        search=request.args.get("search"),
        role=request.args.get("role"),
        status=request.args.get("status"),
    )
    return jsonify(result.to_dict(serialize_user))


@admin_bp.route("/api/admin/users/<int:user_id>", methods=["GET"])
@admin_required
def get_user(user_id: int):
    return jsonify(serialize_user(UserService(get_db()).get_user(user_id)))


@admin_bp.route("/api/admin/users/<int:user_id>", methods=["PATCH"])
@admin_required
def update_user(user_id: int):
    return jsonify(serialize_user(UserService(get_db()).admin_update(user_id, get_json_body())))


@admin_bp.route("/api/admin/users/<int:user_id>", methods=["DELETE"])
@admin_required
def delete_user(user_id: int):
    return jsonify(serialize_user(UserService(get_db()).soft_delete(user_id)))


# --- Vendors ---

@admin_bp.route("/api/admin/vendors", methods=["GET"])
@admin_required
def list_vendors():
    page, limit = pagination_args()
    result = VendorService(get_db()).list_vendors(
        page,
        limit,
        status=request.args.get("status"),
        search=request.args.get("search"),
    )
    return jsonify(result.to_dict(serialize_vendor))


@admin_bp.route("/api/admin/vendors/<int:vendor_id>", methods=["GET"])
@admin_required
def get_vendor(vendor_id: int):
    return jsonify(serialize_vendor(VendorService(get_db()).get_vendor(vendor_id)))


@admin_bp.route("/api/admin/vendors/<int:vendor_id>/status", methods=["PATCH"])
@admin_required
def update_vendor_status(vendor_id: int):
    payload = get_json_body()
    require_fields(payload, "status")
    return jsonify(serialize_vendor(VendorService(get_db()).update_status(vendor_id, payload["status"])))


@admin_bp.route("/api/admin/vendors/<int:vendor_id>/commission", methods=["PATCH"])
@admin_required
def update_vendor_commission(vendor_id: int):
    payload = get_json_body()
    require_fields(payload, "commission_rate")
    vendor = VendorService(get_db()).update_commission(vendor_id, payload["commission_rate"])
    return jsonify(serialize_vendor(vendor))


# --- Categories ---

@admin_bp.route("/api/admin/categories", methods=["GET"])
@admin_required
def list_categories():
    categories = CategoryService(get_db()).list_all()
    return jsonify({"data": [serialize_category(category, with_children=False) for category in categories]})


@admin_bp.route("/api/admin/categories", methods=["POST"])
@admin_required
def create_category():
    category = CategoryService(get_db()).create(get_json_body())
    return jsonify(serialize_category(category, active_only=False)), 201


@admin_bp.route("/api/admin/categories/<int:category_id>", methods=["PATCH"])
@admin_required
def update_category(category_id: int):
    category = CategoryService(get_db()).update(category_id, get_json_body())
    return jsonify(serialize_category(category, active_only=False))


@admin_bp.route("/api/admin/categories/<int:category_id>", methods=["DELETE"])
@admin_required
def delete_category(category_id: int):
    category = CategoryService(get_db()).remove(category_id)
    return jsonify(serialize_category(category, with_children=False))


# --- Products ---

@admin_bp.route("/api/admin/products", methods=["GET"])
@admin_required
def list_products():
    page, limit = pagination_args()
    result = ProductService(get_db()).list_admin(
        page,
        limit,
        status=request.args.get("status"),
        vendor_id=query_int("vendor_id"),
        q=request.args.get("q"),
    )
    return jsonify(result.to_dict(serialize_product))


@admin_bp.route("/api/admin/products/<int:product_id>", methods=["PATCH"])
@admin_required
def update_product(product_id: int):
    product = ProductService(get_db()).admin_update(product_id, get_json_body())
    return jsonify(serialize_product(product, detail=True))


@admin_bp.route("/api/admin/products/<int:product_id>", methods=["DELETE"])
@admin_required
def delete_product(product_id: int):
    ProductService(get_db()).admin_delete(product_id)
    return "", 204


# --- Orders ---

@admin_bp.route("/api/admin/orders", methods=["GET"])
@admin_required
def list_orders():
    page, limit = pagination_args()
    result = OrderService(get_db()).list_admin(
        page,
        limit,
        status=request.args.get("status"),
        payment_status=request.args.get("payment_status"),
        user_id=query_int("user_id"),
    )
    return jsonify(result.to_dict(serialize_order))


@admin_bp.route("/api/admin/orders/<int:order_id>", methods=["GET"])
@admin_required
def get_order(order_id: int):
    return jsonify(serialize_order(OrderService(get_db()).get_any(order_id)))


@admin_bp.route("/api/admin/orders/<int:order_id>", methods=["PATCH"])
@admin_required
def update_order(order_id: int):
    return jsonify(serialize_order(OrderService(get_db()).admin_update(order_id, get_json_body())))


@admin_bp.route("/api/admin/orders/<int:order_id>/refund", methods=["POST"])
@admin_required
def refund_order(order_id: int):
    payload = get_json_body()
    refund = PaymentService(get_db()).refund(order_id, payload.get("amount"), payload.get("reason"))
    return jsonify(serialize_refund(refund)), 201


# --- Payouts ---

@admin_bp.route("/api/admin/payouts", methods=["GET"])
@admin_required
def list_payouts():
    page, limit = pagination_args()
    result = PayoutService(get_db()).list_all(
        page,
        limit,
        status=request.args.get("status"),
        vendor_id=query_int("vendor_id"),
    )
    return jsonify(result.to_dict(serialize_payout))


@admin_bp.route("/api/admin/payouts/<int:payout_id>/status", methods=["PATCH"])
@admin_required
def update_payout_status(payout_id: int):
    payload = get_json_body()
    require_fields(payload, "status")
    return jsonify(serialize_payout(PayoutService(get_db()).update_status(payout_id, payload["status"])))


# --- Reviews ---

@admin_bp.route("/api/admin/reviews", methods=["GET"])
@admin_required
def list_reviews():
    page, limit = pagination_args()
    result = ReviewService(get_db()).list_by_status(page, limit, status=request.args.get("status"))
    return jsonify(result.to_dict(serialize_review))


@admin_bp.route("/api/admin/reviews/<int:review_id>", methods=["PATCH"])
@admin_required
def moderate_review(review_id: int):
    payload = get_json_body()
    require_fields(payload, "status")
    return jsonify(serialize_review(ReviewService(get_db()).moderate(review_id, payload["status"])))


# --- Content ---

@admin_bp.route("/api/admin/pages", methods=["GET"])
@admin_required
def list_pages():
    return jsonify({"data": [serialize_page(page) for page in ContentService(get_db()).list_pages()]})


@admin_bp.route("/api/admin/pages", methods=["POST"])
@admin_required
def create_page():
    return jsonify(serialize_page(ContentService(get_db()).create_page(get_json_body()))), 201


@admin_bp.route("/api/admin/pages/<int:page_id>", methods=["PATCH"])
@admin_required
def update_page(page_id: int):
    return jsonify(serialize_page(ContentService(get_db()).update_page(page_id, get_json_body())))


@admin_bp.route("/api/admin/pages/<int:page_id>", methods=["DELETE"])
@admin_required
def delete_page(page_id: int):
    ContentService(get_db()).delete_page(page_id)
    return "", 204


@admin_bp.route("/api/admin/blog/posts", methods=["GET"])
@admin_required
def list_posts():
    return jsonify({"data": [serialize_post(post) for post in ContentService(get_db()).list_posts()]})


@admin_bp.route("/api/admin/blog/posts", methods=["POST"])
@admin_required
def create_post():
    return jsonify(serialize_post(ContentService(get_db()).create_post(get_json_body()))), 201


@admin_bp.route("/api/admin/blog/posts/<int:post_id>", methods=["PATCH"])
@admin_required
def update_post(post_id: int):
    return jsonify(serialize_post(ContentService(get_db()).update_post(post_id, get_json_body())))


@admin_bp.route("/api/admin/blog/posts/<int:post_id>", methods=["DELETE"])
@admin_required
def delete_post(post_id: int):
    ContentService(get_db()).delete_post(post_id)
    return "", 204


def _serialize_bucket(bucket: Dict[str, Any]) -> Dict[str, Any]:
    return {"period": bucket["period"], "orders": bucket["orders"], "revenue": money_to_float(bucket["revenue"])}
