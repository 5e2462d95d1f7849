from __future__ import annotations

from flask import Blueprint, jsonify
from flask_jwt_extended import get_current_user

from marketplace.blueprints.common import get_json_body
from marketplace.blueprints.serializers import serialize_vendor, serialize_vendor_public
from marketplace.database import get_db
from marketplace.security import current_user_required
from marketplace.services.vendor_service import VendorService

vendors_bp = Blueprint("vendors", __name__)


def _get_vendor_service() -> VendorService:
    return VendorService(get_db())


@vendors_bp.route("/api/vendors/apply", methods=["POST"])
@current_user_required
def apply():
    vendor = _get_vendor_service().apply(get_current_user(), get_json_body())
    return jsonify(serialize_vendor(vendor)), 201


@vendors_bp.route("/api/vendors/me", methods=["GET"])
@current_user_required
def get_my_vendor():
    return jsonify(serialize_vendor(_get_vendor_service().get_my_vendor(get_current_user())))


@vendors_bp.route("/api/vendors/me", methods=["PATCH"])
@current_user_required
def update_my_vendor():
    vendor = _get_vendor_service().update_my_vendor(get_current_user(), get_json_body())
    return jsonify(serialize_vendor(vendor))


@vendors_bp.route("/api/vendors/<string:slug>", methods=["GET"])
def get_vendor_by_slug(slug: str):
    return jsonify(serialize_vendor_public(_get_vendor_service().get_by_slug(slug)))
