from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session
from werkzeug.exceptions import BadRequest, Conflict, Forbidden, NotFound

from marketplace.config import Config
from marketplace.models import User, UserRole, Vendor, VendorStatus
from marketplace.observability import increment_counter, record_event
from marketplace.services.pagination import PageResult, paginate
from marketplace.utils import parse_enum, parse_text, slugify

VENDOR_PROFILE_FIELDS = (
    "name",
    "description",
    "logo_url",
    "business_email",
    "business_phone",
    "business_address",
)


class VendorService:
    """Vendor onboarding, profile management and admin approval."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    def apply(self, user: User, data: Dict[str, Any]) -> Vendor:
        name = parse_text(data.get("name"), "name")
        if not name:
            raise BadRequest("name is required")
        if self.db.query(Vendor).filter_by(ownerID=user.userID).first() is not None:
            raise Conflict("You already have a vendor application")

        slug = slugify(parse_text(data.get("slug"), "slug") or name)
        self._ensure_slug_available(slug)

        vendor = Vendor(
            ownerID=user.userID,
            name=name,
            slug=slug,
            status=VendorStatus.PENDING,
            commission_rate=self.config.DEFAULT_COMMISSION_RATE,
        )
        for field in VENDOR_PROFILE_FIELDS[1:]:
            if field in data:
                setattr(vendor, field, data[field])
        self.db.add(vendor)
        self.db.commit()

        increment_counter("vendor_applications_total")
        record_event("vendor_applied", {"vendor_id": vendor.vendorID, "owner_id": user.userID})
        self.logger.info("Vendor application %s submitted", vendor.vendorID, extra={"owner_id": user.userID})
        return vendor

    def get_my_vendor(self, user: User) -> Vendor:
        vendor = self.db.query(Vendor).filter_by(ownerID=user.userID).first()
        if vendor is None:
            raise NotFound("Vendor profile not found")
        return vendor

    def require_approved_vendor(self, user: User) -> Vendor:
        vendor = self.db.query(Vendor).filter_by(ownerID=user.userID).first()
        if vendor is None or not vendor.is_approved:
            raise Forbidden("You are not an approved vendor")
        return vendor

    def update_my_vendor(self, user: User, data: Dict[str, Any]) -> Vendor:
        vendor = self.get_my_vendor(user)
        if "name" in data and not parse_text(data["name"], "name"):
            raise BadRequest("name cannot be empty")
        for field in VENDOR_PROFILE_FIELDS:
            if field in data:
                setattr(vendor, field, data[field])
        if "slug" in data:
            slug = slugify(parse_text(data["slug"], "slug"))
            if slug != vendor.slug:
                self._ensure_slug_available(slug)
                vendor.slug = slug
        self.db.commit()
        return vendor

    def get_by_slug(self, slug: str) -> Vendor:
        vendor = (
            self.db.query(Vendor)
            .filter(Vendor.slug == slug, Vendor.status == VendorStatus.APPROVED)
            .first()
        )
        if vendor is None:
            raise NotFound("Vendor not found")
        return vendor

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------
    def list_vendors(
        self,
        page: int,
        limit: int,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> PageResult:
        query = self.db.query(Vendor)
        if status:
            query = query.filter(Vendor.status == parse_enum(VendorStatus, status, "status"))
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(Vendor.name.ilike(pattern), Vendor.slug.ilike(pattern)))
        return paginate(query.order_by(Vendor.created_at.desc(), Vendor.vendorID.desc()), page, limit)

    def get_vendor(self, vendor_id: int) -> Vendor:
        vendor = self.db.get(Vendor, vendor_id)
        if vendor is None:
            raise NotFound("Vendor not found")
        return vendor

    def update_status(self, vendor_id: int, status: str) -> Vendor:
        vendor = self.get_vendor(vendor_id)
        new_status = parse_enum(VendorStatus, status, "status")
        old_status = VendorStatus(vendor.status)
        vendor.status = new_status

        # Product and order routes check the vendor row itself; the role mirrors it.
        owner = vendor.owner
        if new_status == VendorStatus.APPROVED:
            owner.add_role(UserRole.VENDOR)
        else:
            owner.remove_role(UserRole.VENDOR)
        self.db.commit()

        increment_counter("vendor_status_changes_total", labels={"status": new_status.value})
        record_event(
            "vendor_status_changed",
            {"vendor_id": vendor.vendorID, "old_status": old_status.value, "new_status": new_status.value},
        )
        self.logger.info(
            "Vendor %s status %s -> %s",
            vendor.vendorID,
            old_status.value,
            new_status.value,
        )
        return vendor

    def update_commission(self, vendor_id: int, commission_rate: Any) -> Vendor:
        vendor = self.get_vendor(vendor_id)
        try:
            rate = Decimal(str(commission_rate))
        except ArithmeticError:
            raise BadRequest("commission_rate must be a number between 0 and 100")
        if isinstance(commission_rate, bool) or not rate.is_finite() or rate < 0 or rate > 100:
            raise BadRequest("commission_rate must be a number between 0 and 100")
        vendor.commission_rate = rate
        self.db.commit()
        return vendor

    def _ensure_slug_available(self, slug: str) -> None:
        if not slug:
            raise BadRequest("slug must contain letters or digits")
        if self.db.query(Vendor).filter_by(slug=slug).first() is not None:
            raise Conflict("Vendor slug already taken")
