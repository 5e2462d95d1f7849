from __future__ import annotations

import logging
from collections import Counter, OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session
from werkzeug.exceptions import BadRequest

from marketplace.models import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Product,
    ProductStatus,
    User,
    Vendor,
    VendorStatus,
    as_utc,
    utcnow,
)
from marketplace.utils import money, parse_date

REPORT_PERIODS = ("day", "week", "month")
DEFAULT_REPORT_DAYS = 30
RECENT_ORDER_COUNT = 5
REPORT_TOP_N = 10


def bucket_key(moment: datetime, period: str) -> str:
    """Label a timestamp with the reporting bucket it belongs to."""
    moment = as_utc(moment)
    if period == "day":
        return moment.date().isoformat()
    if period == "week":
        # Weeks start on Monday.
        return (moment.date() - timedelta(days=moment.weekday())).isoformat()
    return f"{moment.year:04d}-{moment.month:02d}"


class AdminService:
    """Read-only aggregates for the admin dashboard and reports."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def dashboard(self) -> Dict[str, Any]:
        vendor_counts = Counter(
            VendorStatus(status) for (status,) in self.db.query(Vendor.status).all()
        )
        gmv = (
            self.db.query(func.coalesce(func.sum(Order.total), 0))
            .filter(Order.payment_status == PaymentStatus.PAID)
            .scalar()
        )
        recent_orders = (
            self.db.query(Order)
            .order_by(Order.created_at.desc(), Order.orderID.desc())
            .limit(RECENT_ORDER_COUNT)
            .all()
        )
        return {
            "total_users": self.db.query(func.count(User.userID)).scalar(),
            "total_vendors": sum(vendor_counts.values()),
            "active_vendors": vendor_counts[VendorStatus.APPROVED],
            "pending_vendors": vendor_counts[VendorStatus.PENDING],
            "total_products": self.db.query(func.count(Product.productID)).scalar(),
            "total_orders": self.db.query(func.count(Order.orderID)).scalar(),
            "gmv": money(gmv),
            "recent_orders": recent_orders,
        }

    def sales_report(
        self,
        period: Optional[str] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> Dict[str, Any]:
        period = (period or "day").strip().lower()
        if period not in REPORT_PERIODS:
            raise BadRequest(f"period must be one of: {', '.join(REPORT_PERIODS)}")

        end_at = parse_date(end, "end", end_of_day=True) or utcnow()
        start_at = parse_date(start, "start") or end_at - timedelta(days=DEFAULT_REPORT_DAYS)
        if start_at > end_at:
            raise BadRequest("start must be before end")

        rows = (
            self.db.query(Order.created_at, Order.total)
            .filter(Order.payment_status == PaymentStatus.PAID)
            .all()
        )
        # Naive/aware datetimes differ by backend, so the window is applied here.
        orders_per_bucket: Counter = Counter()
        revenue_per_bucket: Dict[str, Decimal] = {}
        for created_at, total in rows:
            created_at = as_utc(created_at)
            if created_at is None or not (start_at <= created_at <= end_at):
                continue
            key = bucket_key(created_at, period)
            orders_per_bucket[key] += 1
            revenue_per_bucket[key] = revenue_per_bucket.get(key, Decimal("0")) + money(total)

        buckets = OrderedDict()
        for key in sorted(orders_per_bucket):
            buckets[key] = {
                "period": key,
                "orders": orders_per_bucket[key],
                "revenue": money(revenue_per_bucket[key]),
            }

        return {
            "period": period,
            "start": start_at,
            "end": end_at,
            "data": list(buckets.values()),
            "total_orders": sum(orders_per_bucket.values()),
            "total_revenue": money(sum(revenue_per_bucket.values(), Decimal("0"))),
        }

    def products_report(self) -> Dict[str, List[Dict[str, Any]]]:
        quantity_sold = func.sum(OrderItem.quantity).label("quantity_sold")
        best_sellers = (
            self.db.query(
                OrderItem.productID,
                func.max(OrderItem.product_title),
                quantity_sold,
                func.sum(OrderItem.subtotal),
            )
            .join(Order, OrderItem.orderID == Order.orderID)
            .filter(Order.status != OrderStatus.CANCELLED, OrderItem.productID.isnot(None))
            .group_by(OrderItem.productID)
            .order_by(quantity_sold.desc(), OrderItem.productID)
            .limit(REPORT_TOP_N)
            .all()
        )
        low_stock = (
            self.db.query(Product)
            .filter(Product.status == ProductStatus.ACTIVE)
            .order_by(Product.stock.asc(), Product.productID)
            .limit(REPORT_TOP_N)
            .all()
        )
        return {
            "best_sellers": [
                {
                    "product_id": product_id,
                    "title": title,
                    "quantity_sold": int(sold or 0),
                    "revenue": money(revenue),
                }
                for product_id, title, sold, revenue in best_sellers
            ],
            "low_stock": [
                {
                    "product_id": product.productID,
                    "title": product.title,
                    "sku": product.sku,
                    "stock": product.stock,
                    "vendor_id": product.vendorID,
                }
                for product in low_stock
            ],
        }
