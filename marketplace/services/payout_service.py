from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session
from werkzeug.exceptions import BadRequest, NotFound

from marketplace.models import (
    FulfillmentStatus,
    Order,
    OrderItem,
    PaymentStatus,
    Payout,
    PayoutStatus,
    Vendor,
    as_utc,
    utcnow,
)
from marketplace.observability import increment_counter, record_event
from marketplace.services.pagination import PageResult, paginate
from marketplace.utils import money, parse_enum


class PayoutService:
    """
    Vendor earnings settlement.

    A payout covers the time since the previous non-failed payout (or since
    the vendor joined) and includes delivered items on paid orders, net of commission.
    """

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def list_for_vendor(self, vendor: Vendor, page: int, limit: int) -> PageResult:
        query = self.db.query(Payout).filter(Payout.vendorID == vendor.vendorID)
        return paginate(query.order_by(Payout.created_at.desc(), Payout.payoutID.desc()), page, limit)

    def request_payout(self, vendor: Vendor) -> Payout:
        period_start = self._period_start(vendor)
        period_end = utcnow()

        items = (
            self.db.query(OrderItem)
            .join(Order, OrderItem.orderID == Order.orderID)
            .filter(
                OrderItem.vendorID == vendor.vendorID,
                OrderItem.fulfillment_status == FulfillmentStatus.DELIVERED,
                Order.payment_status == PaymentStatus.PAID,
                Order.delivered_at.isnot(None),
            )
            .all()
        )
        # Naive/aware datetimes differ by backend, so the window is applied here.
        eligible = [
            item
            for item in items
            if period_start < as_utc(item.order.delivered_at) <= period_end
        ]

        gross = money(sum((money(item.subtotal) for item in eligible), Decimal("0")))
        commission = money(gross * money(vendor.commission_rate) / Decimal("100"))
        amount = money(gross - commission)
        if amount <= 0:
            raise BadRequest("No earnings available for payout")

        payout = Payout(
            vendorID=vendor.vendorID,
            amount=amount,
            status=PayoutStatus.PENDING,
            period_start=period_start,
            period_end=period_end,
            details={
                "gross": str(gross),
                "commission_rate": str(money(vendor.commission_rate)),
                "commission": str(commission),
                "item_count": len(eligible),
                "order_ids": sorted({item.orderID for item in eligible}),
            },
        )
        self.db.add(payout)
        self.db.commit()

        increment_counter("payouts_requested_total")
        record_event("payout_requested", {"vendor_id": vendor.vendorID, "payout_id": payout.payoutID})
        self.logger.info(
            "Payout %s requested",
            payout.payoutID,
            extra={"vendor_id": vendor.vendorID, "amount": str(amount)},
        )
        return payout

    def list_all(
        self,
        page: int,
        limit: int,
        status: Optional[str] = None,
        vendor_id: Optional[int] = None,
    ) -> PageResult:
        query = self.db.query(Payout)
        if status:
            query = query.filter(Payout.status == parse_enum(PayoutStatus, status, "status"))
        if vendor_id is not None:
            query = query.filter(Payout.vendorID == vendor_id)
        return paginate(query.order_by(Payout.created_at.desc(), Payout.payoutID.desc()), page, limit)

    def update_status(self, payout_id: int, status: str) -> Payout:
        payout = self.db.get(Payout, payout_id)
        if payout is None:
            raise NotFound("Payout not found")
        try:
            payout.transition_to(parse_enum(PayoutStatus, status, "status"))
        except ValueError as exc:
            raise BadRequest(str(exc))
        self.db.commit()
        self.logger.info("Payout %s -> %s", payout_id, PayoutStatus(payout.status).value)
        return payout

    def _period_start(self, vendor: Vendor):
        last = (
            self.db.query(Payout)
            .filter(Payout.vendorID == vendor.vendorID, Payout.status != PayoutStatus.FAILED)
            .order_by(Payout.period_end.desc())
            .first()
        )
        if last is not None:
            return as_utc(last.period_end)
        return as_utc(vendor.created_at)
