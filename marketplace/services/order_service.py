from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload
from werkzeug.exceptions import BadRequest, NotFound

from marketplace.config import Config
from marketplace.models import (
    FulfillmentStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    User,
    Vendor,
)
from marketplace.observability import increment_counter, record_event
from marketplace.services.inventory_service import InventoryService
from marketplace.services.notification_service import publish_order_status_change
from marketplace.services.pagination import PageResult, paginate
from marketplace.utils import parse_enum

CANCELLABLE_STATUSES = {OrderStatus.PENDING, OrderStatus.CONFIRMED}
FULFILLABLE_STATUSES = {OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED}
VENDOR_FULFILLMENT_TARGETS = {FulfillmentStatus.PACKED, FulfillmentStatus.SHIPPED, FulfillmentStatus.DELIVERED}

# Order statuses reachable through fulfillment, in lifecycle order.
_FULFILLMENT_ORDER_PROGRESS = (
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)


def derive_order_status(items: List[OrderItem]) -> Optional[OrderStatus]:
    """
    Aggregate per-item fulfillment into an order status.

    Every item delivered -> DELIVERED; every item at least shipped -> SHIPPED;
    any item past pending -> PROCESSING; otherwise None (no change implied).
    """
    statuses = [FulfillmentStatus(item.fulfillment_status) for item in items]
    if not statuses:
        return None
    if all(status == FulfillmentStatus.DELIVERED for status in statuses):
        return OrderStatus.DELIVERED
    if all(status in {FulfillmentStatus.SHIPPED, FulfillmentStatus.DELIVERED} for status in statuses):
        return OrderStatus.SHIPPED
    if any(status != FulfillmentStatus.PENDING for status in statuses):
        return OrderStatus.PROCESSING
    return None


class OrderService:
    """Customer, vendor and admin views over orders and their lifecycle."""

    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        inventory_service: Optional[InventoryService] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.inventory_service = inventory_service or InventoryService(db_session)
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Customer flows
    # ------------------------------------------------------------------
    def list_for_user(self, user: User, page: int, limit: int, status: Optional[str] = None) -> PageResult:
        query = self._with_items(self.db.query(Order)).filter(Order.userID == user.userID)
        if status:
            query = query.filter(Order.status == parse_enum(OrderStatus, status, "status"))
        return paginate(query.order_by(Order.created_at.desc(), Order.orderID.desc()), page, limit)

    def get_for_user(self, user: User, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if order is None or order.userID != user.userID:
            raise NotFound("Order not found")
        return order

    def cancel(self, user: User, order_id: int, reason: Optional[str] = None) -> Order:
        order = self.get_for_user(user, order_id)
        if OrderStatus(order.status) not in CANCELLABLE_STATUSES:
            raise BadRequest("Order cannot be cancelled at this stage")

        old_status = OrderStatus(order.status)
        order.transition_to(OrderStatus.CANCELLED)
        order.notes = reason
        self.inventory_service.restore(order.items)
        self.db.commit()

        increment_counter("orders_cancelled_total")
        record_event("order_cancelled", {"order_id": order.orderID, "user_id": user.userID})
        publish_order_status_change(order.orderID, order.userID, old_status.value, OrderStatus.CANCELLED.value)
        self.logger.info("Order %s cancelled", order.orderID, extra={"reason": reason})
        return order

    def request_return(self, user: User, order_id: int, reason: Optional[str]) -> Order:
        order = self.get_for_user(user, order_id)
        if OrderStatus(order.status) != OrderStatus.DELIVERED:
            raise BadRequest("Only delivered orders can be returned")
        if all(FulfillmentStatus(item.fulfillment_status) == FulfillmentStatus.RETURNED for item in order.items):
            raise BadRequest("Return already requested for this order")
        if not order.is_within_return_window(self.config.RETURN_WINDOW_DAYS):
            raise BadRequest("Return window has expired for this order")

        for item in order.items:
            item.fulfillment_status = FulfillmentStatus.RETURNED
        order.notes = f"Return requested: {reason or 'no reason given'}"
        self.db.commit()

        increment_counter("orders_returned_total")
        record_event("order_return_requested", {"order_id": order.orderID, "user_id": user.userID})
        self.logger.info("Return requested for order %s", order.orderID)
        return order

    # ------------------------------------------------------------------
    # Vendor flows
    # ------------------------------------------------------------------
    def list_for_vendor(self, vendor: Vendor, page: int, limit: int, status: Optional[str] = None) -> PageResult:
        vendor_orders = select(OrderItem.orderID).where(OrderItem.vendorID == vendor.vendorID)
        query = self._with_items(self.db.query(Order)).filter(Order.orderID.in_(vendor_orders))
        if status:
            query = query.filter(Order.status == parse_enum(OrderStatus, status, "status"))
        return paginate(query.order_by(Order.created_at.desc(), Order.orderID.desc()), page, limit)

    def get_for_vendor(self, vendor: Vendor, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if order is None or not any(item.vendorID == vendor.vendorID for item in order.items):
            raise NotFound("Order not found")
        return order

    def update_item_fulfillment(
        self,
        vendor: Vendor,
        order_id: int,
        item_id: int,
        status: str,
        tracking_number: Optional[str] = None,
    ) -> Tuple[Order, OrderItem]:
        order = self.get_for_vendor(vendor, order_id)
        item = next(
            (i for i in order.items if i.orderItemID == item_id and i.vendorID == vendor.vendorID),
            None,
        )
        if item is None:
            raise NotFound("Order item not found")
        if OrderStatus(order.status) not in FULFILLABLE_STATUSES:
            raise BadRequest(f"Items cannot be fulfilled while the order is {OrderStatus(order.status).value}")

        new_status = parse_enum(FulfillmentStatus, status, "status")
        if new_status not in VENDOR_FULFILLMENT_TARGETS:
            raise BadRequest("status must be one of: packed, shipped, delivered")
        try:
            item.advance_fulfillment(new_status)
        except ValueError as exc:
            raise BadRequest(str(exc))
        if tracking_number is not None:
            item.tracking_number = tracking_number

        old_status = OrderStatus(order.status)
        new_order_status = self._aggregate_status(order)
        self.db.commit()

        increment_counter("fulfillment_updates_total", labels={"status": new_status.value})
        self.logger.info(
            "Order item %s fulfillment -> %s",
            item.orderItemID,
            new_status.value,
            extra={"order_id": order.orderID, "vendor_id": vendor.vendorID},
        )
        if new_order_status is not None:
            publish_order_status_change(order.orderID, order.userID, old_status.value, new_order_status.value)
        return order, item

    def _aggregate_status(self, order: Order) -> Optional[OrderStatus]:
        """Move the order forward to the derived status; returns it when the order changed."""
        derived = derive_order_status(order.items)
        current = OrderStatus(order.status)
        if derived is None or current not in _FULFILLMENT_ORDER_PROGRESS:
            return None
        if _FULFILLMENT_ORDER_PROGRESS.index(derived) <= _FULFILLMENT_ORDER_PROGRESS.index(current):
            return None
        order.transition_to(derived)
        return derived

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------
    def list_admin(
        self,
        page: int,
        limit: int,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> PageResult:
        query = self._with_items(self.db.query(Order))
        if status:
            query = query.filter(Order.status == parse_enum(OrderStatus, status, "status"))
        if payment_status:
            query = query.filter(
                Order.payment_status == parse_enum(PaymentStatus, payment_status, "payment_status")
            )
        if user_id is not None:
            query = query.filter(Order.userID == user_id)
        return paginate(query.order_by(Order.created_at.desc(), Order.orderID.desc()), page, limit)

    def get_any(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        return order

    def admin_update(self, order_id: int, data: Dict[str, Any]) -> Order:
        order = self.get_any(order_id)
        old_status = OrderStatus(order.status)
        new_status: Optional[OrderStatus] = None
        if data.get("status"):
            new_status = parse_enum(OrderStatus, data["status"], "status")
            if new_status != old_status:
                try:
                    order.transition_to(new_status)
                except ValueError as exc:
                    raise BadRequest(str(exc))
                if new_status == OrderStatus.CANCELLED:
                    self.inventory_service.restore(order.items)
            else:
                new_status = None
        if "notes" in data:
            order.notes = data["notes"]
        self.db.commit()

        if new_status is not None:
            publish_order_status_change(order.orderID, order.userID, old_status.value, new_status.value)
            self.logger.info("Order %s status set by admin to %s", order.orderID, new_status.value)
        return order

    @staticmethod
    def _with_items(query):
        return query.options(selectinload(Order.items))
