from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session
from werkzeug.exceptions import BadRequest

from marketplace.config import Config
from marketplace.models import (
    Cart,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentRecordStatus,
    PaymentStatus,
    User,
)
from marketplace.observability import increment_counter, record_event
from marketplace.services.cart_service import CartService
from marketplace.services.inventory_service import InventoryService
from marketplace.services.notification_service import publish_order_status_change
from marketplace.utils import money

# Coupons are hard-coded; there is no coupon table.
COUPONS: Dict[str, Dict[str, Any]] = {
    "SAVE10": {"type": "percentage", "value": Decimal("10")},
    "SAVE20": {"type": "percentage", "value": Decimal("20")},
    "FLAT5": {"type": "fixed", "value": Decimal("5.00")},
}

REQUIRED_ADDRESS_FIELDS = ("street", "city", "postal_code", "country")


@dataclass
class CheckoutSummary:
    cart: Cart
    vendor_groups: List[Dict[str, Any]]
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    discount: Decimal = Decimal("0.00")
    coupon_code: Optional[str] = None
    currency: str = "USD"
    items: List[Any] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return money(self.subtotal + self.shipping + self.tax - self.discount)


class CheckoutService:
    """Turns a cart into a priced summary and, on demand, into an order."""

    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        cart_service: Optional[CartService] = None,
        inventory_service: Optional[InventoryService] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.cart_service = cart_service or CartService(db_session, config=config)
        self.inventory_service = inventory_service or InventoryService(db_session)
        self.logger = logging.getLogger(__name__)

    def summary(self, user: User, coupon_code: Optional[str] = None) -> CheckoutSummary:
        cart = self.cart_service.get_or_create(user)
        if not cart.items:
            raise BadRequest("Cart is empty")

        groups = []
        for group in CartService.group_by_vendor(cart.items).values():
            group["shipping"] = money(self.config.VENDOR_SHIPPING_FLAT_RATE)
            groups.append(group)

        subtotal = money(sum((group["subtotal"] for group in groups), Decimal("0")))
        shipping = money(sum((group["shipping"] for group in groups), Decimal("0")))
        tax = money(subtotal * self.config.TAX_RATE)

        summary = CheckoutSummary(
            cart=cart,
            vendor_groups=groups,
            subtotal=subtotal,
            shipping=shipping,
            tax=tax,
            currency=cart.currency,
            items=list(cart.items),
        )
        if coupon_code:
            summary.coupon_code, summary.discount = self._apply_coupon(coupon_code, subtotal)
        return summary

    def create_session(
        self,
        user: User,
        shipping_address: Any,
        billing_address: Any = None,
        coupon_code: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        shipping_address = self._validate_address(shipping_address, "shipping_address")
        billing_address = (
            self._validate_address(billing_address, "billing_address") if billing_address else shipping_address
        )
        summary = self.summary(user, coupon_code)
        cart = summary.cart
        for item in cart.items:
            if not item.product.is_active or not item.product.vendor.is_approved:
                raise BadRequest(f"{item.product.title} is no longer available")

        # Validates every line first; raises before anything is written.
        self.inventory_service.reserve(cart.items)

        order = Order(
            userID=user.userID,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            subtotal=summary.subtotal,
            discount_amount=summary.discount,
            shipping_cost=summary.shipping,
            tax_amount=summary.tax,
            total=summary.total,
            refunded_amount=Decimal("0.00"),
            currency=summary.currency,
            shipping_address=shipping_address,
            billing_address=billing_address,
            coupon_code=summary.coupon_code,
            notes=notes,
        )
        for item in cart.items:
            order.items.append(
                OrderItem(
                    productID=item.productID,
                    variantID=item.variantID,
                    vendorID=item.vendorID,
                    product_title=item.product.title,
                    variant_name=item.variant.name if item.variant else None,
                    quantity=item.quantity,
                    unit_price=money(item.unit_price),
                    subtotal=money(item.subtotal),
                )
            )
        self.db.add(order)
        self.db.flush()

        session_id = f"session_{order.orderID}"
        order.payments.append(
            Payment(
                provider=self.config.PAYMENT_PROVIDER,
                provider_session_id=session_id,
                amount=order.total,
                currency=order.currency,
                status=PaymentRecordStatus.PENDING,
            )
        )
        self.cart_service.empty(cart)
        self.db.commit()

        increment_counter("orders_created_total")
        record_event(
            "order_created",
            {"order_id": order.orderID, "user_id": user.userID, "total": str(order.total)},
        )
        publish_order_status_change(order.orderID, user.userID, "", OrderStatus.PENDING.value)
        self.logger.info(
            "Order %s created from cart %s",
            order.orderID,
            cart.cartID,
            extra={"total": str(order.total), "items": len(order.items)},
        )
        return {
            "order_id": order.orderID,
            "session_id": session_id,
            "total": order.total,
            "currency": order.currency,
            "status": OrderStatus(order.status).value,
        }

    @staticmethod
    def _apply_coupon(code: str, subtotal: Decimal):
        normalized = str(code).strip().upper()
        coupon = COUPONS.get(normalized)
        if coupon is None:
            raise BadRequest("Invalid coupon code")
        if coupon["type"] == "percentage":
            discount = money(subtotal * coupon["value"] / Decimal("100"))
        else:
            discount = money(coupon["value"])
        return normalized, min(discount, subtotal)

    @staticmethod
    def _validate_address(address: Any, field_name: str) -> Dict[str, Any]:
        if not isinstance(address, dict):
            raise BadRequest(f"{field_name} must be an object")
        missing = [key for key in REQUIRED_ADDRESS_FIELDS if not str(address.get(key) or "").strip()]
        if missing:
            raise BadRequest(f"{field_name} is missing: {', '.join(missing)}")
        return address
