from __future__ import annotations

import logging
import random
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session
from werkzeug.exceptions import BadRequest, NotFound

from marketplace.config import Config
from marketplace.models import (
    Order,
    OrderStatus,
    Payment,
    PaymentRecordStatus,
    PaymentStatus,
    Refund,
    RefundStatus,
    User,
)
from marketplace.observability import increment_counter, record_event
from marketplace.services.notification_service import publish_order_status_change
from marketplace.utils import money, parse_money

WEBHOOK_SUCCESS = "payment.success"
WEBHOOK_FAILED = "payment.failed"
REFUNDABLE_PAYMENT_STATUSES = {PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED}


class PaymentGateway:
    """
    Stand-in for the outbound payment provider.
    Refunds succeed unless the configured failure probability says otherwise.
    """

    def __init__(self, config: type[Config] = Config) -> None:
        self.config = config
        self.logger = logging.getLogger(__name__)

    def refund(self, payment: Payment, amount: Decimal) -> Tuple[bool, str, Optional[str]]:
        """Returns (success flag, message, external reference or None)."""
        if random.random() < self.config.PAYMENT_REFUND_FAILURE_PROBABILITY:
            self.logger.warning(
                "Refund rejected by payment provider",
                extra={"payment_id": payment.paymentID, "amount": str(amount)},
            )
            return False, "Payment processor timeout", None

        reference = f"RF-{payment.paymentID}-{uuid.uuid4().hex[:8].upper()}"
        self.logger.info(
            "Refund processed",
            extra={"payment_id": payment.paymentID, "amount": str(amount), "reference": reference},
        )
        return True, "Refund processed successfully", reference


class PaymentService:
    """Payment webhook reconciliation and refunds."""

    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        gateway: Optional[PaymentGateway] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.gateway = gateway or PaymentGateway(config)
        self.logger = logging.getLogger(__name__)

    def handle_webhook(self, payload: Dict[str, Any]) -> Dict[str, bool]:
        event_type = payload.get("type")
        data = payload.get("data") or {}
        session_id = data.get("session_id") if isinstance(data, dict) else None
        if not event_type or not session_id:
            raise BadRequest("type and data.session_id are required")

        increment_counter("payment_webhooks_total", labels={"type": str(event_type)})
        if event_type not in (WEBHOOK_SUCCESS, WEBHOOK_FAILED):
            self.logger.info("Ignoring webhook event %s", event_type)
            return {"received": True}

        payment = self.db.query(Payment).filter_by(provider_session_id=session_id).first()
        if payment is None:
            self.logger.warning("Webhook for unknown session %s", session_id)
            return {"received": True}
        if PaymentRecordStatus(payment.status) != PaymentRecordStatus.PENDING:
            self.logger.info(
                "Webhook for already processed payment %s ignored",
                payment.paymentID,
                extra={"status": PaymentRecordStatus(payment.status).value, "type": event_type},
            )
            return {"received": True}

        order = payment.order
        old_order_status = OrderStatus(order.status)
        new_order_status: Optional[OrderStatus] = None
        payment.payload = data
        if event_type == WEBHOOK_SUCCESS:
            payment.status = PaymentRecordStatus.COMPLETED
            order.payment_status = PaymentStatus.PAID
            if old_order_status == OrderStatus.PENDING:
                order.transition_to(OrderStatus.CONFIRMED)
                new_order_status = OrderStatus.CONFIRMED
            else:
                self.logger.warning(
                    "Payment completed for order %s in status %s",
                    order.orderID,
                    old_order_status.value,
                )
        else:
            payment.status = PaymentRecordStatus.FAILED
            order.payment_status = PaymentStatus.FAILED
        self.db.commit()

        record_event(
            "payment_webhook_processed",
            {"order_id": order.orderID, "payment_id": payment.paymentID, "type": event_type},
        )
        if new_order_status is not None:
            publish_order_status_change(order.orderID, order.userID, old_order_status.value, new_order_status.value)
        self.logger.info(
            "Payment %s marked %s",
            payment.paymentID,
            PaymentRecordStatus(payment.status).value,
            extra={"order_id": order.orderID},
        )
        return {"received": True}

    def get_payment_for_order(self, user: User, order_id: int) -> Payment:
        order = self.db.get(Order, order_id)
        if order is None or (order.userID != user.userID and not user.is_admin):
            raise NotFound("Order not found")
        payment = self._latest_payment(order)
        if payment is None:
            raise NotFound("Payment not found")
        return payment

    def refund(self, order_id: int, amount: Any = None, reason: Optional[str] = None) -> Refund:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        if PaymentStatus(order.payment_status) not in REFUNDABLE_PAYMENT_STATUSES:
            raise BadRequest("Order has not been paid")
        payment = self._latest_payment(order, PaymentRecordStatus.COMPLETED)
        if payment is None:
            raise BadRequest("No completed payment to refund")

        remaining = money(order.total) - money(order.refunded_amount)
        refund_amount = remaining if amount is None else parse_money(amount, "amount")
        if refund_amount <= 0:
            raise BadRequest("Nothing left to refund")
        if refund_amount > remaining:
            raise BadRequest(f"Refund amount exceeds refundable balance of {remaining}")

        refund = Refund(order=order, payment=payment, amount=refund_amount, reason=reason)
        success, message, reference = self.gateway.refund(payment, refund_amount)
        if not success:
            refund.mark_failed(message)
            self.db.add(refund)
            self.db.commit()
            increment_counter("refunds_failed_total")
            raise BadRequest(f"Refund failed: {message}")

        refund.mark_completed(reference)
        self.db.add(refund)
        order.refunded_amount = money(order.refunded_amount) + refund_amount
        old_order_status = OrderStatus(order.status)
        new_order_status: Optional[OrderStatus] = None
        if money(order.refunded_amount) >= money(order.total):
            order.payment_status = PaymentStatus.REFUNDED
            payment.status = PaymentRecordStatus.REFUNDED
            if order.can_transition(OrderStatus.REFUNDED):
                order.transition_to(OrderStatus.REFUNDED)
                new_order_status = OrderStatus.REFUNDED
        else:
            order.payment_status = PaymentStatus.PARTIALLY_REFUNDED
        self.db.commit()

        increment_counter("refunds_completed_total")
        record_event(
            "refund_processed",
            {"order_id": order.orderID, "refund_id": refund.refundID, "amount": str(refund_amount)},
        )
        if new_order_status is not None:
            publish_order_status_change(order.orderID, order.userID, old_order_status.value, new_order_status.value)
        self.logger.info(
            "Refund %s of %s issued for order %s",
            refund.refundID,
            refund_amount,
            order.orderID,
        )
        return refund

    @staticmethod
    def _latest_payment(order: Order, status: Optional[PaymentRecordStatus] = None) -> Optional[Payment]:
        payments = [
            payment
            for payment in order.payments
            if status is None or PaymentRecordStatus(payment.status) == status
        ]
        if not payments:
            return None
        return max(payments, key=lambda payment: payment.paymentID)
