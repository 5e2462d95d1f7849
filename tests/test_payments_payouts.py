from decimal import Decimal

import pytest
from werkzeug.exceptions import BadRequest

from marketplace.models import (
    OrderStatus,
    PaymentRecordStatus,
    PaymentStatus,
    Payout,
    PayoutStatus,
    Refund,
    RefundStatus,
)
from marketplace.observability import get_counter_value
from marketplace.services.payment_service import PaymentService
from marketplace.services.payout_service import PayoutService


class _StubGateway:
    def __init__(self, should_fail: bool = False, message: str = "Card network unavailable"):
        self.should_fail = should_fail
        self.message = message
        self.calls = []

    def refund(self, payment, amount):
        self.calls.append((payment.paymentID, amount))
        if self.should_fail:
            return False, self.message, None
        return True, "ok", "RF-TEST"


def _paid_order(factory, place_order, pay_order, price="20.00", quantity=1, vendor=None):
    customer = factory.user()
    product = factory.product(vendor=vendor, price=price)
    return pay_order(place_order(customer, [(product, quantity)]))


def test_partial_then_full_refund(client, factory, db_session, place_order, pay_order):
    admin = factory.admin()
    headers = factory.headers(admin)
    # 20.00 + 5.00 shipping + 1.60 tax
    order = _paid_order(factory, place_order, pay_order)
    url = f"/api/payments/{order.orderID}/refund"

    partial = client.post(url, json={"amount": "10.00", "reason": "Damaged box"}, headers=headers)
    assert partial.status_code == 201
    assert partial.get_json()["status"] == "completed"
    assert partial.get_json()["amount"] == 10.0
    db_session.expire_all()
    assert order.payment_status == PaymentStatus.PARTIALLY_REFUNDED
    assert order.refunded_amount == Decimal("10.00")

    too_much = client.post(url, json={"amount": "20.00"}, headers=headers)
    assert too_much.status_code == 400
    assert too_much.get_json()["error"] == "Refund amount exceeds refundable balance of 16.60"

    rest = client.post(url, json={}, headers=headers)
    assert rest.status_code == 201
    assert rest.get_json()["amount"] == 16.6
    db_session.expire_all()
    assert order.payment_status == PaymentStatus.REFUNDED
    assert order.status == OrderStatus.REFUNDED
    assert order.payments[0].status == PaymentRecordStatus.REFUNDED

    nothing_left = client.post(url, json={}, headers=headers)
    assert nothing_left.status_code == 400


def test_refund_requires_admin_and_paid_order(client, factory, place_order):
    admin = factory.admin()
    customer = factory.user()
    order = place_order(customer, [(factory.product(), 1)])

    forbidden = client.post(f"/api/payments/{order.orderID}/refund", json={}, headers=factory.headers(customer))
    unpaid = client.post(f"/api/admin/orders/{order.orderID}/refund", json={}, headers=factory.headers(admin))
    missing = client.post("/api/admin/orders/9999/refund", json={}, headers=factory.headers(admin))

    assert forbidden.status_code == 403
    assert unpaid.status_code == 400
    assert unpaid.get_json()["error"] == "Order has not been paid"
    assert missing.status_code == 404


def test_failed_refund_is_recorded(factory, db_session, place_order, pay_order):
    order = _paid_order(factory, place_order, pay_order)
    gateway = _StubGateway(should_fail=True)
    service = PaymentService(db_session, gateway=gateway)

    with pytest.raises(BadRequest) as excinfo:
        service.refund(order.orderID, "5.00", "Customer request")

    assert "Card network unavailable" in excinfo.value.description
    refund = db_session.query(Refund).one()
    assert refund.status == RefundStatus.FAILED
    assert refund.failure_reason == "Card network unavailable"
    assert order.refunded_amount == Decimal("0.00")
    assert order.payment_status == PaymentStatus.PAID
    assert get_counter_value("refunds_failed_total") == 1


def test_successful_refund_keeps_gateway_reference(factory, db_session, place_order, pay_order):
    order = _paid_order(factory, place_order, pay_order)
    gateway = _StubGateway()

    refund = PaymentService(db_session, gateway=gateway).refund(order.orderID, "3.00")

    assert refund.status == RefundStatus.COMPLETED
    assert refund.external_reference == "RF-TEST"
    assert gateway.calls == [(order.payments[0].paymentID, Decimal("3.00"))]


def test_payout_is_net_of_commission(client, factory, place_order, pay_order, deliver_order):
    vendor = factory.vendor(commission_rate="10.00")
    other_vendor = factory.vendor()
    deliver_order(_paid_order(factory, place_order, pay_order, price="20.00", quantity=2, vendor=vendor))
    deliver_order(_paid_order(factory, place_order, pay_order, price="99.00", vendor=other_vendor))
    # Paid but not delivered yet: excluded.
    _paid_order(factory, place_order, pay_order, price="50.00", vendor=vendor)
    headers = factory.headers(vendor.owner)

    response = client.post("/api/vendor/payouts/request", headers=headers)

    assert response.status_code == 201
    body = response.get_json()
    assert body["amount"] == 36.0
    assert body["status"] == "pending"
    assert body["details"]["gross"] == "40.00"
    assert body["details"]["commission"] == "4.00"
    assert body["details"]["item_count"] == 1

    again = client.post("/api/vendor/payouts/request", headers=headers)
    assert again.status_code == 400
    assert again.get_json()["error"] == "No earnings available for payout"

    listing = client.get("/api/vendor/payouts", headers=headers).get_json()
    assert listing["total"] == 1


def test_payout_without_earnings_is_rejected(factory, db_session):
    vendor = factory.vendor()

    with pytest.raises(BadRequest):
        PayoutService(db_session).request_payout(vendor)

    assert db_session.query(Payout).count() == 0


def test_failed_payout_does_not_close_the_period(factory, db_session, place_order, pay_order, deliver_order):
    vendor = factory.vendor(commission_rate="0")
    deliver_order(_paid_order(factory, place_order, pay_order, price="10.00", vendor=vendor))
    service = PayoutService(db_session)

    first = service.request_payout(vendor)
    service.update_status(first.payoutID, "failed")
    retry = service.request_payout(vendor)

    assert retry.amount == Decimal("10.00")
    assert retry.payoutID != first.payoutID


def test_admin_moves_payout_through_its_states(client, factory, db_session, place_order, pay_order, deliver_order):
    admin = factory.admin()
    vendor = factory.vendor()
    deliver_order(_paid_order(factory, place_order, pay_order, vendor=vendor))
    payout = PayoutService(db_session).request_payout(vendor)
    headers = factory.headers(admin)
    url = f"/api/admin/payouts/{payout.payoutID}/status"

    skipped = client.patch(url, json={"status": "completed"}, headers=headers)
    assert skipped.status_code == 400

    assert client.patch(url, json={"status": "processing"}, headers=headers).get_json()["status"] == "processing"
    assert client.patch(url, json={"status": "completed"}, headers=headers).get_json()["status"] == "completed"
    assert client.patch(url, json={"status": "failed"}, headers=headers).status_code == 400

    db_session.expire_all()
    assert db_session.get(Payout, payout.payoutID).status == PayoutStatus.COMPLETED
    listing = client.get(f"/api/admin/payouts?vendor_id={vendor.vendorID}", headers=headers).get_json()
    assert [entry["id"] for entry in listing["data"]] == [payout.payoutID]


def test_customer_cannot_request_payouts(client, factory):
    customer = factory.user()

    response = client.post("/api/vendor/payouts/request", headers=factory.headers(customer))

    assert response.status_code == 403
