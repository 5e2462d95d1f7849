"""
Order lifecycle: payment webhooks, per-vendor fulfillment, aggregation of the
order status, cancellation and returns.
"""
from datetime import timedelta

import pytest
from werkzeug.exceptions import BadRequest, NotFound

from marketplace.models import (
    FulfillmentStatus,
    OrderItem,
    OrderStatus,
    PaymentRecordStatus,
    PaymentStatus,
    Product,
    utcnow,
)
from marketplace.observability import get_counter_value, get_recent_events
from marketplace.services.notification_service import NotificationService
from marketplace.services.order_service import OrderService, derive_order_status


def _webhook(client, event_type, order):
    return client.post(
        "/api/payments/webhook",
        json={"type": event_type, "data": {"session_id": f"session_{order.orderID}"}},
    )


def _fulfil(client, factory, vendor, order, item, status, **extra):
    return client.patch(
        f"/api/vendor/orders/{order.orderID}/items/{item.orderItemID}/status",
        json={"status": status, **extra},
        headers=factory.headers(vendor.owner),
    )


def test_payment_success_confirms_order(client, factory, db_session, place_order):
    customer = factory.user()
    order = place_order(customer, [(factory.product(), 1)])

    response = _webhook(client, "payment.success", order)

    assert response.status_code == 200
    assert response.get_json() == {"received": True}
    db_session.expire_all()
    assert order.status == OrderStatus.CONFIRMED
    assert order.payment_status == PaymentStatus.PAID
    assert order.payments[0].status == PaymentRecordStatus.COMPLETED
    assert get_recent_events("payment_webhook_processed")


def test_repeated_webhook_is_idempotent(client, factory, db_session, place_order):
    customer = factory.user()
    order = place_order(customer, [(factory.product(), 1)])

    _webhook(client, "payment.success", order)
    again = _webhook(client, "payment.failed", order)

    assert again.status_code == 200
    db_session.expire_all()
    assert order.payment_status == PaymentStatus.PAID
    transitions = get_counter_value(
        "order_status_transitions_total", labels={"from_status": "pending", "to_status": "confirmed"}
    )
    assert transitions == 1


def test_payment_failure_marks_order_unpaid(client, factory, db_session, place_order):
    customer = factory.user()
    order = place_order(customer, [(factory.product(), 1)])

    _webhook(client, "payment.failed", order)

    db_session.expire_all()
    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.FAILED
    assert order.payments[0].status == PaymentRecordStatus.FAILED


def test_webhook_validation_and_unknown_sessions(client):
    missing = client.post("/api/payments/webhook", json={"data": {"session_id": "session_1"}})
    unknown = client.post(
        "/api/payments/webhook",
        json={"type": "payment.success", "data": {"session_id": "session_404"}},
    )
    other_event = client.post(
        "/api/payments/webhook",
        json={"type": "charge.dispute", "data": {"session_id": "session_404"}},
    )

    assert missing.status_code == 400
    assert unknown.status_code == 200
    assert other_event.status_code == 200


def test_payment_lookup_is_limited_to_order_owner(client, factory, place_order):
    customer = factory.user()
    stranger = factory.user()
    order = place_order(customer, [(factory.product(), 1)])

    own = client.get(f"/api/payments/{order.orderID}", headers=factory.headers(customer))
    foreign = client.get(f"/api/payments/{order.orderID}", headers=factory.headers(stranger))

    assert own.status_code == 200
    assert own.get_json()["session_id"] == f"session_{order.orderID}"
    assert own.get_json()["status"] == "pending"
    assert foreign.status_code == 404


def test_customer_order_listing_and_detail(client, factory, place_order):
    customer = factory.user()
    stranger = factory.user()
    first = place_order(customer, [(factory.product(), 1)])
    second = place_order(customer, [(factory.product(), 2)])
    headers = factory.headers(customer)

    listing = client.get("/api/orders", headers=headers).get_json()

    assert listing["total"] == 2
    assert {entry["id"] for entry in listing["data"]} == {first.orderID, second.orderID}
    assert client.get(f"/api/orders/{first.orderID}", headers=headers).status_code == 200
    assert client.get(f"/api/orders/{first.orderID}", headers=factory.headers(stranger)).status_code == 404
    pending = client.get("/api/orders?status=pending", headers=headers).get_json()
    assert pending["total"] == 2


def test_multi_vendor_fulfillment_aggregates_order_status(client, factory, db_session, place_order, pay_order):
    customer = factory.user()
    vendor_a = factory.vendor()
    vendor_b = factory.vendor()
    order = pay_order(
        place_order(
            customer,
            [(factory.product(vendor=vendor_a), 1), (factory.product(vendor=vendor_b), 2)],
        )
    )
    item_a = next(item for item in order.items if item.vendorID == vendor_a.vendorID)
    item_b = next(item for item in order.items if item.vendorID == vendor_b.vendorID)

    packed = _fulfil(client, factory, vendor_a, order, item_a, "packed")
    assert packed.status_code == 200
    assert packed.get_json()["order_status"] == "processing"

    shipped_a = _fulfil(client, factory, vendor_a, order, item_a, "shipped", tracking_number="TRACK-A")
    assert shipped_a.get_json()["order_status"] == "processing"
    assert shipped_a.get_json()["item"]["tracking_number"] == "TRACK-A"

    shipped_b = _fulfil(client, factory, vendor_b, order, item_b, "shipped")
    assert shipped_b.get_json()["order_status"] == "shipped"

    delivered_a = _fulfil(client, factory, vendor_a, order, item_a, "delivered")
    assert delivered_a.get_json()["order_status"] == "shipped"

    delivered_b = _fulfil(client, factory, vendor_b, order, item_b, "delivered")
    assert delivered_b.get_json()["order_status"] == "delivered"

    db_session.expire_all()
    assert order.status == OrderStatus.DELIVERED
    assert order.delivered_at is not None

    statuses = [n["title"] for n in NotificationService().get_notifications(customer.userID, limit=50)]
    assert f"Order #{order.orderID} Delivered" in statuses
    assert f"Order #{order.orderID} Shipped" in statuses


def test_vendor_sees_only_its_own_items(client, factory, place_order):
    customer = factory.user()
    vendor_a = factory.vendor()
    vendor_b = factory.vendor()
    outsider = factory.vendor()
    order = place_order(
        customer,
        [(factory.product(vendor=vendor_a), 1), (factory.product(vendor=vendor_b), 1)],
    )

    listing = client.get("/api/vendor/orders", headers=factory.headers(vendor_a.owner)).get_json()
    detail = client.get(f"/api/vendor/orders/{order.orderID}", headers=factory.headers(vendor_b.owner))
    hidden = client.get(f"/api/vendor/orders/{order.orderID}", headers=factory.headers(outsider.owner))

    assert listing["total"] == 1
    assert [item["vendor_id"] for item in listing["data"][0]["items"]] == [vendor_a.vendorID]
    assert [item["vendor_id"] for item in detail.get_json()["items"]] == [vendor_b.vendorID]
    assert hidden.status_code == 404


def test_vendor_cannot_update_another_vendors_item(client, factory, place_order, pay_order):
    customer = factory.user()
    vendor_a = factory.vendor()
    vendor_b = factory.vendor()
    order = pay_order(
        place_order(
            customer,
            [(factory.product(vendor=vendor_a), 1), (factory.product(vendor=vendor_b), 1)],
        )
    )
    item_b = next(item for item in order.items if item.vendorID == vendor_b.vendorID)

    response = _fulfil(client, factory, vendor_a, order, item_b, "packed")

    assert response.status_code == 404
    assert response.get_json()["error"] == "Order item not found"


def test_fulfillment_requires_paid_order_and_forward_moves(client, factory, place_order, pay_order):
    customer = factory.user()
    vendor = factory.vendor()
    order = place_order(customer, [(factory.product(vendor=vendor), 1)])
    item = order.items[0]

    unpaid = _fulfil(client, factory, vendor, order, item, "packed")
    assert unpaid.status_code == 400
    assert unpaid.get_json()["error"] == "Items cannot be fulfilled while the order is pending"

    pay_order(order)
    assert _fulfil(client, factory, vendor, order, item, "shipped").status_code == 200

    backwards = _fulfil(client, factory, vendor, order, item, "packed")
    assert backwards.status_code == 400
    assert backwards.get_json()["error"] == "Cannot move fulfillment from shipped to packed"

    returned = _fulfil(client, factory, vendor, order, item, "returned")
    assert returned.status_code == 400
    assert _fulfil(client, factory, vendor, order, item, "teleported").status_code == 400


def test_cancel_restores_stock(client, factory, db_session, place_order):
    customer = factory.user()
    product = factory.product(stock=5)
    order = place_order(customer, [(product, 3)])
    db_session.expire_all()
    assert db_session.get(Product, product.productID).stock == 2

    response = client.post(
        f"/api/orders/{order.orderID}/cancel",
        json={"reason": "Changed my mind"},
        headers=factory.headers(customer),
    )

    assert response.status_code == 200
    assert response.get_json()["status"] == "cancelled"
    db_session.expire_all()
    assert db_session.get(Product, product.productID).stock == 5
    assert get_counter_value("orders_cancelled_total") == 1


def test_shipped_order_cannot_be_cancelled(client, factory, place_order, pay_order):
    customer = factory.user()
    vendor = factory.vendor()
    order = pay_order(place_order(customer, [(factory.product(vendor=vendor), 1)]))
    _fulfil(client, factory, vendor, order, order.items[0], "shipped")

    response = client.post(f"/api/orders/{order.orderID}/cancel", json={}, headers=factory.headers(customer))

    assert response.status_code == 400
    assert response.get_json()["error"] == "Order cannot be cancelled at this stage"


def test_return_within_window(client, factory, db_session, place_order, pay_order, deliver_order):
    customer = factory.user()
    order = deliver_order(pay_order(place_order(customer, [(factory.product(), 1)])))
    headers = factory.headers(customer)

    missing_reason = client.post(f"/api/orders/{order.orderID}/return", json={}, headers=headers)
    assert missing_reason.status_code == 400

    response = client.post(f"/api/orders/{order.orderID}/return", json={"reason": "Too small"}, headers=headers)
    assert response.status_code == 200
    assert {item["fulfillment_status"] for item in response.get_json()["items"]} == {"returned"}

    again = client.post(f"/api/orders/{order.orderID}/return", json={"reason": "Again"}, headers=headers)
    assert again.status_code == 400


def test_return_outside_window_is_rejected(client, factory, db_session, place_order, pay_order, deliver_order):
    customer = factory.user()
    order = deliver_order(pay_order(place_order(customer, [(factory.product(), 1)])))
    order.delivered_at = utcnow() - timedelta(days=45)
    db_session.commit()

    response = client.post(
        f"/api/orders/{order.orderID}/return",
        json={"reason": "Late"},
        headers=factory.headers(customer),
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "Return window has expired for this order"


def test_return_requires_delivered_order(client, factory, place_order, pay_order):
    customer = factory.user()
    order = pay_order(place_order(customer, [(factory.product(), 1)]))

    response = client.post(
        f"/api/orders/{order.orderID}/return",
        json={"reason": "Not here yet"},
        headers=factory.headers(customer),
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "Only delivered orders can be returned"


def test_order_notifications_follow_lifecycle(client, factory, place_order, pay_order):
    customer = factory.user()
    order = pay_order(place_order(customer, [(factory.product(), 1)]))

    response = client.get("/api/notifications", headers=factory.headers(customer))

    body = response.get_json()
    assert body["unread_count"] == 2
    assert [n["title"] for n in body["notifications"]] == [
        f"Order #{order.orderID} Confirmed",
        f"Order #{order.orderID} Pending",
    ]


def test_admin_can_override_order_status(client, factory, db_session, place_order, pay_order):
    admin = factory.admin()
    customer = factory.user()
    product = factory.product(stock=4)
    order = pay_order(place_order(customer, [(product, 2)]))
    headers = factory.headers(admin)

    invalid = client.patch(f"/api/admin/orders/{order.orderID}", json={"status": "pending"}, headers=headers)
    assert invalid.status_code == 400

    cancelled = client.patch(
        f"/api/admin/orders/{order.orderID}",
        json={"status": "cancelled", "notes": "Fraud check"},
        headers=headers,
    )
    assert cancelled.status_code == 200
    assert cancelled.get_json()["notes"] == "Fraud check"
    db_session.expire_all()
    assert db_session.get(Product, product.productID).stock == 4

    listing = client.get("/api/admin/orders?status=cancelled", headers=headers).get_json()
    assert [entry["id"] for entry in listing["data"]] == [order.orderID]


def test_derive_order_status_rules():
    def items(*statuses):
        return [OrderItem(fulfillment_status=status) for status in statuses]

    assert derive_order_status([]) is None
    assert derive_order_status(items(FulfillmentStatus.PENDING, FulfillmentStatus.PENDING)) is None
    assert derive_order_status(items(FulfillmentStatus.PACKED, FulfillmentStatus.PENDING)) == OrderStatus.PROCESSING
    assert derive_order_status(items(FulfillmentStatus.SHIPPED, FulfillmentStatus.DELIVERED)) == OrderStatus.SHIPPED
    assert derive_order_status(items(FulfillmentStatus.DELIVERED)) == OrderStatus.DELIVERED


def test_order_service_cancel_rules(factory, db_session, place_order):
    owner = factory.user()
    stranger = factory.user()
    order = place_order(owner, [(factory.product(), 1)])
    service = OrderService(db_session)

    with pytest.raises(NotFound):
        service.cancel(stranger, order.orderID)

    service.cancel(owner, order.orderID, reason="Duplicate")
    assert order.status == OrderStatus.CANCELLED
    assert order.notes == "Duplicate"

    with pytest.raises(BadRequest):
        service.cancel(owner, order.orderID)
