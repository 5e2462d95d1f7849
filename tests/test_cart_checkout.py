"""
Cart and checkout tests.

Prices below are chosen so the arithmetic is easy to follow: every vendor
adds a flat 5.00 shipping fee and tax is 8% of the merchandise subtotal.
"""
from marketplace.models import Cart, Order, OrderStatus, Payment, Product, ProductStatus, ProductVariant
from marketplace.services.cart_service import CartService
from marketplace.services.checkout_service import CheckoutService

from conftest import SHIPPING_ADDRESS


def _add(client, headers, product, quantity=1, variant=None):
    payload = {"product_id": product.productID, "quantity": quantity}
    if variant is not None:
        payload["variant_id"] = variant.variantID
    return client.post("/api/cart/items", json=payload, headers=headers)


def test_empty_cart_is_created_on_first_read(client, factory):
    user = factory.user()

    response = client.get("/api/cart", headers=factory.headers(user))

    assert response.status_code == 200
    body = response.get_json()
    assert body["items"] == []
    assert body["total"] == 0.0
    assert body["item_count"] == 0


def test_adding_same_product_merges_lines(client, factory):
    user = factory.user()
    headers = factory.headers(user)
    product = factory.product(price="20.00")

    assert _add(client, headers, product, quantity=2).status_code == 201
    response = _add(client, headers, product, quantity=1)

    body = response.get_json()
    assert len(body["items"]) == 1
    assert body["items"][0]["quantity"] == 3
    assert body["items"][0]["subtotal"] == 60.0
    assert body["total"] == 60.0


def test_variant_price_overrides_base_price(client, factory):
    user = factory.user()
    headers = factory.headers(user)
    product = factory.product(
        price="20.00",
        variants=[{"name": "Deluxe", "price": "35.00", "stock": 5}, {"name": "Plain", "stock": 5}],
    )
    deluxe, plain = product.variants

    _add(client, headers, product, variant=deluxe)
    body = _add(client, headers, product, variant=plain).get_json()

    prices = {item["variant_name"]: item["unit_price"] for item in body["items"]}
    assert prices == {"Deluxe": 35.0, "Plain": 20.0}
    assert body["total"] == 55.0


def test_cart_rejects_unavailable_products_and_foreign_variants(client, factory):
    user = factory.user()
    headers = factory.headers(user)
    draft = factory.product(status=ProductStatus.DRAFT)
    product = factory.product()
    other = factory.product(variants=[{"name": "Other", "stock": 1}])

    assert _add(client, headers, draft).status_code == 404
    assert _add(client, headers, product, variant=other.variants[0]).status_code == 404
    assert _add(client, headers, product, quantity=0).status_code == 400
    missing = client.post("/api/cart/items", json={}, headers=headers)
    assert missing.get_json()["error"] == "Missing required fields: product_id"


def test_update_remove_and_clear_items(client, factory):
    user = factory.user()
    headers = factory.headers(user)
    first = factory.product(price="10.00")
    second = factory.product(price="4.00")
    _add(client, headers, first)
    body = _add(client, headers, second).get_json()
    first_id, second_id = (item["id"] for item in body["items"])

    updated = client.patch(f"/api/cart/items/{first_id}", json={"quantity": 3}, headers=headers)
    assert updated.get_json()["total"] == 34.0

    removed = client.delete(f"/api/cart/items/{second_id}", headers=headers)
    assert removed.get_json()["total"] == 30.0
    assert client.delete(f"/api/cart/items/{second_id}", headers=headers).status_code == 404

    cleared = client.delete("/api/cart", headers=headers)
    assert cleared.get_json()["items"] == []
    assert cleared.get_json()["total"] == 0.0


def test_cart_groups_lines_by_vendor(client, factory):
    user = factory.user()
    headers = factory.headers(user)
    vendor_a = factory.vendor()
    vendor_b = factory.vendor()
    _add(client, headers, factory.product(vendor=vendor_a, price="10.00"))
    _add(client, headers, factory.product(vendor=vendor_a, price="5.00"))
    body = _add(client, headers, factory.product(vendor=vendor_b, price="7.00")).get_json()

    groups = {group["vendor"]["id"]: group for group in body["vendor_groups"]}
    assert set(groups) == {vendor_a.vendorID, vendor_b.vendorID}
    assert groups[vendor_a.vendorID]["subtotal"] == 15.0
    assert len(groups[vendor_b.vendorID]["items"]) == 1


def test_summary_charges_shipping_per_vendor_and_tax(client, factory):
    user = factory.user()
    headers = factory.headers(user)
    _add(client, headers, factory.product(price="50.00"), quantity=2)
    _add(client, headers, factory.product(price="25.00"))

    response = client.post("/api/checkout/summary", json={}, headers=headers)

    assert response.status_code == 200
    body = response.get_json()
    assert body["subtotal"] == 125.0
    assert body["shipping"] == 10.0
    assert body["tax"] == 10.0
    assert body["discount"] == 0.0
    assert body["total"] == 145.0
    assert body["item_count"] == 3
    assert all(group["shipping"] == 5.0 for group in body["vendor_groups"])


def test_coupons_apply_and_are_capped(client, factory):
    user = factory.user()
    headers = factory.headers(user)
    _add(client, headers, factory.product(price="40.00"))

    percent = client.post("/api/checkout/apply-coupon", json={"coupon_code": "save10"}, headers=headers).get_json()
    assert percent["coupon_code"] == "SAVE10"
    assert percent["discount"] == 4.0
    assert percent["total"] == 44.2

    removed = client.post("/api/checkout/remove-coupon", headers=headers).get_json()
    assert removed["coupon_code"] is None
    assert removed["discount"] == 0.0

    invalid = client.post("/api/checkout/apply-coupon", json={"coupon_code": "FREESTUFF"}, headers=headers)
    assert invalid.status_code == 400
    assert invalid.get_json()["error"] == "Invalid coupon code"


def test_fixed_coupon_never_exceeds_subtotal(factory, db_session):
    user = factory.user()
    product = factory.product(price="3.00")

    CartService(db_session).add_item(user, product.productID, None, 1)
    summary = CheckoutService(db_session).summary(user, "FLAT5")

    assert summary.discount == summary.subtotal
    assert str(summary.total) == "5.24"


def test_checkout_of_empty_cart_fails(client, factory):
    user = factory.user()
    headers = factory.headers(user)

    summary = client.post("/api/checkout/summary", json={}, headers=headers)
    session = client.post("/api/checkout/create-session", json={"shipping_address": SHIPPING_ADDRESS}, headers=headers)

    assert summary.status_code == 400
    assert summary.get_json()["error"] == "Cart is empty"
    assert session.status_code == 400


def test_create_session_requires_complete_address(client, factory):
    user = factory.user()
    headers = factory.headers(user)
    _add(client, headers, factory.product())

    missing = client.post("/api/checkout/create-session", json={}, headers=headers)
    partial = client.post(
        "/api/checkout/create-session",
        json={"shipping_address": {"street": "1 Main"}},
        headers=headers,
    )

    assert missing.status_code == 400
    assert partial.status_code == 400
    assert partial.get_json()["error"] == "shipping_address is missing: city, postal_code, country"


def test_create_session_places_order_and_reserves_stock(client, factory, db_session):
    user = factory.user()
    headers = factory.headers(user)
    product = factory.product(price="20.00", stock=10)
    _add(client, headers, product, quantity=2)

    response = client.post(
        "/api/checkout/create-session",
        json={"shipping_address": SHIPPING_ADDRESS, "coupon_code": "SAVE10"},
        headers=headers,
    )

    assert response.status_code == 201
    body = response.get_json()
    assert body["status"] == "pending"
    assert body["session_id"] == f"session_{body['order_id']}"
    assert body["total"] == 44.2

    db_session.expire_all()
    order = db_session.get(Order, body["order_id"])
    assert order.status == OrderStatus.PENDING
    assert order.coupon_code == "SAVE10"
    assert order.billing_address == SHIPPING_ADDRESS
    assert [item.product_title for item in order.items] == [product.title]
    assert db_session.get(Product, product.productID).stock == 8
    assert db_session.query(Payment).filter_by(provider_session_id=body["session_id"]).count() == 1
    assert db_session.query(Cart).filter_by(userID=user.userID).one().items == []


def test_insufficient_stock_leaves_everything_untouched(client, factory, db_session):
    user = factory.user()
    headers = factory.headers(user)
    plentiful = factory.product(stock=10)
    scarce = factory.product(stock=1)
    _add(client, headers, plentiful, quantity=2)
    _add(client, headers, scarce, quantity=3)

    response = client.post("/api/checkout/create-session", json={"shipping_address": SHIPPING_ADDRESS}, headers=headers)

    assert response.status_code == 400
    assert response.get_json()["error"] == f"Insufficient stock for {scarce.title}"
    db_session.expire_all()
    assert db_session.get(Product, plentiful.productID).stock == 10
    assert db_session.query(Order).count() == 0
    assert len(db_session.query(Cart).filter_by(userID=user.userID).one().items) == 2


def test_variant_stock_is_reserved_on_the_variant(factory, db_session, place_order):
    user = factory.user()
    product = factory.product(stock=10, variants=[{"name": "Blue", "stock": 3}])
    variant = product.variants[0]

    place_order(user, [(product, 2, variant)])

    db_session.expire_all()
    assert db_session.get(ProductVariant, variant.variantID).stock == 1
    assert db_session.get(Product, product.productID).stock == 10


def test_product_deactivated_after_carting_blocks_checkout(client, factory, db_session):
    user = factory.user()
    headers = factory.headers(user)
    product = factory.product(title="Vanishing Vase")
    _add(client, headers, product)
    product.status = ProductStatus.ARCHIVED
    db_session.commit()

    response = client.post("/api/checkout/create-session", json={"shipping_address": SHIPPING_ADDRESS}, headers=headers)

    assert response.status_code == 400
    assert response.get_json()["error"] == "Vanishing Vase is no longer available"
