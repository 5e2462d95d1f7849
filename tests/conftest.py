# tests/conftest.py
"""
Pytest configuration and shared fixtures.

The application reads its configuration at import time, so the database URL
and JWT secret are pointed at test values before anything from
``marketplace`` is imported.
"""
import os
import sys
import tempfile
from decimal import Decimal
from uuid import uuid4

_TEST_DB_DIR = tempfile.mkdtemp(prefix="marketplace-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["FLASK_TESTING"] = "true"
os.environ["OBSERVABILITY_ENABLED"] = "true"
os.environ["STRUCTURED_LOGS_ENABLED"] = "false"
os.environ.pop("ADMIN_EMAIL", None)
os.environ.pop("ADMIN_PASSWORD", None)

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest
from flask_jwt_extended import create_access_token, create_refresh_token, decode_token
from werkzeug.security import generate_password_hash

from marketplace.database import Base, SessionLocal, engine
from marketplace.main import app as flask_app
from marketplace.models import (
    Category,
    Product,
    ProductStatus,
    ProductVariant,
    User,
    UserRole,
    UserStatus,
    Vendor,
    VendorStatus,
)
from marketplace.observability import reset_metrics
from marketplace.services.notification_service import NotificationService

DEFAULT_PASSWORD = "password123"
SHIPPING_ADDRESS = {
    "street": "1 Market Street",
    "city": "Springfield",
    "postal_code": "12345",
    "country": "US",
}


@pytest.fixture(autouse=True)
def clean_state():
    """Fresh schema, metrics and notifications for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    reset_metrics()
    NotificationService().clear()
    yield
    NotificationService().clear()


@pytest.fixture
def app():
    return flask_app


@pytest.fixture
def client(app):
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def app_context(app):
    with app.app_context():
        yield


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


class Factory:
    """Builds committed rows; every helper commits so API requests can see the data."""

    def __init__(self, session, app):
        self.session = session
        self.app = app

    def user(self, email=None, password=DEFAULT_PASSWORD, roles=None, status=UserStatus.ACTIVE, **fields):
        user = User(
            email=email or f"user_{uuid4().hex[:8]}@example.com",
            password_hash=generate_password_hash(password),
            status=status,
            first_name=fields.pop("first_name", "Test"),
            last_name=fields.pop("last_name", "User"),
            **fields,
        )
        user.roles = roles or [UserRole.CUSTOMER]
        self.session.add(user)
        self.session.commit()
        return user

    def admin(self, **fields):
        return self.user(roles=[UserRole.CUSTOMER, UserRole.ADMIN], **fields)

    def vendor(self, owner=None, status=VendorStatus.APPROVED, commission_rate="10.00", name=None):
        owner = owner or self.user()
        name = name or f"Vendor {uuid4().hex[:6]}"
        vendor = Vendor(
            ownerID=owner.userID,
            name=name,
            slug=name.lower().replace(" ", "-"),
            status=status,
            commission_rate=Decimal(commission_rate),
        )
        if status == VendorStatus.APPROVED:
            owner.add_role(UserRole.VENDOR)
        self.session.add(vendor)
        self.session.commit()
        return vendor

    def category(self, name=None, parent=None, is_active=True, position=0):
        name = name or f"Category {uuid4().hex[:6]}"
        category = Category(
            name=name,
            slug=name.lower().replace(" ", "-"),
            parent=parent,
            is_active=is_active,
            position=position,
        )
        self.session.add(category)
        self.session.commit()
        return category

    def product(
        self,
        vendor=None,
        title=None,
        price="20.00",
        stock=10,
        status=ProductStatus.ACTIVE,
        category=None,
        variants=None,
        **fields,
    ):
        vendor = vendor or self.vendor()
        title = title or f"Product {uuid4().hex[:6]}"
        product = Product(
            vendorID=vendor.vendorID,
            title=title,
            slug=title.lower().replace(" ", "-"),
            base_price=Decimal(price),
            stock=stock,
            status=status,
            category=category,
            **fields,
        )
        for variant in variants or []:
            product.variants.append(
                ProductVariant(
                    name=variant["name"],
                    price=None if variant.get("price") is None else Decimal(variant["price"]),
                    stock=variant.get("stock", 0),
                )
            )
        self.session.add(product)
        self.session.commit()
        return product

    def access_token(self, user):
        with self.app.app_context():
            return create_access_token(identity=user)

    def refresh_token(self, user):
        with self.app.app_context():
            token = create_refresh_token(identity=user)
            user.refresh_token_jti = decode_token(token)["jti"]
        self.session.commit()
        return token

    def headers(self, user):
        return {"Authorization": f"Bearer {self.access_token(user)}"}


@pytest.fixture
def factory(db_session, app):
    return Factory(db_session, app)


@pytest.fixture
def place_order(db_session):
    """Fill the customer's cart with ``(product, quantity[, variant])`` lines and check out."""
    from marketplace.models import Order
    from marketplace.services.cart_service import CartService
    from marketplace.services.checkout_service import CheckoutService

    def _place(customer, lines, coupon_code=None):
        cart_service = CartService(db_session)
        for line in lines:
            product, quantity = line[0], line[1]
            variant = line[2] if len(line) > 2 else None
            cart_service.add_item(
                customer,
                product.productID,
                variant.variantID if variant is not None else None,
                quantity,
            )
        result = CheckoutService(db_session).create_session(
            customer,
            SHIPPING_ADDRESS,
            coupon_code=coupon_code,
        )
        return db_session.get(Order, result["order_id"])

    return _place


@pytest.fixture
def pay_order(db_session):
    from marketplace.services.payment_service import PaymentService

    def _pay(order):
        PaymentService(db_session).handle_webhook(
            {"type": "payment.success", "data": {"session_id": f"session_{order.orderID}"}}
        )
        db_session.refresh(order)
        return order

    return _pay


@pytest.fixture
def deliver_order(db_session):
    """Mark every item delivered through each vendor's fulfillment flow."""
    from marketplace.services.order_service import OrderService

    def _deliver(order):
        service = OrderService(db_session)
        for item in list(order.items):
            service.update_item_fulfillment(item.vendor, order.orderID, item.orderItemID, "delivered")
        db_session.refresh(order)
        return order

    return _deliver
