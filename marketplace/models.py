# marketplace/models.py
from __future__ import annotations

from enum import Enum
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    UniqueConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

# Use a single, shared Base for all models
from marketplace.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UserRole(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class VendorStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class ProductStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class FulfillmentStatus(str, Enum):
    PENDING = "pending"
    PACKED = "packed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    RETURNED = "returned"


class PaymentRecordStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ContentStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class User(Base):
    __tablename__ = 'User'

    userID = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    phone = Column(String(50))
    _roles = Column('roles', String(100), default=UserRole.CUSTOMER.value, nullable=False)
    status = Column(
        SAEnum(UserStatus, name="user_status", native_enum=False, validate_strings=True),
        default=UserStatus.ACTIVE,
        nullable=False,
    )
    refresh_token_jti = Column(String(64))
    reset_password_token = Column(String(64), index=True)
    reset_password_expires = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    vendor = relationship("Vendor", uselist=False, back_populates="owner")
    cart = relationship("Cart", uselist=False, back_populates="user", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="user")
    reviews = relationship("Review", back_populates="user", cascade="all, delete-orphan")
    wishlist_items = relationship("WishlistItem", back_populates="user", cascade="all, delete-orphan")

    @property
    def roles(self) -> List[str]:
        return [role for role in (self._roles or "").split(",") if role]

    @roles.setter
    def roles(self, value) -> None:
        cleaned: List[str] = []
        for role in value or []:
            role_value = UserRole(role).value
            if role_value not in cleaned:
                cleaned.append(role_value)
        self._roles = ",".join(cleaned or [UserRole.CUSTOMER.value])

    def has_role(self, role: UserRole | str) -> bool:
        return UserRole(role).value in self.roles

    def add_role(self, role: UserRole) -> None:
        if not self.has_role(role):
            self.roles = self.roles + [role.value]

    def remove_role(self, role: UserRole) -> None:
        self.roles = [r for r in self.roles if r != role.value]

    @property
    def is_admin(self) -> bool:
        return self.has_role(UserRole.ADMIN)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class Vendor(Base):
    __tablename__ = 'Vendor'

    vendorID = Column(Integer, primary_key=True, autoincrement=True)
    ownerID = Column(Integer, ForeignKey('User.userID'), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    logo_url = Column(String(512))
    description = Column(Text)
    commission_rate = Column(Numeric(5, 2), nullable=False, default=10.0)
    status = Column(
        SAEnum(VendorStatus, name="vendor_status", native_enum=False, validate_strings=True),
        default=VendorStatus.PENDING,
        nullable=False,
    )
    business_email = Column(String(255))
    business_phone = Column(String(50))
    business_address = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    owner = relationship("User", back_populates="vendor")
    products = relationship("Product", back_populates="vendor")
    payouts = relationship("Payout", back_populates="vendor", order_by="Payout.created_at")

    @property
    def is_approved(self) -> bool:
        return self.status == VendorStatus.APPROVED


class Category(Base):
    __tablename__ = 'Category'

    categoryID = Column(Integer, primary_key=True, autoincrement=True)
    parentID = Column(Integer, ForeignKey('Category.categoryID'))
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    description = Column(Text)
    position = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    parent = relationship("Category", remote_side=[categoryID], back_populates="children")
    children = relationship(
        "Category",
        back_populates="parent",
        order_by="Category.position",
    )
    products = relationship("Product", back_populates="category")


class Product(Base):
    __tablename__ = 'Product'

    productID = Column(Integer, primary_key=True, autoincrement=True)
    vendorID = Column(Integer, ForeignKey('Vendor.vendorID'), nullable=False)
    categoryID = Column(Integer, ForeignKey('Category.categoryID'))
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    description = Column(Text)
    base_price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    sku = Column(String(100))
    status = Column(
        SAEnum(ProductStatus, name="product_status", native_enum=False, validate_strings=True),
        default=ProductStatus.DRAFT,
        nullable=False,
    )
    stock = Column(Integer, nullable=False, default=0)
    average_rating = Column(Numeric(3, 2), nullable=False, default=0)
    review_count = Column(Integer, nullable=False, default=0)
    is_featured = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    vendor = relationship("Vendor", back_populates="products")
    category = relationship("Category", back_populates="products")
    variants = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.variantID",
    )
    images = relationship(
        "ProductImage",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductImage.position",
    )
    reviews = relationship("Review", back_populates="product", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE


class ProductVariant(Base):
    __tablename__ = 'ProductVariant'

    variantID = Column(Integer, primary_key=True, autoincrement=True)
    productID = Column(Integer, ForeignKey('Product.productID'), nullable=False)
    name = Column(String(255), nullable=False)
    sku = Column(String(100))
    price = Column(Numeric(10, 2))
    stock = Column(Integer, nullable=False, default=0)
    attributes = Column(JSON)
    created_at = Column(DateTime, default=utcnow)

    product = relationship("Product", back_populates="variants")

    @property
    def effective_price(self):
        return self.price if self.price is not None else self.product.base_price


class ProductImage(Base):
    __tablename__ = 'ProductImage'

    imageID = Column(Integer, primary_key=True, autoincrement=True)
    productID = Column(Integer, ForeignKey('Product.productID'), nullable=False)
    url = Column(String(512), nullable=False)
    alt_text = Column(String(255))
    position = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="images")


class Cart(Base):
    __tablename__ = 'Cart'

    cartID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID'), unique=True, nullable=False)
    total = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="cart")
    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.cartItemID",
    )


class CartItem(Base):
    __tablename__ = 'CartItem'

    cartItemID = Column(Integer, primary_key=True, autoincrement=True)
    cartID = Column(Integer, ForeignKey('Cart.cartID'), nullable=False)
    productID = Column(Integer, ForeignKey('Product.productID'), nullable=False)
    variantID = Column(Integer, ForeignKey('ProductVariant.variantID'))
    vendorID = Column(Integer, ForeignKey('Vendor.vendorID'), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")
    vendor = relationship("Vendor")


class Order(Base):
    __tablename__ = 'Order'

    orderID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID'), nullable=False)
    status = Column(
        SAEnum(OrderStatus, name="order_status", native_enum=False, validate_strings=True),
        default=OrderStatus.PENDING,
        nullable=False,
    )
    payment_status = Column(
        SAEnum(PaymentStatus, name="order_payment_status", native_enum=False, validate_strings=True),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False)
    refunded_amount = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    shipping_address = Column(JSON)
    billing_address = Column(JSON)
    notes = Column(Text)
    coupon_code = Column(String(50))
    delivered_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="orders")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.orderItemID",
    )
    payments = relationship("Payment", back_populates="order", cascade="all, delete-orphan")
    refunds = relationship("Refund", back_populates="order", cascade="all, delete-orphan")

    _VALID_TRANSITIONS = {
        OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
        OrderStatus.CONFIRMED: {
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
            OrderStatus.REFUNDED,
        },
        OrderStatus.PROCESSING: {
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
            OrderStatus.REFUNDED,
        },
        OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.REFUNDED},
        OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    }

    def can_transition(self, new_status: OrderStatus) -> bool:
        allowed = self._VALID_TRANSITIONS.get(OrderStatus(self.status), set())
        return new_status in allowed

    def transition_to(self, new_status: OrderStatus) -> None:
        if not self.can_transition(new_status):
            raise ValueError(f"Invalid order status transition from {OrderStatus(self.status).value} to {new_status.value}")
        self.status = new_status
        if new_status == OrderStatus.DELIVERED and self.delivered_at is None:
            self.delivered_at = utcnow()

    def is_within_return_window(self, return_window_days: int) -> bool:
        delivered_at = as_utc(self.delivered_at)
        if delivered_at is None:
            return False
        delta = utcnow() - delivered_at
        return delta.days <= return_window_days


class OrderItem(Base):
    __tablename__ = 'OrderItem'

    orderItemID = Column(Integer, primary_key=True, autoincrement=True)
    orderID = Column(Integer, ForeignKey('Order.orderID'), nullable=False)
    # Product/variant links may be cleared when the catalog entry is removed;
    # the title and variant name snapshots keep the history readable.
    productID = Column(Integer, ForeignKey('Product.productID'))
    variantID = Column(Integer, ForeignKey('ProductVariant.variantID'))
    vendorID = Column(Integer, ForeignKey('Vendor.vendorID'), nullable=False)
    product_title = Column(String(255), nullable=False)
    variant_name = Column(String(255))
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    fulfillment_status = Column(
        SAEnum(FulfillmentStatus, name="fulfillment_status", native_enum=False, validate_strings=True),
        default=FulfillmentStatus.PENDING,
        nullable=False,
    )
    tracking_number = Column(String(120))
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")
    vendor = relationship("Vendor")

    _FULFILLMENT_SEQUENCE = (
        FulfillmentStatus.PENDING,
        FulfillmentStatus.PACKED,
        FulfillmentStatus.SHIPPED,
        FulfillmentStatus.DELIVERED,
    )

    def advance_fulfillment(self, new_status: FulfillmentStatus) -> None:
        current = FulfillmentStatus(self.fulfillment_status)
        if new_status not in self._FULFILLMENT_SEQUENCE or current not in self._FULFILLMENT_SEQUENCE:
            raise ValueError(f"Cannot move fulfillment from {current.value} to {new_status.value}")
        if self._FULFILLMENT_SEQUENCE.index(new_status) <= self._FULFILLMENT_SEQUENCE.index(current):
            raise ValueError(f"Cannot move fulfillment from {current.value} to {new_status.value}")
        self.fulfillment_status = new_status


class Payment(Base):
    __tablename__ = 'Payment'

    paymentID = Column(Integer, primary_key=True, autoincrement=True)
    orderID = Column(Integer, ForeignKey('Order.orderID'), nullable=False)
    provider = Column(String(50), nullable=False, default="stub")
    provider_session_id = Column(String(255), unique=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(
        SAEnum(PaymentRecordStatus, name="payment_status", native_enum=False, validate_strings=True),
        default=PaymentRecordStatus.PENDING,
        nullable=False,
    )
    payload = Column(JSON)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="payments")
    refunds = relationship("Refund", back_populates="payment")


class Refund(Base):
    __tablename__ = 'Refund'

    refundID = Column(Integer, primary_key=True, autoincrement=True)
    orderID = Column(Integer, ForeignKey('Order.orderID'), nullable=False)
    paymentID = Column(Integer, ForeignKey('Payment.paymentID'), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    reason = Column(Text)
    status = Column(
        SAEnum(RefundStatus, name="refund_status", native_enum=False, validate_strings=True),
        nullable=False,
    )
    failure_reason = Column(String(255))
    external_reference = Column(String(120))
    created_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime)

    order = relationship("Order", back_populates="refunds")
    payment = relationship("Payment", back_populates="refunds")

    def mark_completed(self, reference: str | None = None) -> None:
        self.status = RefundStatus.COMPLETED
        self.processed_at = utcnow()
        if reference:
            self.external_reference = reference

    def mark_failed(self, reason: str) -> None:
        self.status = RefundStatus.FAILED
        self.failure_reason = reason
        self.processed_at = utcnow()


class Payout(Base):
    __tablename__ = 'Payout'

    payoutID = Column(Integer, primary_key=True, autoincrement=True)
    vendorID = Column(Integer, ForeignKey('Vendor.vendorID'), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(
        SAEnum(PayoutStatus, name="payout_status", native_enum=False, validate_strings=True),
        default=PayoutStatus.PENDING,
        nullable=False,
    )
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    details = Column(JSON)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    vendor = relationship("Vendor", back_populates="payouts")

    _VALID_TRANSITIONS = {
        PayoutStatus.PENDING: {PayoutStatus.PROCESSING, PayoutStatus.FAILED},
        PayoutStatus.PROCESSING: {PayoutStatus.COMPLETED, PayoutStatus.FAILED},
    }

    def transition_to(self, new_status: PayoutStatus) -> None:
        allowed = self._VALID_TRANSITIONS.get(PayoutStatus(self.status), set())
        if new_status not in allowed:
            raise ValueError(f"Invalid payout status transition from {PayoutStatus(self.status).value} to {new_status.value}")
        self.status = new_status


class Review(Base):
    __tablename__ = 'Review'
    __table_args__ = (UniqueConstraint("userID", "productID", name="uq_review_user_product"),)

    reviewID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID'), nullable=False)
    productID = Column(Integer, ForeignKey('Product.productID'), nullable=False)
    rating = Column(Integer, nullable=False)
    title = Column(String(255))
    body = Column(Text)
    status = Column(
        SAEnum(ReviewStatus, name="review_status", native_enum=False, validate_strings=True),
        default=ReviewStatus.PENDING,
        nullable=False,
    )
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="reviews")
    product = relationship("Product", back_populates="reviews")


class WishlistItem(Base):
    __tablename__ = 'WishlistItem'
    __table_args__ = (UniqueConstraint("userID", "productID", name="uq_wishlist_user_product"),)

    wishlistItemID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID'), nullable=False)
    productID = Column(Integer, ForeignKey('Product.productID'), nullable=False)
    added_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="wishlist_items")
    product = relationship("Product")


class Page(Base):
    __tablename__ = 'Page'

    pageID = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(255), unique=True, nullable=False)
    title = Column(String(255), nullable=False)
    content = Column(Text)
    status = Column(
        SAEnum(ContentStatus, name="page_status", native_enum=False, validate_strings=True),
        default=ContentStatus.DRAFT,
        nullable=False,
    )
    meta_title = Column(String(255))
    meta_description = Column(String(512))
    published_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class BlogPost(Base):
    __tablename__ = 'BlogPost'

    postID = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(255), unique=True, nullable=False)
    title = Column(String(255), nullable=False)
    excerpt = Column(Text)
    content = Column(Text)
    status = Column(
        SAEnum(ContentStatus, name="blog_post_status", native_enum=False, validate_strings=True),
        default=ContentStatus.DRAFT,
        nullable=False,
    )
    featured_image = Column(String(512))
    author = Column(String(255))
    _tags = Column('tags', Text, default="")
    published_at = Column(DateTime, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def tags(self) -> List[str]:
        return [tag for tag in (self._tags or "").split(",") if tag]

    @tags.setter
    def tags(self, value) -> None:
        cleaned = []
        for tag in value or []:
            tag = str(tag).strip().lower()
            if tag and tag not in cleaned:
                cleaned.append(tag)
        self._tags = ",".join(cleaned)
