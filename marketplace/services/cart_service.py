from __future__ import annotations

import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session
from werkzeug.exceptions import BadRequest, NotFound

from marketplace.config import Config
from marketplace.models import Cart, CartItem, Product, ProductVariant, User
from marketplace.observability import increment_counter
from marketplace.utils import money


class CartService:
    """
    Per-user shopping cart.

    The cart total is recomputed from line subtotals after each mutation; two
    concurrent mutations of the same cart can still race (last write wins).
    """

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    def get_or_create(self, user: User) -> Cart:
        cart = self.db.query(Cart).filter_by(userID=user.userID).first()
        if cart is None:
            cart = Cart(userID=user.userID, total=Decimal("0.00"), currency=self.config.DEFAULT_CURRENCY)
            self.db.add(cart)
            self.db.commit()
        return cart

    def add_item(self, user: User, product_id: int, variant_id: Optional[int], quantity: int) -> Cart:
        if quantity < 1:
            raise BadRequest("quantity must be at least 1")
        product = self.db.get(Product, product_id)
        if product is None or not product.is_active or not product.vendor.is_approved:
            raise NotFound("Product not found")

        variant: Optional[ProductVariant] = None
        if variant_id is not None:
            variant = self.db.get(ProductVariant, variant_id)
            if variant is None or variant.productID != product.productID:
                raise NotFound("Variant not found")

        unit_price = money(variant.effective_price if variant else product.base_price)
        cart = self.get_or_create(user)

        existing = next(
            (
                item
                for item in cart.items
                if item.productID == product.productID and item.variantID == (variant.variantID if variant else None)
            ),
            None,
        )
        if existing is not None:
            existing.quantity += quantity
            existing.unit_price = unit_price
            existing.subtotal = money(unit_price * existing.quantity)
        else:
            cart.items.append(
                CartItem(
                    productID=product.productID,
                    variantID=variant.variantID if variant else None,
                    vendorID=product.vendorID,
                    quantity=quantity,
                    unit_price=unit_price,
                    subtotal=money(unit_price * quantity),
                )
            )
        self._recalculate(cart)
        self.db.commit()
        increment_counter("cart_items_added_total")
        return cart

    def update_item(self, user: User, item_id: int, quantity: int) -> Cart:
        if quantity < 1:
            raise BadRequest("quantity must be at least 1")
        cart = self.get_or_create(user)
        item = self._get_item(cart, item_id)
        item.quantity = quantity
        item.subtotal = money(money(item.unit_price) * quantity)
        self._recalculate(cart)
        self.db.commit()
        return cart

    def remove_item(self, user: User, item_id: int) -> Cart:
        cart = self.get_or_create(user)
        cart.items.remove(self._get_item(cart, item_id))
        self._recalculate(cart)
        self.db.commit()
        return cart

    def clear(self, user: User) -> Cart:
        cart = self.get_or_create(user)
        self.empty(cart)
        self.db.commit()
        return cart

    def empty(self, cart: Cart) -> None:
        """Drop every line without committing; checkout calls this inside its own transaction."""
        cart.items.clear()
        cart.total = Decimal("0.00")

    @staticmethod
    def _get_item(cart: Cart, item_id: int) -> CartItem:
        for item in cart.items:
            if item.cartItemID == item_id:
                return item
        raise NotFound("Cart item not found")

    @staticmethod
    def _recalculate(cart: Cart) -> None:
        cart.total = money(sum((money(item.subtotal) for item in cart.items), Decimal("0")))

    @staticmethod
    def group_by_vendor(items: List[CartItem]) -> "OrderedDict[int, Dict[str, Any]]":
        groups: "OrderedDict[int, Dict[str, Any]]" = OrderedDict()
        for item in items:
            group = groups.setdefault(
                item.vendorID,
                {"vendor": item.vendor, "items": [], "subtotal": Decimal("0.00")},
            )
            group["items"].append(item)
            group["subtotal"] = money(group["subtotal"] + money(item.subtotal))
        return groups
