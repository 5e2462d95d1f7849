from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy.orm import Session
from werkzeug.exceptions import BadRequest

from marketplace.config import Config
from marketplace.models import CartItem, OrderItem, Product, ProductVariant
from marketplace.observability import increment_counter
from marketplace.services.notification_service import publish_low_stock_alert

StockLine = Union[CartItem, OrderItem]
StockHolder = Union[Product, ProductVariant]


class InventoryService:
    """
    Encapsulates stock adjustments triggered by checkout and cancellation.

    Stock is tracked on the variant when a line has one, otherwise on the
    product. Falling to the low-stock threshold notifies the vendor owner.
    """

    def __init__(self, db_session: Session, low_stock_threshold: Optional[int] = None) -> None:
        self.db = db_session
        self.low_stock_threshold = (
            Config.LOW_STOCK_THRESHOLD if low_stock_threshold is None else low_stock_threshold
        )
        self.logger = logging.getLogger(__name__)

    def reserve(self, lines: Iterable[StockLine]) -> None:
        """
        Decrement stock for every line, or nothing at all when any line is short.
        Quantities for the same product/variant across lines are summed first.
        """
        requested: Dict[Tuple[str, int], Tuple[StockHolder, int, str]] = {}
        for line in lines:
            holder, label = self._holder_for(line)
            key = (type(holder).__name__, self._holder_id(holder))
            _, quantity, _ = requested.get(key, (holder, 0, label))
            requested[key] = (holder, quantity + line.quantity, label)

        for holder, quantity, label in requested.values():
            if (holder.stock or 0) < quantity:
                raise BadRequest(f"Insufficient stock for {label}")

        adjustments: List[Tuple[str, int]] = []
        for holder, quantity, label in requested.values():
            old_stock = holder.stock or 0
            holder.stock = old_stock - quantity
            adjustments.append((label, quantity))
            self._check_low_stock(holder, old_stock)

        increment_counter("inventory_reservations_total")
        self.logger.info("Stock reserved", extra={"adjustments": adjustments})

    def restore(self, lines: Iterable[StockLine]) -> None:
        adjustments: List[Tuple[str, int]] = []
        for line in lines:
            holder, label = self._holder_for(line, allow_missing=True)
            if holder is None:
                continue
            holder.stock = (holder.stock or 0) + line.quantity
            adjustments.append((label, line.quantity))

        if adjustments:
            increment_counter("inventory_restocks_total")
            self.logger.info("Stock restored", extra={"adjustments": adjustments})

    def _holder_for(self, line: StockLine, allow_missing: bool = False):
        if line.variantID is not None and line.variant is not None:
            variant = line.variant
            return variant, f"{variant.product.title} ({variant.name})"
        product = line.product
        if product is None:
            if allow_missing:
                return None, None
            raise BadRequest("Product is no longer available")
        return product, product.title

    @staticmethod
    def _holder_id(holder: StockHolder) -> int:
        if isinstance(holder, ProductVariant):
            return holder.variantID
        return holder.productID

    def _check_low_stock(self, holder: StockHolder, old_stock: int) -> None:
        new_stock = holder.stock or 0
        if new_stock > self.low_stock_threshold or old_stock <= self.low_stock_threshold:
            return
        product = holder.product if isinstance(holder, ProductVariant) else holder
        title = product.title if holder is product else f"{product.title} ({holder.name})"
        publish_low_stock_alert(
            product_id=product.productID,
            product_title=title,
            vendor_owner_id=product.vendor.ownerID,
            stock=new_stock,
            threshold=self.low_stock_threshold,
        )
        self.logger.warning(
            "Stock for %s fell to %d",
            title,
            new_stock,
            extra={"product_id": product.productID, "threshold": self.low_stock_threshold},
        )
