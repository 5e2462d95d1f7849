from __future__ import annotations

import logging
from typing import List

from sqlalchemy.orm import Session, selectinload
from werkzeug.exceptions import Conflict, NotFound

from marketplace.models import Product, User, WishlistItem


class WishlistService:
    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def list_items(self, user: User) -> List[WishlistItem]:
        return (
            self.db.query(WishlistItem)
            .options(selectinload(WishlistItem.product))
            .filter(WishlistItem.userID == user.userID)
            .order_by(WishlistItem.added_at.desc(), WishlistItem.wishlistItemID.desc())
            .all()
        )

    def add(self, user: User, product_id: int) -> WishlistItem:
        if self.db.get(Product, product_id) is None:
            raise NotFound("Product not found")
        if self._find(user, product_id) is not None:
            raise Conflict("Product already in wishlist")
        item = WishlistItem(userID=user.userID, productID=product_id)
        self.db.add(item)
        self.db.commit()
        return item

    def remove(self, user: User, product_id: int) -> None:
        item = self._find(user, product_id)
        if item is None:
            raise NotFound("Product not in wishlist")
        self.db.delete(item)
        self.db.commit()

    def _find(self, user: User, product_id: int):
        return self.db.query(WishlistItem).filter_by(userID=user.userID, productID=product_id).first()
