from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload
from werkzeug.exceptions import BadRequest, Forbidden, NotFound

from marketplace.models import (
    Order,
    OrderItem,
    OrderStatus,
    Product,
    Review,
    ReviewStatus,
    User,
)
from marketplace.observability import increment_counter
from marketplace.services.pagination import PageResult, paginate
from marketplace.utils import parse_enum, parse_int, sanitize_text

MODERATION_STATUSES = (ReviewStatus.APPROVED, ReviewStatus.REJECTED)


class ReviewService:
    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def list_approved(self, product_id: int, page: int, limit: int) -> PageResult:
        self._get_product(product_id)
        query = (
            self.db.query(Review)
            .options(selectinload(Review.user))
            .filter(Review.productID == product_id, Review.status == ReviewStatus.APPROVED)
            .order_by(Review.created_at.desc(), Review.reviewID.desc())
        )
        return paginate(query, page, limit)

    def rating_summary(self, product_id: int) -> Dict[str, Any]:
        self._get_product(product_id)
        rows = (
            self.db.query(Review.rating, func.count(Review.reviewID))
            .filter(Review.productID == product_id, Review.status == ReviewStatus.APPROVED)
            .group_by(Review.rating)
            .all()
        )
        distribution = {str(star): 0 for star in range(1, 6)}
        total = 0
        rating_sum = 0
        for rating, count in rows:
            distribution[str(rating)] = count
            total += count
            rating_sum += rating * count
        average = _round_rating(Decimal(rating_sum) / Decimal(total)) if total else Decimal("0.00")
        return {"average": float(average), "total": total, "distribution": distribution}

    def create(self, user: User, product_id: int, data: Dict[str, Any]) -> Review:
        product = self._get_product(product_id)
        if not self._has_delivered_purchase(user, product_id):
            raise Forbidden("You can only review products from your delivered orders")
        if self.db.query(Review).filter_by(userID=user.userID, productID=product_id).first() is not None:
            raise BadRequest("You have already reviewed this product")

        review = Review(
            userID=user.userID,
            productID=product.productID,
            rating=parse_int(data.get("rating"), "rating", minimum=1, maximum=5),
            title=sanitize_text(data.get("title")),
            body=sanitize_text(data.get("body")),
            status=ReviewStatus.APPROVED,
        )
        self.db.add(review)
        self.db.flush()
        self.recalculate_product_rating(product)
        self.db.commit()
        increment_counter("reviews_created_total")
        self.logger.info("Review %s created", review.reviewID, extra={"product_id": product_id})
        return review

    def update(self, user: User, product_id: int, review_id: int, data: Dict[str, Any]) -> Review:
        review = self._get_owned(user, product_id, review_id)
        if "rating" in data:
            review.rating = parse_int(data["rating"], "rating", minimum=1, maximum=5)
        if "title" in data:
            review.title = sanitize_text(data["title"])
        if "body" in data:
            review.body = sanitize_text(data["body"])
        self.db.flush()
        self.recalculate_product_rating(review.product)
        self.db.commit()
        return review

    def delete(self, user: User, product_id: int, review_id: int) -> None:
        review = self._get_owned(user, product_id, review_id)
        product = review.product
        self.db.delete(review)
        self.db.flush()
        self.recalculate_product_rating(product)
        self.db.commit()

    # ------------------------------------------------------------------
    # Admin moderation
    # ------------------------------------------------------------------
    def list_by_status(self, page: int, limit: int, status: Optional[str] = None) -> PageResult:
        query = self.db.query(Review).options(selectinload(Review.user))
        if status:
            query = query.filter(Review.status == parse_enum(ReviewStatus, status, "status"))
        return paginate(query.order_by(Review.created_at.desc(), Review.reviewID.desc()), page, limit)

    def moderate(self, review_id: int, status: str) -> Review:
        review = self.db.get(Review, review_id)
        if review is None:
            raise NotFound("Review not found")
        new_status = parse_enum(ReviewStatus, status, "status")
        if new_status not in MODERATION_STATUSES:
            raise BadRequest("status must be one of: approved, rejected")
        review.status = new_status
        self.db.flush()
        self.recalculate_product_rating(review.product)
        self.db.commit()
        return review

    def recalculate_product_rating(self, product: Product) -> None:
        """Refresh the denormalized rating from approved reviews."""
        count, average = (
            self.db.query(func.count(Review.reviewID), func.avg(Review.rating))
            .filter(Review.productID == product.productID, Review.status == ReviewStatus.APPROVED)
            .one()
        )
        product.review_count = count or 0
        product.average_rating = _round_rating(Decimal(str(average))) if average is not None else Decimal("0.00")

    def _has_delivered_purchase(self, user: User, product_id: int) -> bool:
        match = (
            self.db.query(OrderItem.orderItemID)
            .join(Order, OrderItem.orderID == Order.orderID)
            .filter(
                Order.userID == user.userID,
                Order.status == OrderStatus.DELIVERED,
                OrderItem.productID == product_id,
            )
            .first()
        )
        return match is not None

    def _get_product(self, product_id: int) -> Product:
        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")
        return product

    def _get_owned(self, user: User, product_id: int, review_id: int) -> Review:
        review = self.db.get(Review, review_id)
        if review is None or review.productID != product_id:
            raise NotFound("Review not found")
        if review.userID != user.userID:
            raise Forbidden("You can only modify your own reviews")
        return review


def _round_rating(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
