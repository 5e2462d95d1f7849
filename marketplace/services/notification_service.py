"""
Notification Service

Publish-subscribe style notifications for order lifecycle changes and
inventory alerts. Notifications are kept in memory per user, newest first.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import count
from threading import Lock
from typing import Any, Dict, List, Optional

from marketplace.observability import increment_counter, record_event


@dataclass
class Notification:
    """Represents a single notification."""
    id: str
    user_id: int
    notification_type: str
    title: str
    message: str
    reference_id: Optional[int] = None
    reference_type: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    read: bool = False
    read_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.notification_type,
            "title": self.title,
            "message": self.message,
            "reference_id": self.reference_id,
            "reference_type": self.reference_type,
            "created_at": self.created_at.isoformat(),
            "read": self.read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
        }


class NotificationService:
    """
    In-memory notification store shared by the whole process.

    Each user keeps at most ``MAX_PER_USER`` notifications; older ones are
    dropped as new ones arrive.
    """

    MAX_PER_USER = 50

    _instance: Optional["NotificationService"] = None
    _lock: Lock = Lock()

    def __new__(cls) -> "NotificationService":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    instance = super().__new__(cls)
                    instance._notifications = defaultdict(list)
                    instance._sequence = count(1)
                    instance.logger = logging.getLogger(__name__)
                    cls._instance = instance
        return cls._instance

    def add_notification(
        self,
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        reference_id: Optional[int] = None,
        reference_type: Optional[str] = None,
    ) -> Notification:
        with self._lock:
            notification = Notification(
                id=f"notif_{next(self._sequence)}",
                user_id=user_id,
                notification_type=notification_type,
                title=title,
                message=message,
                reference_id=reference_id,
                reference_type=reference_type,
            )
            user_notifications = self._notifications[user_id]
            user_notifications.insert(0, notification)
            del user_notifications[self.MAX_PER_USER:]

        increment_counter("notifications_created_total", labels={"type": notification_type})
        self.logger.info("Notification created for user %d: %s", user_id, title)
        return notification

    def get_notifications(
        self,
        user_id: int,
        unread_only: bool = False,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        notifications = self._notifications.get(user_id, [])
        if unread_only:
            notifications = [n for n in notifications if not n.read]
        return [n.to_dict() for n in notifications[:limit]]

    def get_unread_count(self, user_id: int) -> int:
        return sum(1 for n in self._notifications.get(user_id, []) if not n.read)

    def mark_as_read(self, user_id: int, notification_id: str) -> bool:
        """Return False when the user has no notification with that id."""
        for notification in self._notifications.get(user_id, []):
            if notification.id == notification_id:
                if not notification.read:
                    notification.read = True
                    notification.read_at = datetime.now(timezone.utc)
                return True
        return False

    def mark_all_as_read(self, user_id: int) -> int:
        marked = 0
        now = datetime.now(timezone.utc)
        for notification in self._notifications.get(user_id, []):
            if not notification.read:
                notification.read = True
                notification.read_at = now
                marked += 1
        return marked

    def clear(self) -> None:
        """Testing helper."""
        with self._lock:
            self._notifications.clear()


ORDER_STATUS_LABELS = {
    "pending": "Pending",
    "confirmed": "Confirmed",
    "processing": "Processing",
    "shipped": "Shipped",
    "delivered": "Delivered",
    "cancelled": "Cancelled",
    "refunded": "Refunded",
}


def publish_order_status_change(
    order_id: int,
    customer_id: int,
    old_status: str,
    new_status: str,
) -> None:
    """Record the transition and notify the customer who owns the order."""
    old_label = ORDER_STATUS_LABELS.get(old_status, old_status)
    new_label = ORDER_STATUS_LABELS.get(new_status, new_status)

    record_event(
        "order_status_changed",
        {
            "order_id": order_id,
            "customer_id": customer_id,
            "old_status": old_status,
            "new_status": new_status,
        },
    )
    increment_counter(
        "order_status_transitions_total",
        labels={"from_status": old_status, "to_status": new_status},
    )

    if old_status:
        message = f"Your order #{order_id} changed from {old_label} to {new_label}."
    else:
        message = f"Your order #{order_id} was placed."
    NotificationService().add_notification(
        user_id=customer_id,
        notification_type="order_status",
        title=f"Order #{order_id} {new_label}",
        message=message,
        reference_id=order_id,
        reference_type="order",
    )


def publish_low_stock_alert(
    product_id: int,
    product_title: str,
    vendor_owner_id: int,
    stock: int,
    threshold: int,
) -> None:
    record_event(
        "low_stock",
        {"product_id": product_id, "stock": stock, "threshold": threshold},
    )
    increment_counter("low_stock_alerts_total")
    NotificationService().add_notification(
        user_id=vendor_owner_id,
        notification_type="low_stock",
        title=f"Low stock: {product_title}",
        message=f"Only {stock} left of {product_title} (threshold {threshold}).",
        reference_id=product_id,
        reference_type="product",
    )
