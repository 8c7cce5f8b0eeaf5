# Overview: Stock alert and back-in-stock notification dispatch.

"""
Notification dispatcher.

Every dispatched message is stored as a Notification row (the in-app
inbox) and handed to a push sender for users with a device token. Push
delivery itself is an external concern: the default sender only logs.

Callers treat dispatch as fire-and-forget; InventoryService catches and
logs any exception raised here so a failed alert never undoes a stock
change that has already been committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from ..extensions import db
from ..models import Notification, NotifyRequest, User
from ..permissions import ADMIN_ROLES
from ..time_utils import utcnow

logger = logging.getLogger(__name__)


ALERT_LOW_STOCK = "LOW_STOCK"
ALERT_OUT_OF_STOCK = "OUT_OF_STOCK"
ALERT_BACK_IN_STOCK = "BACK_IN_STOCK"

NOTIFICATION_STOCK_ALERT = "STOCK_ALERT"
NOTIFICATION_BACK_IN_STOCK = "BACK_IN_STOCK"


@dataclass(frozen=True)
class StockAlert:
    product_id: int
    product_name: str
    product_name_ar: str
    current_stock: int
    alert_type: str

    def title_and_body(self) -> tuple[str, str]:
        if self.alert_type == ALERT_LOW_STOCK:
            return "Low Stock Alert", f"{self.product_name} has only {self.current_stock} units left"
        if self.alert_type == ALERT_OUT_OF_STOCK:
            return "Out of Stock Alert", f"{self.product_name} is now out of stock"
        if self.alert_type == ALERT_BACK_IN_STOCK:
            return "Back in Stock", f"{self.product_name} is now back in stock ({self.current_stock} units)"
        raise ValueError(f"Unknown alert type: {self.alert_type}")


class PushSender(Protocol):
    def send(self, tokens: list[str], title: str, body: str, data: dict) -> None:
        ...


class LoggingPushSender:
    """Default sender: records the push in the application log."""

    def send(self, tokens: list[str], title: str, body: str, data: dict) -> None:
        logger.info("Push to %d device(s): %s - %s %s", len(tokens), title, body, data)


class NotificationService:
    def __init__(self, push_sender: PushSender | None = None):
        self.push_sender = push_sender or LoggingPushSender()

    def _deliver(self, users: list[User], *, type_: str, title: str, body: str, data: dict) -> int:
        for user in users:
            db.session.add(Notification(user_id=user.id, type=type_, title=title, body=body, data=data))

        tokens = [u.fcm_token for u in users if u.fcm_token]
        if tokens:
            self.push_sender.send(tokens, title, body, data)
        return len(users)

    def send_stock_alert(self, alert: StockAlert) -> int:
        """Notify every active admin. Returns the number of recipients."""
        title, body = alert.title_and_body()
        admins = db.session.query(User).filter(
            User.role.in_(sorted(ADMIN_ROLES)),
            User.is_active.is_(True),
        ).all()

        count = self._deliver(
            admins,
            type_=NOTIFICATION_STOCK_ALERT,
            title=title,
            body=body,
            data={
                "type": NOTIFICATION_STOCK_ALERT,
                "alert_type": alert.alert_type,
                "product_id": alert.product_id,
                "product_name": alert.product_name,
                "current_stock": alert.current_stock,
            },
        )
        db.session.commit()
        logger.info("Stock alert %s for product %s sent to %d admin(s)", alert.alert_type, alert.product_id, count)
        return count

    def notify_back_in_stock(self, product_id: int) -> int:
        """
        Fan out to shoppers waiting on this product and mark their requests
        notified. Returns the number of requests served.
        """
        requests = db.session.query(NotifyRequest).filter_by(
            product_id=product_id,
            notified=False,
        ).all()
        if not requests:
            return 0

        product = requests[0].product
        users = [r.user for r in requests if r.user is not None and r.user.is_active]
        self._deliver(
            users,
            type_=NOTIFICATION_BACK_IN_STOCK,
            title="Product Back in Stock!",
            body=f"{product.name_en} is now available. Order before it runs out!",
            data={
                "type": NOTIFICATION_BACK_IN_STOCK,
                "product_id": product_id,
                "product_name": product.name_en,
            },
        )

        now = utcnow()
        for r in requests:
            r.notified = True
            r.notified_at = now
        db.session.commit()
        return len(requests)
