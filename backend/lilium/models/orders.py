from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z
from .catalog import money


# Order lifecycle states
ORDER_PENDING = "PENDING"
ORDER_CONFIRMED = "CONFIRMED"
ORDER_ACCEPTED = "ACCEPTED"
ORDER_PREPARING = "PREPARING"
ORDER_ON_THE_WAY = "ON_THE_WAY"
ORDER_SHIPPED = "SHIPPED"
ORDER_DELIVERED = "DELIVERED"
ORDER_CANCELLED = "CANCELLED"
ORDER_REFUNDED = "REFUNDED"

ORDER_STATUSES = (
    ORDER_PENDING,
    ORDER_CONFIRMED,
    ORDER_ACCEPTED,
    ORDER_PREPARING,
    ORDER_ON_THE_WAY,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
    ORDER_REFUNDED,
)

PAYMENT_CASH_ON_DELIVERY = "CASH_ON_DELIVERY"
PAYMENT_ONLINE = "ONLINE"

PAYMENT_STATUS_PENDING = "PENDING"
PAYMENT_STATUS_PAID = "PAID"


class Order(db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_company_status", "company_id", "status"),
        db.Index("ix_orders_status_delivered", "status", "delivered_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    zone = db.Column(db.String(16), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING, index=True)

    payment_method = db.Column(db.String(32), nullable=False, default=PAYMENT_CASH_ON_DELIVERY)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING)

    assigned_driver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    collected_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    company = db.relationship("Company")

    @property
    def is_cash_on_delivery(self) -> bool:
        return self.payment_method == PAYMENT_CASH_ON_DELIVERY

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PAYMENT_STATUS_PAID

    def items_total(self, company_id: int | None = None) -> Decimal:
        """Sum of price * quantity, optionally only for one company's items."""
        return sum(
            (item.line_total for item in self.items
             if company_id is None or item.product.company_id == company_id),
            Decimal("0"),
        )

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "company_id": self.company_id,
            "zone": self.zone,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "assigned_driver_id": self.assigned_driver_id,
            "total": money(self.items_total()),
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "collected_by": self.collected_by,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Line item; price is the unit price captured when the order was placed."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name_en = db.Column(db.String(255), nullable=True)
    name_ar = db.Column(db.String(255), nullable=True)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    @property
    def line_total(self) -> Decimal:
        return Decimal(str(self.price)) * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "name_en": self.name_en,
            "name_ar": self.name_ar,
            "price": money(self.price),
            "quantity": self.quantity,
            "total": money(self.line_total),
        }


class OrderStatusHistory(db.Model):
    __tablename__ = "order_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=False)
    comment = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "comment": self.comment,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
