from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


STOCK_EVENT_TYPES = ("restock", "adjustment", "return", "sale")


class StockHistory(db.Model):
    """
    Append-only audit trail of stock-affecting events.

    Invariant: new_stock == previous_stock + quantity (quantity is negative
    for sales). Rows are written in the same DB transaction as the
    Product.stock change they describe and are never updated or deleted.
    """
    __tablename__ = "stock_history"
    __table_args__ = (
        db.CheckConstraint("new_stock = previous_stock + quantity", name="ck_stock_history_delta"),
        db.Index("ix_stock_history_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    # Order id for sale/return rows
    reference = db.Column(db.String(64), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_history", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reference": self.reference,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class NotifyRequest(db.Model):
    """A shopper's "notify me when back in stock" subscription."""
    __tablename__ = "notify_requests"
    __table_args__ = (
        db.UniqueConstraint("user_id", "product_id", name="uq_notify_requests_user_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    notified = db.Column(db.Boolean, nullable=False, default=False)
    notified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User")
    product = db.relationship("Product", backref=db.backref("notify_requests", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "notified": self.notified,
            "notified_at": to_utc_z(self.notified_at) if self.notified_at else None,
            "created_at": to_utc_z(self.created_at),
        }
