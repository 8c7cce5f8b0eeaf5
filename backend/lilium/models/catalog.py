from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ZONES = ("KARKH", "RUSAFA")


def money(value):
    """Serialize a Numeric column value for JSON (None-safe)."""
    return float(value) if value is not None else None


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name_en = db.Column(db.String(255), nullable=False)
    name_ar = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name_en": self.name_en,
            "name_ar": self.name_ar,
            "is_active": self.is_active,
        }


class Company(db.Model):
    """
    A vendor company selling through the platform.

    commission_rate is a percentage (0-100) retained by the platform.
    NULL or 0 means "use the platform default" (DEFAULT_COMMISSION_RATE).
    """
    __tablename__ = "companies"
    __table_args__ = (
        db.CheckConstraint(
            "commission_rate IS NULL OR (commission_rate >= 0 AND commission_rate <= 100)",
            name="ck_companies_commission_rate",
        ),
        db.Index("ix_companies_name_en", "name_en"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name_en = db.Column(db.String(255), nullable=False)
    name_ar = db.Column(db.String(255), nullable=False)
    commission_rate = db.Column(db.Numeric(5, 2), nullable=True)

    # Zone codes the company delivers to, and a per-zone delivery fee table
    zones = db.Column(db.JSON, nullable=False, default=list)
    delivery_fees = db.Column(db.JSON, nullable=False, default=dict)
    min_order_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Company id={self.id} name_en={self.name_en!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name_en": self.name_en,
            "name_ar": self.name_ar,
            "commission_rate": money(self.commission_rate),
            "zones": list(self.zones or []),
            "delivery_fees": dict(self.delivery_fees or {}),
            "min_order_amount": money(self.min_order_amount),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Product(db.Model):
    """
    Product master data.

    STOCK: Product.stock is the current on-hand count. It is only written by
    InventoryService, always together with a StockHistory row, and can never
    go below zero (enforced in the service and by a CHECK constraint).

    CONCURRENCY: version_id is an optimistic-locking counter. A stale write
    raises StaleDataError, which the inventory service retries.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_company_active", "company_id", "is_active"),
        db.Index("ix_products_active_stock", "is_active", "stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)

    name_en = db.Column(db.String(255), nullable=False)
    name_ar = db.Column(db.String(255), nullable=False)
    description_en = db.Column(db.Text, nullable=True)
    description_ar = db.Column(db.Text, nullable=True)

    price = db.Column(db.Numeric(12, 2), nullable=False)
    cost = db.Column(db.Numeric(12, 2), nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)
    unit = db.Column(db.String(32), nullable=False, default="piece")

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    zones = db.Column(db.JSON, nullable=False, default=list)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_featured = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    company = db.relationship("Company", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock}>"

    def in_zone(self, zone: str | None) -> bool:
        return zone is None or zone in (self.zones or [])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name_en": self.name_en,
            "name_ar": self.name_ar,
            "description_en": self.description_en,
            "description_ar": self.description_ar,
            "price": money(self.price),
            "cost": money(self.cost),
            "stock": self.stock,
            "unit": self.unit,
            "category_id": self.category_id,
            "company_id": self.company_id,
            "zones": list(self.zones or []),
            "is_active": self.is_active,
            "is_featured": self.is_featured,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
