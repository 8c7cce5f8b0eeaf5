from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .catalog import money


SETTLEMENT_PENDING = "PENDING"
SETTLEMENT_VERIFIED = "VERIFIED"
SETTLEMENT_SETTLED = "SETTLED"
SETTLEMENT_DISPUTED = "DISPUTED"

SETTLEMENT_STATUSES = (
    SETTLEMENT_PENDING,
    SETTLEMENT_VERIFIED,
    SETTLEMENT_SETTLED,
    SETTLEMENT_DISPUTED,
)


class Settlement(db.Model):
    """
    Financial summary for one company over one period.

    Figures are computed once at creation from DELIVERED orders and frozen.
    A company can have only one settlement per exact period:
    UniqueConstraint("company_id", "period_start", "period_end").

    Cash semantics:
    - total_payout: what the platform owes the company (revenue - commission)
    - cash_to_remit: the platform's commission on COD cash already in the
      company's hands, i.e. what the company owes the platform
    """
    __tablename__ = "settlements"
    __table_args__ = (
        db.UniqueConstraint("company_id", "period_start", "period_end", name="uq_settlements_company_period"),
        db.Index("ix_settlements_company_status", "company_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    period_start = db.Column(db.DateTime(timezone=True), nullable=False)
    period_end = db.Column(db.DateTime(timezone=True), nullable=False)

    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_revenue = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_commission = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_payout = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    cash_collected = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    cash_to_remit = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    commission_rate = db.Column(db.Numeric(5, 2), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=SETTLEMENT_PENDING, index=True)
    notes = db.Column(db.Text, nullable=True)

    verified_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("settlements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "period_start": to_utc_z(self.period_start),
            "period_end": to_utc_z(self.period_end),
            "total_orders": self.total_orders,
            "total_revenue": money(self.total_revenue),
            "total_commission": money(self.total_commission),
            "total_payout": money(self.total_payout),
            "cash_collected": money(self.cash_collected),
            "cash_to_remit": money(self.cash_to_remit),
            "commission_rate": money(self.commission_rate),
            "status": self.status,
            "notes": self.notes,
            "verified_by": self.verified_by,
            "verified_at": to_utc_z(self.verified_at) if self.verified_at else None,
            "settled_at": to_utc_z(self.settled_at) if self.settled_at else None,
            "created_at": to_utc_z(self.created_at),
        }
