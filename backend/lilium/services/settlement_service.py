# Overview: Service-layer operations for settlements and cash-on-delivery reconciliation.

"""
Settlement rules

Revenue attribution:
- An order can carry items from several companies; a company's revenue for
  an order is sum(price * quantity) over its own items only.
- Settlements consider DELIVERED orders by delivered_at; summaries consider
  every order by created_at.

Commission:
- Company.commission_rate is a percentage (0-100). Unset or zero falls back
  to the configured default (10%).
- commission = revenue * rate, payout = revenue - commission, both rounded
  to 2 decimals (half up).
- cash_to_remit = cash_collected * rate is what a company owes the platform
  for COD cash it already holds.

Cash collection:
- mark_cash_collected is the only mutation of order payment state here. It
  refuses a second collection, so each COD order is marked PAID at most once.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AmountMismatchError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
)
from ..extensions import db
from ..models import Company, Order, OrderItem, Product, Settlement
from ..models.catalog import money
from ..models.orders import (
    ORDER_ACCEPTED,
    ORDER_DELIVERED,
    ORDER_ON_THE_WAY,
    ORDER_PREPARING,
    PAYMENT_CASH_ON_DELIVERY,
    PAYMENT_STATUS_PAID,
)
from ..models.settlements import (
    SETTLEMENT_DISPUTED,
    SETTLEMENT_PENDING,
    SETTLEMENT_SETTLED,
    SETTLEMENT_VERIFIED,
)
from ..time_utils import days_between, start_of_day, to_utc_z, utcnow
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


CENT = Decimal("0.01")

# COD orders on their way to the customer; their cash is still to be collected.
IN_FLIGHT_STATUSES = (
    ORDER_ACCEPTED,
    ORDER_PREPARING,
    ORDER_ON_THE_WAY,
)

SUMMARY_DEFAULT_DAYS = 30


def _round(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _company_orders_query(company_id: int):
    """Orders holding at least one item of the company."""
    return db.session.query(Order).filter(
        Order.items.any(OrderItem.product.has(Product.company_id == company_id))
    )


class SettlementService:
    def __init__(self, default_commission_rate=Decimal("10"), cash_tolerance=Decimal("0.01")):
        self.default_commission_rate = Decimal(str(default_commission_rate))
        self.cash_tolerance = Decimal(str(cash_tolerance))

    @classmethod
    def from_config(cls, config=None) -> "SettlementService":
        config = config if config is not None else current_app.config
        return cls(
            default_commission_rate=config.get("DEFAULT_COMMISSION_RATE", "10"),
            cash_tolerance=config.get("CASH_AMOUNT_TOLERANCE", "0.01"),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def commission_percent(self, company: Company | None) -> Decimal:
        if company is not None and company.commission_rate:
            return Decimal(str(company.commission_rate))
        return self.default_commission_rate

    def _get_company(self, company_id: int) -> Company:
        company = db.session.get(Company, company_id)
        if company is None:
            raise NotFoundError("Company not found", company_id=company_id)
        return company

    def get_settlement(self, settlement_id: int) -> Settlement:
        settlement = db.session.get(Settlement, settlement_id)
        if settlement is None:
            raise NotFoundError("Settlement not found", settlement_id=settlement_id)
        return settlement

    # ------------------------------------------------------------------
    # Settlements
    # ------------------------------------------------------------------

    def create_settlement(self, company_id: int, period_start: datetime, period_end: datetime) -> Settlement:
        if period_start > period_end:
            raise InvalidStateError("period_start must not be after period_end")

        company = self._get_company(company_id)

        existing = db.session.query(Settlement).filter_by(
            company_id=company_id,
            period_start=period_start,
            period_end=period_end,
        ).first()
        if existing is not None:
            raise ConflictError(
                "Settlement already exists for this period",
                settlement_id=existing.id,
            )

        orders = _company_orders_query(company_id).filter(
            Order.status == ORDER_DELIVERED,
            Order.delivered_at >= period_start,
            Order.delivered_at <= period_end,
        ).all()

        total_revenue = Decimal("0")
        cash_collected = Decimal("0")
        for order in orders:
            revenue = order.items_total(company_id)
            total_revenue += revenue
            if order.is_cash_on_delivery and order.is_paid:
                cash_collected += revenue

        percent = self.commission_percent(company)
        rate = percent / 100
        total_commission = _round(total_revenue * rate)

        settlement = Settlement(
            company_id=company_id,
            period_start=period_start,
            period_end=period_end,
            total_orders=len(orders),
            total_revenue=total_revenue,
            total_commission=total_commission,
            total_payout=total_revenue - total_commission,
            cash_collected=cash_collected,
            cash_to_remit=_round(cash_collected * rate),
            commission_rate=percent,
            status=SETTLEMENT_PENDING,
            created_at=utcnow(),
        )
        db.session.add(settlement)
        try:
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise ConflictError("Settlement already exists for this period") from e

        logger.info(
            "Settlement created: company=%s period=%s..%s orders=%s revenue=%s",
            company_id, period_start.isoformat(), period_end.isoformat(), len(orders), total_revenue,
        )
        return settlement

    def process_daily_settlement(self, company_id: int, day: datetime | None = None) -> Settlement:
        """Settle one UTC day, 00:00 through 23:59:59.999999."""
        start = start_of_day(day or utcnow())
        end = start + timedelta(days=1) - timedelta(microseconds=1)
        return self.create_settlement(company_id, start, end)

    def verify_settlement(self, settlement_id: int, verified_by: int, notes: str | None = None) -> Settlement:
        settlement = self.get_settlement(settlement_id)
        if settlement.status != SETTLEMENT_PENDING:
            raise InvalidStateError(
                "Only pending settlements can be verified",
                status=settlement.status,
            )

        settlement.status = SETTLEMENT_VERIFIED
        settlement.verified_by = verified_by
        settlement.verified_at = utcnow()
        if notes:
            settlement.notes = notes
        db.session.commit()
        logger.info("Settlement %s verified by user=%s", settlement_id, verified_by)
        return settlement

    def settle_settlement(self, settlement_id: int) -> Settlement:
        settlement = self.get_settlement(settlement_id)
        if settlement.status != SETTLEMENT_VERIFIED:
            raise InvalidStateError(
                "Only verified settlements can be settled",
                status=settlement.status,
            )

        settlement.status = SETTLEMENT_SETTLED
        settlement.settled_at = utcnow()
        db.session.commit()
        logger.info("Settlement %s settled", settlement_id)
        return settlement

    def dispute_settlement(self, settlement_id: int, notes: str | None = None) -> Settlement:
        settlement = self.get_settlement(settlement_id)
        if settlement.status not in (SETTLEMENT_PENDING, SETTLEMENT_VERIFIED):
            raise InvalidStateError(
                "Only pending or verified settlements can be disputed",
                status=settlement.status,
            )

        settlement.status = SETTLEMENT_DISPUTED
        if notes:
            settlement.notes = notes
        db.session.commit()
        logger.info("Settlement %s disputed", settlement_id)
        return settlement

    def get_settlement_history(self, company_id: int, limit: int = 10) -> list[Settlement]:
        return db.session.query(Settlement).filter_by(company_id=company_id).order_by(
            Settlement.period_end.desc(),
            Settlement.id.desc(),
        ).limit(limit).all()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_settlement_summary(
        self,
        company_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict:
        """
        Dashboard figures for one company over a window (default: last 30 days).
        """
        end = end or utcnow()
        start = start or end - timedelta(days=SUMMARY_DEFAULT_DAYS)
        if start > end:
            raise InvalidStateError("start must not be after end")

        company = self._get_company(company_id)
        orders = _company_orders_query(company_id).filter(
            Order.created_at >= start,
            Order.created_at <= end,
        ).all()

        delivered = [o for o in orders if o.status == ORDER_DELIVERED]
        cash_orders = [o for o in orders if o.is_cash_on_delivery]
        online_orders = [o for o in orders if not o.is_cash_on_delivery]

        def revenue_of(selection) -> Decimal:
            return sum((o.items_total(company_id) for o in selection), Decimal("0"))

        total_revenue = revenue_of(delivered)
        cash_collected = revenue_of(o for o in delivered if o.is_cash_on_delivery and o.is_paid)
        pending_cash = revenue_of(o for o in delivered if o.is_cash_on_delivery and not o.is_paid)
        online_payments = revenue_of(o for o in delivered if not o.is_cash_on_delivery)
        to_collect = revenue_of(o for o in cash_orders if o.status in IN_FLIGHT_STATUSES)

        rate = self.commission_percent(company) / 100
        platform_commission = _round(total_revenue * rate)

        remitted = sum(
            (Decimal(str(s.cash_to_remit)) for s in db.session.query(Settlement).filter(
                Settlement.company_id == company_id,
                Settlement.status == SETTLEMENT_SETTLED,
                Settlement.period_start <= end,
                Settlement.period_end >= start,
            )),
            Decimal("0"),
        )

        return {
            "company_id": company_id,
            "period": {"start": to_utc_z(start), "end": to_utc_z(end)},
            "orders": {
                "total": len(orders),
                "delivered": len(delivered),
                "cash": len(cash_orders),
                "online": len(online_orders),
            },
            "financials": {
                "total_revenue": money(total_revenue),
                "cash_collected": money(cash_collected),
                "online_payments": money(online_payments),
                "platform_commission": money(platform_commission),
                "vendor_payout": money(total_revenue - platform_commission),
                "pending_cash": money(pending_cash),
                "commission_rate": money(self.commission_percent(company)),
            },
            "cash_flow": {
                "to_collect": money(to_collect),
                "collected": money(cash_collected),
                "to_remit": money(_round(cash_collected * rate)),
                "remitted": money(remitted),
            },
        }

    def reconcile_cash(self, company_id: int, start: datetime, end: datetime) -> list[dict]:
        """Read-only: one row per DELIVERED COD order in the window."""
        self._get_company(company_id)
        orders = _company_orders_query(company_id).filter(
            Order.status == ORDER_DELIVERED,
            Order.payment_method == PAYMENT_CASH_ON_DELIVERY,
            Order.delivered_at >= start,
            Order.delivered_at <= end,
        ).order_by(Order.delivered_at.asc(), Order.id.asc()).all()

        rows = []
        for order in orders:
            amount = order.items_total(company_id)
            verified = order.is_paid
            rows.append({
                "order_id": order.id,
                "order_number": order.order_number,
                "order_amount": money(amount),
                "cash_collected": money(amount if verified else Decimal("0")),
                "collected_by": order.collected_by,
                "collected_at": to_utc_z(order.paid_at) if order.paid_at else None,
                "verified": verified,
                "discrepancy": money(Decimal("0") if verified else amount),
                "notes": None if verified else "Cash not yet marked as collected",
            })
        return rows

    def get_pending_cash_collections(self, company_id: int) -> list[dict]:
        orders = _company_orders_query(company_id).filter(
            Order.status == ORDER_DELIVERED,
            Order.payment_method == PAYMENT_CASH_ON_DELIVERY,
            Order.payment_status != PAYMENT_STATUS_PAID,
        ).order_by(Order.delivered_at.desc(), Order.id.desc()).all()

        now = utcnow()
        return [
            {
                **order.to_dict(include_items=False),
                "order_amount": money(order.items_total(company_id)),
                "days_pending": days_between(order.delivered_at, now) if order.delivered_at else 0,
            }
            for order in orders
        ]

    def calculate_platform_earnings(self, start: datetime, end: datetime) -> dict:
        """
        Cross-company totals over DELIVERED orders, each item attributed with
        its own company's commission rate.
        """
        if start > end:
            raise InvalidStateError("start must not be after end")

        orders = db.session.query(Order).filter(
            Order.status == ORDER_DELIVERED,
            Order.delivered_at >= start,
            Order.delivered_at <= end,
        ).all()

        total_revenue = Decimal("0")
        total_commission = Decimal("0")
        by_company: dict[int, dict] = {}

        for order in orders:
            for item in order.items:
                company = item.product.company if item.product else None
                if company is None:
                    continue
                revenue = item.line_total
                commission = revenue * self.commission_percent(company) / 100
                total_revenue += revenue
                total_commission += commission

                entry = by_company.setdefault(company.id, {
                    "company_id": company.id,
                    "company_name": company.name_en,
                    "revenue": Decimal("0"),
                    "commission": Decimal("0"),
                    "order_ids": set(),
                })
                entry["revenue"] += revenue
                entry["commission"] += commission
                entry["order_ids"].add(order.id)

        average_rate = (total_commission / total_revenue * 100) if total_revenue else Decimal("0")

        return {
            "period": {"start": to_utc_z(start), "end": to_utc_z(end)},
            "total_orders": len(orders),
            "total_revenue": money(total_revenue),
            "total_commission": money(_round(total_commission)),
            "average_commission_rate": money(_round(average_rate)),
            "by_company": [
                {
                    "company_id": entry["company_id"],
                    "company_name": entry["company_name"],
                    "orders": len(entry["order_ids"]),
                    "revenue": money(entry["revenue"]),
                    "commission": money(_round(entry["commission"])),
                }
                for entry in sorted(by_company.values(), key=lambda e: e["revenue"], reverse=True)
            ],
        }

    # ------------------------------------------------------------------
    # Cash collection
    # ------------------------------------------------------------------

    def mark_cash_collected(self, order_id: int, amount, collected_by: int | None = None) -> Order:
        """
        Record that a driver handed in the cash for a delivered COD order.

        The amount must match the order total within the configured tolerance;
        partial or over payments are rejected, not recorded.
        """
        received = Decimal(str(amount))

        def _op():
            order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
            if order is None:
                raise NotFoundError("Order not found", order_id=order_id)
            if not order.is_cash_on_delivery:
                raise InvalidStateError("Order is not cash on delivery", payment_method=order.payment_method)
            if order.status != ORDER_DELIVERED:
                raise InvalidStateError("Order must be delivered before collecting cash", status=order.status)
            if order.is_paid:
                raise ConflictError("Cash already collected for this order", paid_at=to_utc_z(order.paid_at))

            expected = order.items_total()
            if abs(received - expected) > self.cash_tolerance:
                raise AmountMismatchError(expected=expected, received=received)

            order.payment_status = PAYMENT_STATUS_PAID
            order.paid_at = utcnow()
            order.collected_by = collected_by
            db.session.commit()
            return order

        try:
            order = run_with_retry(_op)
        except Exception:
            db.session.rollback()
            raise

        logger.info("Cash collection recorded: order=%s amount=%s by user=%s", order_id, received, collected_by)
        return order
