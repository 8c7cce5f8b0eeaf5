"""
Settlement and cash reconciliation tests.

Verifies:
- Revenue / commission / payout arithmetic and per-company attribution
- One settlement per company and period
- Cash collection is strict (amount tolerance, DELIVERED only, at most once)
- Summary, reconciliation, pending cash and platform earnings views
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from lilium.errors import (
    AmountMismatchError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
)
from lilium.extensions import db
from lilium.models import Order
from lilium.models.orders import (
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_ON_THE_WAY,
    ORDER_PENDING,
    ORDER_PREPARING,
    ORDER_SHIPPED,
    PAYMENT_ONLINE,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
)
from lilium.models.settlements import (
    SETTLEMENT_DISPUTED,
    SETTLEMENT_PENDING,
    SETTLEMENT_SETTLED,
    SETTLEMENT_VERIFIED,
)
from lilium.services.settlement_service import SettlementService
from lilium.time_utils import utcnow


PERIOD_START = datetime(2024, 5, 1)
PERIOD_END = datetime(2024, 5, 31, 23, 59, 59)
IN_PERIOD = datetime(2024, 5, 15, 12, 0)


@pytest.fixture
def settlements(db_session):
    return SettlementService(default_commission_rate="10", cash_tolerance="0.01")


@pytest.fixture
def item(make_product):
    """A product priced at 1 so order totals equal quantities (or explicit prices)."""
    return make_product(stock=0, price="1")


# =============================================================================
# create_settlement
# =============================================================================


class TestCreateSettlement:

    def test_splits_commission_and_payout(self, settlements, company, item, make_order):
        make_order([(item, 1, "100000")], status=ORDER_DELIVERED, delivered_at=IN_PERIOD,
                   payment_status=PAYMENT_STATUS_PAID)
        make_order([(item, 1, "50000")], status=ORDER_DELIVERED, delivered_at=IN_PERIOD,
                   payment_method=PAYMENT_ONLINE, payment_status=PAYMENT_STATUS_PAID)

        settlement = settlements.create_settlement(company.id, PERIOD_START, PERIOD_END)

        assert settlement.status == SETTLEMENT_PENDING
        assert settlement.total_orders == 2
        assert Decimal(settlement.total_revenue) == Decimal("150000")
        assert Decimal(settlement.total_commission) == Decimal("15000")
        assert Decimal(settlement.total_payout) == Decimal("135000")
        assert Decimal(settlement.cash_collected) == Decimal("100000")
        assert Decimal(settlement.cash_to_remit) == Decimal("10000")
        assert Decimal(settlement.commission_rate) == Decimal("10")

    def test_only_delivered_orders_inside_the_period_count(self, settlements, company, item, make_order):
        make_order([(item, 1, "1000")], status=ORDER_DELIVERED, delivered_at=IN_PERIOD)
        make_order([(item, 1, "7000")], status=ORDER_DELIVERED, delivered_at=datetime(2024, 6, 2))
        make_order([(item, 1, "9000")], status=ORDER_PREPARING)

        settlement = settlements.create_settlement(company.id, PERIOD_START, PERIOD_END)

        assert settlement.total_orders == 1
        assert Decimal(settlement.total_revenue) == Decimal("1000")
        assert Decimal(settlement.cash_collected) == Decimal("0")

    def test_mixed_company_order_counts_only_own_items(
        self, settlements, company, other_company, make_product, make_order
    ):
        ours = make_product(price="1000")
        theirs = make_product(price="500", company_id=other_company.id)
        make_order([(ours, 2), (theirs, 1)], status=ORDER_DELIVERED, delivered_at=IN_PERIOD)

        mine = settlements.create_settlement(company.id, PERIOD_START, PERIOD_END)
        other = settlements.create_settlement(other_company.id, PERIOD_START, PERIOD_END)

        assert Decimal(mine.total_revenue) == Decimal("2000")
        assert Decimal(other.total_revenue) == Decimal("500")

    def test_company_without_rate_uses_default(self, db_session, other_company, make_product, make_order):
        service = SettlementService(default_commission_rate="12")
        product = make_product(price="1000", company_id=other_company.id)
        make_order([(product, 1)], status=ORDER_DELIVERED, delivered_at=IN_PERIOD)

        settlement = service.create_settlement(other_company.id, PERIOD_START, PERIOD_END)

        assert Decimal(settlement.commission_rate) == Decimal("12")
        assert Decimal(settlement.total_commission) == Decimal("120")
        assert Decimal(settlement.total_payout) == Decimal("880")

    def test_same_period_twice_is_a_conflict(self, settlements, company):
        settlements.create_settlement(company.id, PERIOD_START, PERIOD_END)
        with pytest.raises(ConflictError):
            settlements.create_settlement(company.id, PERIOD_START, PERIOD_END)

    def test_start_after_end(self, settlements, company):
        with pytest.raises(InvalidStateError):
            settlements.create_settlement(company.id, PERIOD_END, PERIOD_START)

    def test_unknown_company(self, settlements):
        with pytest.raises(NotFoundError):
            settlements.create_settlement(9999, PERIOD_START, PERIOD_END)

    def test_daily_settlement_covers_one_day(self, settlements, company, item, make_order):
        make_order([(item, 1, "300")], status=ORDER_DELIVERED, delivered_at=datetime(2024, 5, 1, 10, 0))
        make_order([(item, 1, "900")], status=ORDER_DELIVERED, delivered_at=datetime(2024, 5, 2, 10, 0))

        settlement = settlements.process_daily_settlement(company.id, datetime(2024, 5, 1, 17, 30))

        assert settlement.period_start == datetime(2024, 5, 1)
        assert settlement.period_end == datetime(2024, 5, 1, 23, 59, 59, 999999)
        assert Decimal(settlement.total_revenue) == Decimal("300")

    def test_midnight_delivery_belongs_to_one_day_only(self, settlements, company, item, make_order):
        make_order([(item, 1, "700")], status=ORDER_DELIVERED, delivered_at=datetime(2024, 5, 2))

        first = settlements.process_daily_settlement(company.id, datetime(2024, 5, 1))
        second = settlements.process_daily_settlement(company.id, datetime(2024, 5, 2))

        assert first.total_orders == 0
        assert second.total_orders == 1
        assert Decimal(second.total_revenue) == Decimal("700")


# =============================================================================
# Settlement lifecycle
# =============================================================================


class TestSettlementLifecycle:

    def test_verify_then_settle(self, settlements, company, super_admin):
        settlement = settlements.create_settlement(company.id, PERIOD_START, PERIOD_END)

        verified = settlements.verify_settlement(settlement.id, super_admin.id, notes="Checked")
        assert verified.status == SETTLEMENT_VERIFIED
        assert verified.verified_by == super_admin.id
        assert verified.verified_at is not None
        assert verified.notes == "Checked"

        settled = settlements.settle_settlement(settlement.id)
        assert settled.status == SETTLEMENT_SETTLED
        assert settled.settled_at is not None

    def test_cannot_settle_before_verification(self, settlements, company):
        settlement = settlements.create_settlement(company.id, PERIOD_START, PERIOD_END)
        with pytest.raises(InvalidStateError):
            settlements.settle_settlement(settlement.id)

    def test_cannot_verify_twice(self, settlements, company, super_admin):
        settlement = settlements.create_settlement(company.id, PERIOD_START, PERIOD_END)
        settlements.verify_settlement(settlement.id, super_admin.id)
        with pytest.raises(InvalidStateError):
            settlements.verify_settlement(settlement.id, super_admin.id)

    def test_dispute_pending_but_not_settled(self, settlements, company, super_admin):
        disputed = settlements.create_settlement(company.id, PERIOD_START, PERIOD_END)
        assert settlements.dispute_settlement(disputed.id, "Missing order").status == SETTLEMENT_DISPUTED

        settled = settlements.create_settlement(company.id, datetime(2024, 6, 1), datetime(2024, 6, 30))
        settlements.verify_settlement(settled.id, super_admin.id)
        settlements.settle_settlement(settled.id)
        with pytest.raises(InvalidStateError):
            settlements.dispute_settlement(settled.id)

    def test_unknown_settlement(self, settlements):
        with pytest.raises(NotFoundError):
            settlements.verify_settlement(9999, 1)

    def test_history_newest_period_first(self, settlements, company):
        may = settlements.create_settlement(company.id, PERIOD_START, PERIOD_END)
        june = settlements.create_settlement(company.id, datetime(2024, 6, 1), datetime(2024, 6, 30))

        history = settlements.get_settlement_history(company.id, limit=10)

        assert [s.id for s in history] == [june.id, may.id]
        assert len(settlements.get_settlement_history(company.id, limit=1)) == 1


# =============================================================================
# mark_cash_collected
# =============================================================================


class TestMarkCashCollected:

    def test_exact_amount_marks_paid(self, settlements, item, make_order, vendor):
        order = make_order([(item, 3, "50000")], status=ORDER_DELIVERED, delivered_at=IN_PERIOD)

        result = settlements.mark_cash_collected(order.id, Decimal("150000"), collected_by=vendor.id)

        assert result.payment_status == PAYMENT_STATUS_PAID
        assert result.paid_at is not None
        assert result.collected_by == vendor.id

    def test_within_tolerance_is_accepted(self, settlements, item, make_order):
        order = make_order([(item, 1, "1000")], status=ORDER_DELIVERED, delivered_at=IN_PERIOD)
        result = settlements.mark_cash_collected(order.id, "1000.01")
        assert result.payment_status == PAYMENT_STATUS_PAID

    def test_amount_mismatch_is_rejected(self, settlements, item, make_order):
        order = make_order([(item, 1, "1000")], status=ORDER_DELIVERED, delivered_at=IN_PERIOD)

        with pytest.raises(AmountMismatchError) as exc:
            settlements.mark_cash_collected(order.id, "1000.02")

        assert exc.value.details["expected"] == "1000.00"
        assert db.session.get(Order, order.id).payment_status == PAYMENT_STATUS_PENDING

    def test_not_delivered_is_rejected_even_with_exact_amount(self, settlements, item, make_order):
        order = make_order([(item, 1, "1000")], status=ORDER_PREPARING)

        with pytest.raises(InvalidStateError):
            settlements.mark_cash_collected(order.id, "1000")

        assert db.session.get(Order, order.id).payment_status == PAYMENT_STATUS_PENDING

    def test_online_order_is_rejected(self, settlements, item, make_order):
        order = make_order([(item, 1, "1000")], status=ORDER_DELIVERED, payment_method=PAYMENT_ONLINE)
        with pytest.raises(InvalidStateError):
            settlements.mark_cash_collected(order.id, "1000")

    def test_second_collection_is_a_conflict(self, settlements, item, make_order):
        order = make_order([(item, 1, "1000")], status=ORDER_DELIVERED, delivered_at=IN_PERIOD)
        settlements.mark_cash_collected(order.id, "1000")

        with pytest.raises(ConflictError):
            settlements.mark_cash_collected(order.id, "1000")

    def test_unknown_order(self, settlements):
        with pytest.raises(NotFoundError):
            settlements.mark_cash_collected(9999, "1")


# =============================================================================
# Reporting views
# =============================================================================


class TestCashViews:

    def test_pending_cash_collections(self, settlements, company, item, make_order):
        now = utcnow()
        older = make_order([(item, 1, "100")], status=ORDER_DELIVERED, delivered_at=now - timedelta(days=3, hours=1))
        newer = make_order([(item, 1, "200")], status=ORDER_DELIVERED, delivered_at=now - timedelta(hours=5))
        make_order([(item, 1, "300")], status=ORDER_DELIVERED, delivered_at=now, payment_status=PAYMENT_STATUS_PAID)
        make_order([(item, 1, "400")], status=ORDER_DELIVERED, delivered_at=now, payment_method=PAYMENT_ONLINE)

        rows = settlements.get_pending_cash_collections(company.id)

        assert [r["id"] for r in rows] == [newer.id, older.id]
        assert rows[0]["days_pending"] == 0
        assert rows[1]["days_pending"] == 3
        assert rows[1]["order_amount"] == 100.0

    def test_reconcile_cash(self, settlements, company, item, make_order):
        paid = make_order([(item, 1, "500")], status=ORDER_DELIVERED, delivered_at=IN_PERIOD,
                          payment_status=PAYMENT_STATUS_PAID)
        unpaid = make_order([(item, 1, "250")], status=ORDER_DELIVERED, delivered_at=IN_PERIOD)
        make_order([(item, 1, "999")], status=ORDER_DELIVERED, delivered_at=IN_PERIOD, payment_method=PAYMENT_ONLINE)

        rows = {r["order_id"]: r for r in settlements.reconcile_cash(company.id, PERIOD_START, PERIOD_END)}

        assert set(rows) == {paid.id, unpaid.id}
        assert rows[paid.id]["verified"] is True
        assert rows[paid.id]["discrepancy"] == 0.0
        assert rows[unpaid.id]["verified"] is False
        assert rows[unpaid.id]["discrepancy"] == 250.0
        # Reporting only
        assert db.session.get(Order, unpaid.id).payment_status == PAYMENT_STATUS_PENDING

    def test_settlement_summary(self, settlements, company, item, make_order, super_admin):
        start = utcnow() - timedelta(days=7)
        end = utcnow()
        recent = utcnow() - timedelta(days=1)

        make_order([(item, 1, "1000")], status=ORDER_DELIVERED, created_at=recent, delivered_at=recent,
                   payment_status=PAYMENT_STATUS_PAID)
        make_order([(item, 1, "500")], status=ORDER_DELIVERED, created_at=recent, delivered_at=recent)
        make_order([(item, 1, "2000")], status=ORDER_DELIVERED, created_at=recent, delivered_at=recent,
                   payment_method=PAYMENT_ONLINE, payment_status=PAYMENT_STATUS_PAID)
        make_order([(item, 1, "700")], status=ORDER_PREPARING, created_at=recent)
        make_order([(item, 1, "800")], status=ORDER_PENDING, created_at=recent)
        make_order([(item, 1, "9999")], status=ORDER_DELIVERED, created_at=start - timedelta(days=5))

        settled = settlements.create_settlement(company.id, start, end)
        settlements.verify_settlement(settled.id, super_admin.id)
        settlements.settle_settlement(settled.id)

        summary = settlements.get_settlement_summary(company.id, start, end)

        assert summary["orders"] == {"total": 5, "delivered": 3, "cash": 4, "online": 1}
        financials = summary["financials"]
        assert financials["total_revenue"] == 3500.0
        assert financials["cash_collected"] == 1000.0
        assert financials["online_payments"] == 2000.0
        assert financials["pending_cash"] == 500.0
        assert financials["platform_commission"] == 350.0
        assert financials["vendor_payout"] == 3150.0
        cash_flow = summary["cash_flow"]
        assert cash_flow["to_collect"] == 700.0
        assert cash_flow["collected"] == 1000.0
        assert cash_flow["to_remit"] == 100.0
        assert cash_flow["remitted"] == 100.0

    def test_summary_counts_any_non_cash_method_as_online(self, settlements, company, item, make_order):
        recent = utcnow() - timedelta(days=1)
        make_order([(item, 1, "300")], status=ORDER_DELIVERED, created_at=recent, delivered_at=recent,
                   payment_method="CARD", payment_status=PAYMENT_STATUS_PAID)

        summary = settlements.get_settlement_summary(company.id)

        assert summary["orders"] == {"total": 1, "delivered": 1, "cash": 0, "online": 1}
        assert summary["financials"]["total_revenue"] == 300.0
        assert summary["financials"]["online_payments"] == 300.0
        assert summary["financials"]["cash_collected"] == 0.0

    def test_confirmed_and_shipped_cod_orders_are_not_yet_to_collect(self, settlements, company, item, make_order):
        recent = utcnow() - timedelta(days=1)
        make_order([(item, 1, "400")], status=ORDER_CONFIRMED, created_at=recent)
        make_order([(item, 1, "600")], status=ORDER_SHIPPED, created_at=recent)
        make_order([(item, 1, "50")], status=ORDER_ON_THE_WAY, created_at=recent)

        summary = settlements.get_settlement_summary(company.id)

        assert summary["cash_flow"]["to_collect"] == 50.0

    def test_summary_period_is_serialized_as_utc(self, settlements, company):
        summary = settlements.get_settlement_summary(company.id, PERIOD_START, PERIOD_END)

        assert summary["period"] == {"start": "2024-05-01T00:00:00Z", "end": "2024-05-31T23:59:59Z"}

    def test_summary_defaults_to_last_30_days(self, settlements, company, item, make_order):
        make_order([(item, 1, "100")], status=ORDER_DELIVERED, created_at=utcnow() - timedelta(days=10))
        make_order([(item, 1, "100")], status=ORDER_DELIVERED, created_at=utcnow() - timedelta(days=40))

        summary = settlements.get_settlement_summary(company.id)

        assert summary["orders"]["total"] == 1

    def test_platform_earnings_uses_each_company_rate(
        self, db_session, company, other_company, make_product, make_order
    ):
        service = SettlementService(default_commission_rate="20")
        ours = make_product(price="1000")
        theirs = make_product(price="500", company_id=other_company.id)
        make_order([(ours, 1), (theirs, 1)], status=ORDER_DELIVERED, delivered_at=IN_PERIOD)
        make_order([(ours, 1)], status=ORDER_DELIVERED, delivered_at=datetime(2023, 1, 1))

        earnings = service.calculate_platform_earnings(PERIOD_START, PERIOD_END)

        assert earnings["total_orders"] == 1
        assert earnings["total_revenue"] == 1500.0
        assert earnings["total_commission"] == 200.0
        assert earnings["average_commission_rate"] == 13.33
        assert [row["company_id"] for row in earnings["by_company"]] == [company.id, other_company.id]
        assert earnings["by_company"][1]["commission"] == 100.0
