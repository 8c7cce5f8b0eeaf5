# Overview: Service-layer operations for inventory; the only writer of Product.stock.

"""
Lilium Inventory Stock Ledger Invariants (authoritative)

Stock model:
- Product.stock is the current on-hand count and never goes below zero.
- Every change to Product.stock writes exactly one StockHistory row in the
  same DB transaction: new_stock == previous_stock + quantity.
- StockHistory is append-only (no updates/deletes).

Update types:
- RESTOCK / RETURN: quantity is a delta added to the current stock.
- ADJUSTMENT: quantity is the new absolute stock; the history row records
  the effective delta.
- sale (order deduction): clamps at zero instead of failing; the history
  row records the delta actually applied.

Concurrency:
- The product row is read with SELECT ... FOR UPDATE and carries an
  optimistic version_id. A concurrent writer surfaces as StaleDataError and
  the whole read-compute-write is retried, so no update is lost.

Alerts (evaluated after commit, first match wins, one alert per product):
1. previous == 0 and new > 0                    -> BACK_IN_STOCK (+ notify-me fan-out)
2. previous > 0 and new == 0                    -> OUT_OF_STOCK
3. previous > low and 0 < new <= low            -> LOW_STOCK
Order deductions never raise BACK_IN_STOCK.

Dispatch is fire-and-forget: a failing notifier is logged, the stock change
stays committed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..errors import InvalidStateError, NotFoundError, ServiceError
from ..extensions import db
from ..models import Order, OrderItem, Product, StockHistory, NotifyRequest
from ..models.catalog import money
from ..models.orders import ORDER_CANCELLED, ORDER_REFUNDED
from ..time_utils import utcnow
from ..validation import Field, PayloadPolicy, ValidationError, validate_payload
from .concurrency import lock_for_update, run_with_retry
from .notification_service import (
    ALERT_BACK_IN_STOCK,
    ALERT_LOW_STOCK,
    ALERT_OUT_OF_STOCK,
    NotificationService,
    StockAlert,
)

logger = logging.getLogger(__name__)


UPDATE_RESTOCK = "RESTOCK"
UPDATE_ADJUSTMENT = "ADJUSTMENT"
UPDATE_RETURN = "RETURN"
UPDATE_TYPES = (UPDATE_RESTOCK, UPDATE_ADJUSTMENT, UPDATE_RETURN)

STOCK_UPDATE_POLICY = PayloadPolicy(fields={
    "product_id": Field("int", required=True),
    "quantity": Field("int", required=True),
    "type": Field("str", required=True, choices=UPDATE_TYPES),
    "notes": Field("str", max_length=500),
})

HISTORY_SALE = "sale"
HISTORY_RETURN = "return"


@dataclass(frozen=True)
class StockThresholds:
    low: int = 10
    critical: int = 5
    restock_runway_days: int = 14
    restock_cover_days: int = 30

    @classmethod
    def from_config(cls, config) -> "StockThresholds":
        return cls(
            low=int(config.get("LOW_STOCK_THRESHOLD", 10)),
            critical=int(config.get("CRITICAL_STOCK_THRESHOLD", 5)),
            restock_runway_days=int(config.get("RESTOCK_RUNWAY_DAYS", 14)),
            restock_cover_days=int(config.get("RESTOCK_COVER_DAYS", 30)),
        )


@dataclass(frozen=True)
class StockChange:
    """Snapshot of one committed stock transition, used for alerting."""
    product_id: int
    name_en: str
    name_ar: str
    previous_stock: int
    new_stock: int


@dataclass
class StockUpdateResult:
    product: Product
    history: StockHistory
    alert_sent: bool

    def to_dict(self) -> dict:
        return {
            "product": self.product.to_dict(),
            "stock_history": self.history.to_dict(),
            "alert_sent": self.alert_sent,
        }


@dataclass
class OrderStockResult:
    """Outcome of deducting or restoring stock for a whole order."""
    order_id: int
    history: list[StockHistory] = field(default_factory=list)
    pending_alerts: list[tuple[StockChange, str]] = field(default_factory=list)
    alerts_sent: int = 0

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "stock_history": [h.to_dict() for h in self.history],
            "alerts_sent": self.alerts_sent,
        }


def _run_in_transaction(op):
    """run_with_retry, rolling back the session on any failure."""
    try:
        return run_with_retry(op)
    except Exception:
        db.session.rollback()
        raise


class InventoryService:
    def __init__(self, thresholds: StockThresholds | None = None, notifier: NotificationService | None = None):
        self.thresholds = thresholds or StockThresholds()
        self.notifier = notifier or NotificationService()

    @classmethod
    def from_config(cls, config=None, notifier: NotificationService | None = None) -> "InventoryService":
        config = config if config is not None else current_app.config
        return cls(StockThresholds.from_config(config), notifier)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_product(self, product_id: int, *, lock: bool = False) -> Product:
        query = db.session.query(Product).filter_by(id=product_id)
        if lock:
            query = lock_for_update(query)
        product = query.first()
        if product is None:
            raise NotFoundError("Product not found", product_id=product_id)
        return product

    def _get_order(self, order_id: int) -> Order:
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found", order_id=order_id)
        return order

    def _record(
        self,
        product: Product,
        new_stock: int,
        *,
        history_type: str,
        actor: int | None,
        reference: str | None = None,
        notes: str | None = None,
    ) -> tuple[StockHistory, StockChange]:
        """Set Product.stock and add the matching history row (flush, no commit)."""
        previous = product.stock
        product.stock = new_stock

        history = StockHistory(
            product_id=product.id,
            type=history_type,
            quantity=new_stock - previous,
            previous_stock=previous,
            new_stock=new_stock,
            reference=reference,
            notes=notes,
            created_by=actor,
            created_at=utcnow(),
        )
        db.session.add(history)
        db.session.flush()

        change = StockChange(
            product_id=product.id,
            name_en=product.name_en,
            name_ar=product.name_ar,
            previous_stock=previous,
            new_stock=new_stock,
        )
        return history, change

    def classify_alert(self, previous: int, new: int, *, allow_back_in_stock: bool = True) -> str | None:
        if allow_back_in_stock and previous == 0 and new > 0:
            return ALERT_BACK_IN_STOCK
        if previous > 0 and new == 0:
            return ALERT_OUT_OF_STOCK
        low = self.thresholds.low
        if previous > low and 0 < new <= low:
            return ALERT_LOW_STOCK
        return None

    def _dispatch(self, change: StockChange, alert_type: str) -> bool:
        """Send the admin stock alert; True when it went out.

        The back-in-stock fan-out to shop owners is attempted separately so a
        failure in one channel never suppresses the other.
        """
        if alert_type == ALERT_BACK_IN_STOCK:
            try:
                self.notifier.notify_back_in_stock(change.product_id)
            except Exception:
                db.session.rollback()
                logger.exception("Failed to notify shop owners that product %s is back in stock", change.product_id)

        try:
            self.notifier.send_stock_alert(StockAlert(
                product_id=change.product_id,
                product_name=change.name_en,
                product_name_ar=change.name_ar,
                current_stock=change.new_stock,
                alert_type=alert_type,
            ))
        except Exception:
            db.session.rollback()
            logger.exception("Failed to dispatch %s alert for product %s", alert_type, change.product_id)
            return False
        return True

    def dispatch_alerts(self, result: OrderStockResult) -> int:
        """Send alerts collected by an order deduction/restore after its commit."""
        sent = 0
        for change, alert_type in result.pending_alerts:
            if self._dispatch(change, alert_type):
                sent += 1
        result.pending_alerts = []
        result.alerts_sent += sent
        return sent

    # ------------------------------------------------------------------
    # Stock mutations
    # ------------------------------------------------------------------

    def update_stock(
        self,
        product_id: int,
        quantity: int,
        type: str,
        notes: str | None = None,
        actor: int | None = None,
    ) -> StockUpdateResult:
        """
        Apply a RESTOCK / RETURN (delta) or ADJUSTMENT (absolute value).

        Raises NotFoundError for an unknown product and InvalidStateError for
        an unknown type or a result below zero; nothing is written then.
        """
        update_type = (type or "").upper()
        if update_type not in UPDATE_TYPES:
            raise InvalidStateError("Invalid stock update type", type=type)

        def _op():
            product = self._get_product(product_id, lock=True)
            previous = product.stock
            if update_type == UPDATE_ADJUSTMENT:
                new_stock = quantity
            else:
                new_stock = previous + quantity

            if new_stock < 0:
                raise InvalidStateError(
                    "Stock cannot be negative",
                    product_id=product_id,
                    current_stock=previous,
                )

            history, change = self._record(
                product,
                new_stock,
                history_type=update_type.lower(),
                actor=actor,
                notes=notes,
            )
            db.session.commit()
            return product, history, change

        product, history, change = _run_in_transaction(_op)
        logger.info(
            "Stock updated: product=%s type=%s %s -> %s by user=%s",
            change.product_id, update_type, change.previous_stock, change.new_stock, actor,
        )

        alert_type = self.classify_alert(change.previous_stock, change.new_stock)
        alert_sent = self._dispatch(change, alert_type) if alert_type else False
        return StockUpdateResult(product=product, history=history, alert_sent=alert_sent)

    def bulk_update_stock(self, updates: list[dict], actor: int | None = None) -> dict:
        """
        Best-effort batch: every entry is validated and applied independently
        and a failure is recorded against that entry only.
        """
        results = []
        for update in updates:
            product_id = update.get("product_id") if isinstance(update, dict) else None
            try:
                entry = validate_payload(update, STOCK_UPDATE_POLICY)
                self.update_stock(
                    entry["product_id"],
                    entry["quantity"],
                    entry["type"],
                    notes=entry.get("notes"),
                    actor=actor,
                )
            except ValidationError as e:
                results.append({
                    "product_id": product_id,
                    "success": False,
                    "error": str(e),
                    "code": "VALIDATION_ERROR",
                })
                continue
            except ServiceError as e:
                results.append({
                    "product_id": product_id,
                    "success": False,
                    "error": e.message,
                    "code": e.kind.value,
                })
                continue
            except SQLAlchemyError:
                logger.exception("Bulk stock update failed for product %s", product_id)
                results.append({
                    "product_id": product_id,
                    "success": False,
                    "error": "Unexpected error",
                    "code": "UNEXPECTED",
                })
                continue
            results.append({"product_id": product_id, "success": True})

        success_count = sum(1 for r in results if r["success"])
        return {
            "success_count": success_count,
            "failure_count": len(results) - success_count,
            "results": results,
        }

    def _deduct(self, order_id: int, actor: int | None) -> OrderStockResult:
        order = self._get_order(order_id)
        result = OrderStockResult(order_id=order.id)

        for item in order.items:
            product = lock_for_update(db.session.query(Product).filter_by(id=item.product_id)).first()
            if product is None:
                continue

            previous = product.stock
            new_stock = max(0, previous - item.quantity)
            notes = f"Order #{order.order_number}"
            if previous < item.quantity:
                notes += f" (ordered {item.quantity}, {previous} in stock)"

            history, change = self._record(
                product,
                new_stock,
                history_type=HISTORY_SALE,
                actor=actor,
                reference=str(order.id),
                notes=notes,
            )
            result.history.append(history)

            alert_type = self.classify_alert(previous, new_stock, allow_back_in_stock=False)
            if alert_type:
                result.pending_alerts.append((change, alert_type))
        return result

    def _restore(self, order_id: int, actor: int | None) -> OrderStockResult:
        order = self._get_order(order_id)
        result = OrderStockResult(order_id=order.id)

        for item in order.items:
            product = lock_for_update(db.session.query(Product).filter_by(id=item.product_id)).first()
            if product is None:
                continue

            previous = product.stock
            history, change = self._record(
                product,
                previous + item.quantity,
                history_type=HISTORY_RETURN,
                actor=actor,
                reference=str(order.id),
                notes=f"Cancelled/Refunded Order #{order.order_number}",
            )
            result.history.append(history)

            if previous == 0 and change.new_stock > 0:
                result.pending_alerts.append((change, ALERT_BACK_IN_STOCK))
        return result

    def _apply_order_movement(self, movement, order_id: int, actor: int | None, commit: bool) -> OrderStockResult:
        if not commit:
            # Caller owns the transaction and must call dispatch_alerts() after committing.
            return movement(order_id, actor)

        def _op():
            result = movement(order_id, actor)
            db.session.commit()
            return result

        result = _run_in_transaction(_op)
        self.dispatch_alerts(result)
        return result

    def deduct_stock_for_order(self, order_id: int, actor: int | None = None, *, commit: bool = True) -> OrderStockResult:
        """
        Take an order's quantities out of stock when it is confirmed.

        Stock is clamped at zero rather than failing. Items whose product no
        longer exists are skipped.
        """
        result = self._apply_order_movement(self._deduct, order_id, actor, commit)
        logger.info("Stock deducted for order %s (%d item(s))", order_id, len(result.history))
        return result

    def restore_stock_for_order(self, order_id: int, actor: int | None = None, *, commit: bool = True) -> OrderStockResult:
        """Put an order's quantities back on cancellation or refund."""
        result = self._apply_order_movement(self._restore, order_id, actor, commit)
        logger.info("Stock restored for order %s (%d item(s))", order_id, len(result.history))
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_low_stock_products(self, threshold: int | None = None, zone: str | None = None) -> list[Product]:
        if threshold is None:
            threshold = self.thresholds.low
        products = db.session.query(Product).filter(
            Product.is_active.is_(True),
            Product.stock > 0,
            Product.stock <= threshold,
        ).order_by(Product.stock.asc(), Product.id.asc()).all()
        return [p for p in products if p.in_zone(zone)]

    def get_out_of_stock_products(self, zone: str | None = None) -> list[dict]:
        pending = db.session.query(
            NotifyRequest.product_id,
            func.count(NotifyRequest.id).label("pending"),
        ).filter(NotifyRequest.notified.is_(False)).group_by(NotifyRequest.product_id).subquery()

        rows = db.session.query(Product, func.coalesce(pending.c.pending, 0)).outerjoin(
            pending, pending.c.product_id == Product.id
        ).filter(
            Product.is_active.is_(True),
            Product.stock == 0,
        ).order_by(Product.updated_at.desc(), Product.id.desc()).all()

        return [
            {**product.to_dict(), "pending_notify_requests": int(count)}
            for product, count in rows
            if product.in_zone(zone)
        ]

    def get_stock_history(
        self,
        product_id: int,
        *,
        limit: int = 50,
        offset: int = 0,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> tuple[list[StockHistory], int]:
        self._get_product(product_id)

        query = db.session.query(StockHistory).filter(StockHistory.product_id == product_id)
        if start is not None:
            query = query.filter(StockHistory.created_at >= start)
        if end is not None:
            query = query.filter(StockHistory.created_at <= end)

        total = query.count()
        rows = query.order_by(
            StockHistory.created_at.desc(),
            StockHistory.id.desc(),
        ).offset(offset).limit(limit).all()
        return rows, total

    def generate_inventory_report(self, zone: str | None = None) -> dict:
        products = [
            p for p in db.session.query(Product).filter(Product.is_active.is_(True)).all()
            if p.in_zone(zone)
        ]

        total_value = Decimal("0")
        low_count = out_count = healthy_count = 0
        by_category: dict[int, dict] = {}
        by_zone: dict[str, dict] = {}

        for product in products:
            unit_value = product.cost if product.cost else product.price
            value = Decimal(str(unit_value)) * product.stock
            total_value += value

            if product.stock == 0:
                out_count += 1
            elif product.stock <= self.thresholds.low:
                low_count += 1
            else:
                healthy_count += 1

            cat = by_category.setdefault(product.category_id, {
                "category_id": product.category_id,
                "category_name": product.category.name_en if product.category else None,
                "product_count": 0,
                "total_stock": 0,
                "total_value": Decimal("0"),
            })
            cat["product_count"] += 1
            cat["total_stock"] += product.stock
            cat["total_value"] += value

            for z in product.zones or []:
                zone_row = by_zone.setdefault(z, {"zone": z, "product_count": 0, "total_stock": 0})
                zone_row["product_count"] += 1
                zone_row["total_stock"] += product.stock

        return {
            "total_products": len(products),
            "total_value": money(total_value),
            "low_stock_count": low_count,
            "out_of_stock_count": out_count,
            "healthy_stock_count": healthy_count,
            "by_category": [
                {**row, "total_value": money(row["total_value"])} for row in by_category.values()
            ],
            "by_zone": list(by_zone.values()),
        }

    def get_restock_suggestions(self, days: int = 30) -> list[dict]:
        """
        Products that will run out within the runway window at their recent
        sales velocity, most urgent first.
        """
        if days <= 0:
            raise InvalidStateError("days must be positive", days=days)

        since = utcnow() - timedelta(days=days)
        sales = db.session.query(
            OrderItem.product_id,
            func.coalesce(func.sum(OrderItem.quantity), 0).label("total_sold"),
        ).join(Order, Order.id == OrderItem.order_id).filter(
            Order.status.notin_([ORDER_CANCELLED, ORDER_REFUNDED]),
            Order.created_at >= since,
        ).group_by(OrderItem.product_id).all()

        suggestions = []
        for row in sales:
            product = db.session.get(Product, row.product_id)
            if product is None or not product.is_active:
                continue

            total_sold = int(row.total_sold or 0)
            velocity = total_sold / days
            runway = math.floor(product.stock / velocity) if velocity > 0 else math.inf
            if runway >= self.thresholds.restock_runway_days:
                continue

            suggestions.append({
                "product": {
                    "id": product.id,
                    "sku": product.sku,
                    "name_en": product.name_en,
                    "name_ar": product.name_ar,
                    "category": product.category.name_en if product.category else None,
                },
                "current_stock": product.stock,
                "total_sold": total_sold,
                "daily_velocity": round(velocity, 2),
                "days_until_out_of_stock": runway,
                "suggested_reorder": math.ceil(velocity * self.thresholds.restock_cover_days),
            })

        suggestions.sort(key=lambda s: s["days_until_out_of_stock"])
        return suggestions
