# Overview: Order status transitions and their stock side effects.

from __future__ import annotations

import logging

from ..errors import InvalidStateError, NotFoundError
from ..extensions import db
from ..models import Order, OrderStatusHistory
from ..models.orders import (
    ORDER_ACCEPTED,
    ORDER_CANCELLED,
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_ON_THE_WAY,
    ORDER_PENDING,
    ORDER_PREPARING,
    ORDER_REFUNDED,
    ORDER_SHIPPED,
    ORDER_STATUSES,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import InventoryService

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    ORDER_PENDING: {ORDER_CONFIRMED, ORDER_ACCEPTED, ORDER_CANCELLED},
    ORDER_CONFIRMED: {ORDER_PREPARING, ORDER_CANCELLED},
    ORDER_ACCEPTED: {ORDER_PREPARING, ORDER_CANCELLED},
    ORDER_PREPARING: {ORDER_ON_THE_WAY, ORDER_SHIPPED, ORDER_CANCELLED},
    ORDER_ON_THE_WAY: {ORDER_DELIVERED, ORDER_CANCELLED},
    ORDER_SHIPPED: {ORDER_DELIVERED, ORDER_CANCELLED},
    ORDER_DELIVERED: {ORDER_REFUNDED},
    ORDER_CANCELLED: set(),
    ORDER_REFUNDED: set(),
}

# Stock leaves the shelf when the order is confirmed, not when it is placed.
DEDUCT_ON = {ORDER_CONFIRMED, ORDER_ACCEPTED}
RESTORE_ON = {ORDER_CANCELLED, ORDER_REFUNDED}


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", order_id=order_id)
    return order


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def update_order_status(
    order_id: int,
    new_status: str,
    *,
    inventory: InventoryService,
    actor: int | None = None,
    comment: str | None = None,
    cancel_reason: str | None = None,
) -> Order:
    """
    Move an order to new_status.

    The status change, its history row and any stock movement commit
    together; stock alerts are dispatched afterwards.
    """
    new_status = (new_status or "").upper()
    if new_status not in ORDER_STATUSES:
        raise InvalidStateError("Unknown order status", status=new_status)

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError("Order not found", order_id=order_id)

        previous = order.status
        if not can_transition(previous, new_status):
            raise InvalidStateError(
                f"Cannot change order status from {previous} to {new_status}",
                from_status=previous,
                to_status=new_status,
            )

        movement = None
        if previous == ORDER_PENDING and new_status in DEDUCT_ON:
            movement = inventory.deduct_stock_for_order(order.id, actor, commit=False)
        elif previous != ORDER_PENDING and new_status in RESTORE_ON:
            movement = inventory.restore_stock_for_order(order.id, actor, commit=False)

        now = utcnow()
        order.status = new_status
        if new_status == ORDER_DELIVERED:
            order.delivered_at = now
        elif new_status == ORDER_CANCELLED:
            order.cancelled_at = now
            order.cancel_reason = cancel_reason

        db.session.add(OrderStatusHistory(
            order_id=order.id,
            from_status=previous,
            to_status=new_status,
            comment=comment,
            created_by=actor,
            created_at=now,
        ))
        db.session.commit()
        return order, previous, movement

    try:
        order, previous, movement = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    logger.info("Order %s status %s -> %s by user=%s", order_id, previous, new_status, actor)
    if movement is not None:
        inventory.dispatch_alerts(movement)
    return order


def get_status_history(order_id: int) -> list[OrderStatusHistory]:
    get_order(order_id)
    return db.session.query(OrderStatusHistory).filter_by(order_id=order_id).order_by(
        OrderStatusHistory.created_at.asc(),
        OrderStatusHistory.id.asc(),
    ).all()
