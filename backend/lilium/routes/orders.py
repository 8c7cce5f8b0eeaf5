# backend/lilium/routes/orders.py
"""
Order status routes.

Status changes drive stock: confirming an order deducts its items,
cancelling or refunding a confirmed order puts them back.
"""
from flask import Blueprint, current_app, g, request

from ..models.orders import ORDER_STATUSES
from ..permissions import require_order_access
from ..permissions.roles import MANAGE_ORDERS
from ..services import order_service
from ..validation import Field, PayloadPolicy, ValidationError, validate_payload
from ..decorators import require_auth, require_permission


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

ORDER_STATUS_POLICY = PayloadPolicy(fields={
    "status": Field("str", required=True, choices=ORDER_STATUSES),
    "comment": Field("str", max_length=255),
    "cancel_reason": Field("str", max_length=255),
})


@orders_bp.patch("/<int:order_id>/status")
@require_auth
@require_permission(MANAGE_ORDERS)
def update_order_status_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(payload, ORDER_STATUS_POLICY)
    except ValidationError as e:
        return {"error": str(e)}, 400

    require_order_access(g.current_user, order_service.get_order(order_id))

    order = order_service.update_order_status(
        order_id,
        patch["status"],
        inventory=current_app.extensions["inventory_service"],
        actor=g.current_user.id,
        comment=patch.get("comment"),
        cancel_reason=patch.get("cancel_reason"),
    )
    return {"order": order.to_dict()}, 200


@orders_bp.get("/<int:order_id>/history")
@require_auth
@require_permission(MANAGE_ORDERS)
def order_status_history_route(order_id: int):
    require_order_access(g.current_user, order_service.get_order(order_id))
    rows = order_service.get_status_history(order_id)
    return {"history": [row.to_dict() for row in rows]}, 200
