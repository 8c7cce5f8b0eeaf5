# backend/lilium/routes/inventory.py
"""
Inventory management routes.

SECURITY: All routes require authentication.
- View operations require VIEW_INVENTORY permission
- Stock updates require MANAGE_INVENTORY permission
- LOCATION_ADMIN users only see and change products stocked in their zones

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
"""
from flask import Blueprint, current_app, g, request

from ..extensions import db
from ..models import Product
from ..models.catalog import ZONES
from ..permissions import resolve_zone, require_product_access
from ..permissions.roles import MANAGE_INVENTORY, VIEW_INVENTORY
from ..services.inventory_service import STOCK_UPDATE_POLICY
from ..validation import (
    Field,
    PayloadPolicy,
    ValidationError,
    enforce_rules_period,
    validate_payload,
    validate_query_args,
)
from ..decorators import require_auth, require_permission


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

ZONE_QUERY_POLICY = PayloadPolicy(fields={
    "zone": Field("str", choices=ZONES),
})

LOW_STOCK_QUERY_POLICY = PayloadPolicy(fields={
    "zone": Field("str", choices=ZONES),
    "threshold": Field("int"),
})

HISTORY_QUERY_POLICY = PayloadPolicy(fields={
    "limit": Field("int"),
    "offset": Field("int"),
    "start": Field("datetime"),
    "end": Field("datetime"),
})

RESTOCK_QUERY_POLICY = PayloadPolicy(fields={
    "days": Field("int"),
})

MAX_BULK_UPDATES = 500


def _inventory():
    return current_app.extensions["inventory_service"]


def _check_product_zone(product_id: int) -> None:
    # Unknown products fall through; the service reports them as not found.
    product = db.session.get(Product, product_id)
    if product is not None:
        require_product_access(g.current_user, product)


@inventory_bp.post("/stock/update")
@require_auth
@require_permission(MANAGE_INVENTORY)
def update_stock_route():
    """
    Apply a RESTOCK, RETURN (delta) or ADJUSTMENT (absolute count).

    Requires MANAGE_INVENTORY permission.
    """
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(payload, STOCK_UPDATE_POLICY)
    except ValidationError as e:
        return {"error": str(e)}, 400

    _check_product_zone(patch["product_id"])

    result = _inventory().update_stock(
        patch["product_id"],
        patch["quantity"],
        patch["type"],
        notes=patch.get("notes"),
        actor=g.current_user.id,
    )
    return result.to_dict(), 200


@inventory_bp.post("/stock/bulk-update")
@require_auth
@require_permission(MANAGE_INVENTORY)
def bulk_update_stock_route():
    """
    Apply many stock updates independently.

    Malformed entries reject the whole request (400); entries that fail in
    the service are reported per item and do not stop the others.
    """
    payload = request.get_json(silent=True) or {}
    updates = payload.get("updates")
    if not isinstance(updates, list) or not updates:
        return {"error": "updates must be a non-empty list"}, 400
    if len(updates) > MAX_BULK_UPDATES:
        return {"error": f"At most {MAX_BULK_UPDATES} updates per request"}, 400

    cleaned = []
    try:
        for index, entry in enumerate(updates):
            try:
                cleaned.append(validate_payload(entry, STOCK_UPDATE_POLICY))
            except ValidationError as e:
                raise ValidationError(f"updates[{index}]: {e}")
    except ValidationError as e:
        return {"error": str(e)}, 400

    for entry in cleaned:
        _check_product_zone(entry["product_id"])

    summary = _inventory().bulk_update_stock(cleaned, actor=g.current_user.id)
    return summary, 200


@inventory_bp.get("/low-stock")
@require_auth
@require_permission(VIEW_INVENTORY)
def low_stock_route():
    try:
        args = validate_query_args(request.args, LOW_STOCK_QUERY_POLICY)
    except ValidationError as e:
        return {"error": str(e)}, 400

    zone = resolve_zone(g.current_user, args.get("zone"))
    products = _inventory().get_low_stock_products(threshold=args.get("threshold"), zone=zone)
    return {"products": [p.to_dict() for p in products], "count": len(products)}, 200


@inventory_bp.get("/out-of-stock")
@require_auth
@require_permission(VIEW_INVENTORY)
def out_of_stock_route():
    try:
        args = validate_query_args(request.args, ZONE_QUERY_POLICY)
    except ValidationError as e:
        return {"error": str(e)}, 400

    zone = resolve_zone(g.current_user, args.get("zone"))
    products = _inventory().get_out_of_stock_products(zone=zone)
    return {"products": products, "count": len(products)}, 200


@inventory_bp.get("/history/<int:product_id>")
@require_auth
@require_permission(VIEW_INVENTORY)
def stock_history_route(product_id: int):
    """
    Stock history for one product, newest first.

    Query params: limit (default 50, max 200), offset, start, end.
    """
    try:
        args = validate_query_args(request.args, HISTORY_QUERY_POLICY)
        enforce_rules_period(args.get("start"), args.get("end"))
    except ValidationError as e:
        return {"error": str(e)}, 400

    limit = min(max(args.get("limit") or 50, 1), 200)
    offset = max(args.get("offset") or 0, 0)

    rows, total = _inventory().get_stock_history(
        product_id,
        limit=limit,
        offset=offset,
        start=args.get("start"),
        end=args.get("end"),
    )
    return {
        "history": [row.to_dict() for row in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }, 200


@inventory_bp.get("/report")
@require_auth
@require_permission(VIEW_INVENTORY)
def inventory_report_route():
    try:
        args = validate_query_args(request.args, ZONE_QUERY_POLICY)
    except ValidationError as e:
        return {"error": str(e)}, 400

    zone = resolve_zone(g.current_user, args.get("zone"))
    return _inventory().generate_inventory_report(zone=zone), 200


@inventory_bp.get("/restock-suggestions")
@require_auth
@require_permission(VIEW_INVENTORY)
def restock_suggestions_route():
    try:
        args = validate_query_args(request.args, RESTOCK_QUERY_POLICY)
    except ValidationError as e:
        return {"error": str(e)}, 400

    days = args.get("days")
    if days is None:
        days = 30
    if days <= 0:
        return {"error": "days must be positive"}, 400

    suggestions = _inventory().get_restock_suggestions(days=days)
    return {"suggestions": suggestions, "days": days}, 200
