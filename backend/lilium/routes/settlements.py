# backend/lilium/routes/settlements.py
"""
Settlement and cash-on-delivery routes.

SECURITY: All routes require authentication.
- COMPANY_MANAGER / VENDOR users are pinned to their own company; a
  company_id naming another company is rejected with 403.
- Admins must name the company they are acting on.
- Verifying, settling and platform-wide earnings are SUPER_ADMIN only.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- Periods are inclusive on both ends.
"""
from flask import Blueprint, current_app, g, request

from ..permissions import require_order_access, resolve_company_id
from ..permissions.roles import (
    COLLECT_CASH,
    CREATE_SETTLEMENT,
    DISPUTE_SETTLEMENT,
    RECONCILE_CASH,
    VERIFY_SETTLEMENT,
    VIEW_PLATFORM_EARNINGS,
    VIEW_SETTLEMENTS,
)
from ..services import order_service
from ..validation import (
    Field,
    PayloadPolicy,
    ValidationError,
    enforce_rules_cash_collection,
    enforce_rules_period,
    validate_payload,
    validate_query_args,
)
from ..decorators import require_auth, require_permission


settlements_bp = Blueprint("settlements", __name__, url_prefix="/api/settlements")

PERIOD_POLICY = PayloadPolicy(fields={
    "company_id": Field("int"),
    "period_start": Field("datetime", required=True),
    "period_end": Field("datetime", required=True),
})

RECONCILE_POLICY = PayloadPolicy(fields={
    "company_id": Field("int"),
    "start": Field("datetime", required=True),
    "end": Field("datetime", required=True),
})

CASH_COLLECTED_POLICY = PayloadPolicy(fields={
    "order_id": Field("int", required=True),
    "amount": Field("decimal", required=True),
})

NOTES_POLICY = PayloadPolicy(fields={
    "notes": Field("str", max_length=2000),
})

SUMMARY_QUERY_POLICY = PayloadPolicy(fields={
    "company_id": Field("int"),
    "start": Field("datetime"),
    "end": Field("datetime"),
})

COMPANY_QUERY_POLICY = PayloadPolicy(fields={
    "company_id": Field("int"),
    "limit": Field("int"),
})

EARNINGS_QUERY_POLICY = PayloadPolicy(fields={
    "start": Field("datetime", required=True),
    "end": Field("datetime", required=True),
})


def _settlements():
    return current_app.extensions["settlement_service"]


@settlements_bp.post("/create")
@require_auth
@require_permission(CREATE_SETTLEMENT)
def create_settlement_route():
    """
    Compute and store the settlement for a company and period.

    Returns 409 if that exact period was already settled for the company.
    """
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(payload, PERIOD_POLICY)
        enforce_rules_period(patch["period_start"], patch["period_end"])
    except ValidationError as e:
        return {"error": str(e)}, 400

    company_id = resolve_company_id(g.current_user, patch.get("company_id"))
    settlement = _settlements().create_settlement(company_id, patch["period_start"], patch["period_end"])
    return {"settlement": settlement.to_dict()}, 201


@settlements_bp.get("/summary")
@require_auth
@require_permission(VIEW_SETTLEMENTS)
def settlement_summary_route():
    """Query params: company_id, start, end (default: last 30 days)."""
    try:
        args = validate_query_args(request.args, SUMMARY_QUERY_POLICY)
        enforce_rules_period(args.get("start"), args.get("end"))
    except ValidationError as e:
        return {"error": str(e)}, 400

    company_id = resolve_company_id(g.current_user, args.get("company_id"))
    return _settlements().get_settlement_summary(company_id, args.get("start"), args.get("end")), 200


@settlements_bp.post("/reconcile-cash")
@require_auth
@require_permission(RECONCILE_CASH)
def reconcile_cash_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(payload, RECONCILE_POLICY)
        enforce_rules_period(patch["start"], patch["end"])
    except ValidationError as e:
        return {"error": str(e)}, 400

    company_id = resolve_company_id(g.current_user, patch.get("company_id"))
    rows = _settlements().reconcile_cash(company_id, patch["start"], patch["end"])
    return {
        "company_id": company_id,
        "orders": rows,
        "verified_count": sum(1 for r in rows if r["verified"]),
        "unverified_count": sum(1 for r in rows if not r["verified"]),
    }, 200


@settlements_bp.post("/cash-collected")
@require_auth
@require_permission(COLLECT_CASH)
def cash_collected_route():
    """
    Mark a delivered cash-on-delivery order as paid.

    The amount must equal the order total (0.01 tolerance). A second call
    for the same order returns 409.
    """
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(payload, CASH_COLLECTED_POLICY)
        enforce_rules_cash_collection(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    require_order_access(g.current_user, order_service.get_order(patch["order_id"]))

    order = _settlements().mark_cash_collected(
        patch["order_id"],
        patch["amount"],
        collected_by=g.current_user.id,
    )
    return {"order": order.to_dict(include_items=False)}, 200


@settlements_bp.get("/pending-cash")
@require_auth
@require_permission(VIEW_SETTLEMENTS)
def pending_cash_route():
    try:
        args = validate_query_args(request.args, COMPANY_QUERY_POLICY)
    except ValidationError as e:
        return {"error": str(e)}, 400

    company_id = resolve_company_id(g.current_user, args.get("company_id"))
    orders = _settlements().get_pending_cash_collections(company_id)
    return {"orders": orders, "count": len(orders)}, 200


@settlements_bp.get("/history")
@require_auth
@require_permission(VIEW_SETTLEMENTS)
def settlement_history_route():
    try:
        args = validate_query_args(request.args, COMPANY_QUERY_POLICY)
    except ValidationError as e:
        return {"error": str(e)}, 400

    company_id = resolve_company_id(g.current_user, args.get("company_id"))
    limit = min(max(args.get("limit") or 10, 1), 100)
    settlements = _settlements().get_settlement_history(company_id, limit=limit)
    return {"settlements": [s.to_dict() for s in settlements]}, 200


@settlements_bp.post("/<int:settlement_id>/verify")
@require_auth
@require_permission(VERIFY_SETTLEMENT)
def verify_settlement_route(settlement_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(payload, NOTES_POLICY)
    except ValidationError as e:
        return {"error": str(e)}, 400

    settlement = _settlements().verify_settlement(settlement_id, g.current_user.id, patch.get("notes"))
    return {"settlement": settlement.to_dict()}, 200


@settlements_bp.post("/<int:settlement_id>/settle")
@require_auth
@require_permission(VERIFY_SETTLEMENT)
def settle_settlement_route(settlement_id: int):
    settlement = _settlements().settle_settlement(settlement_id)
    return {"settlement": settlement.to_dict()}, 200


@settlements_bp.post("/<int:settlement_id>/dispute")
@require_auth
@require_permission(DISPUTE_SETTLEMENT)
def dispute_settlement_route(settlement_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(payload, NOTES_POLICY)
    except ValidationError as e:
        return {"error": str(e)}, 400

    service = _settlements()
    resolve_company_id(g.current_user, service.get_settlement(settlement_id).company_id)
    settlement = service.dispute_settlement(settlement_id, patch.get("notes"))
    return {"settlement": settlement.to_dict()}, 200


@settlements_bp.get("/platform-earnings")
@require_auth
@require_permission(VIEW_PLATFORM_EARNINGS)
def platform_earnings_route():
    try:
        args = validate_query_args(request.args, EARNINGS_QUERY_POLICY)
        enforce_rules_period(args["start"], args["end"])
    except ValidationError as e:
        return {"error": str(e)}, 400

    return _settlements().calculate_platform_earnings(args["start"], args["end"]), 200
