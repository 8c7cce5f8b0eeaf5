"""
Access policy: the one place that decides what a caller may touch.

Routes call these helpers after @require_auth instead of re-implementing
role, zone and company checks inline.

ZONES:
- SUPER_ADMIN sees every zone.
- LOCATION_ADMIN is limited to User.zones. Asking for another zone is
  denied; asking for no zone resolves to the admin's only zone when they
  have exactly one.

COMPANIES:
- Admins may act on any company but must name one.
- COMPANY_MANAGER / VENDOR are pinned to User.company_id; naming another
  company is denied.
"""

from __future__ import annotations

from ..errors import AccessDeniedError
from ..validation import ValidationError
from .roles import (
    ADMIN_ROLES,
    COMPANY_ROLES,
    ROLE_LOCATION_ADMIN,
    ROLE_SUPER_ADMIN,
    CREATE_SETTLEMENT,
    MANAGE_INVENTORY,
    get_role_permissions,
)


def has_permission(user, permission_code: str) -> bool:
    return permission_code in get_role_permissions(user.role)


def is_admin(user) -> bool:
    return user.role in ADMIN_ROLES


def zone_filter(user) -> list[str] | None:
    """
    Zones the user is restricted to, or None when unrestricted.
    """
    if user.role == ROLE_SUPER_ADMIN:
        return None
    if user.role == ROLE_LOCATION_ADMIN and user.zones:
        return list(user.zones)
    return None


def resolve_zone(user, requested: str | None) -> str | None:
    allowed = zone_filter(user)
    if allowed is None:
        return requested
    if requested is not None:
        if requested not in allowed:
            raise AccessDeniedError("Access denied to this zone", zone=requested)
        return requested
    if len(allowed) == 1:
        return allowed[0]
    return None


def resolve_company_id(user, requested: int | None) -> int:
    if user.role in COMPANY_ROLES:
        if requested is not None and requested != user.company_id:
            raise AccessDeniedError("You can only access your own company")
        if user.company_id is None:
            raise AccessDeniedError("User is not linked to a company")
        return user.company_id

    if user.role not in ADMIN_ROLES:
        raise AccessDeniedError("Only admins and company users can access company finances")

    if requested is None:
        raise ValidationError("company_id is required")
    return requested


def require_order_access(user, order) -> None:
    """Deny access to an order outside the caller's zones or company."""
    if user.role in COMPANY_ROLES:
        if order.company_id != user.company_id:
            raise AccessDeniedError("Order belongs to another company")
        return

    allowed = zone_filter(user)
    if allowed is not None and order.zone not in allowed:
        raise AccessDeniedError("Access denied to this zone", zone=order.zone)


def can_manage_inventory(user) -> bool:
    return has_permission(user, MANAGE_INVENTORY)


def can_manage_settlements(user) -> bool:
    return has_permission(user, CREATE_SETTLEMENT)


def require_product_access(user, product) -> None:
    """Deny stock changes to a product stocked only outside the caller's zones."""
    allowed = zone_filter(user)
    if allowed is None:
        return
    if not set(product.zones or []) & set(allowed):
        raise AccessDeniedError("Access denied to this product's zones", product_id=product.id)
