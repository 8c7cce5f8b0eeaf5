# Overview: Role and access-policy package.
# Re-exports the public API used by decorators, routes and the CLI.

from .roles import (
    ALL_ROLES,
    ADMIN_ROLES,
    COMPANY_ROLES,
    ROLE_SUPER_ADMIN,
    ROLE_LOCATION_ADMIN,
    ROLE_SHOP_OWNER,
    ROLE_VENDOR,
    ROLE_COMPANY_MANAGER,
    ROLE_PERMISSIONS,
    get_role_permissions,
    validate_role,
)
from .policy import (
    has_permission,
    is_admin,
    zone_filter,
    resolve_zone,
    resolve_company_id,
    require_order_access,
    require_product_access,
    can_manage_inventory,
    can_manage_settlements,
)

__all__ = [
    "ALL_ROLES",
    "ADMIN_ROLES",
    "COMPANY_ROLES",
    "ROLE_SUPER_ADMIN",
    "ROLE_LOCATION_ADMIN",
    "ROLE_SHOP_OWNER",
    "ROLE_VENDOR",
    "ROLE_COMPANY_MANAGER",
    "ROLE_PERMISSIONS",
    "get_role_permissions",
    "validate_role",
    "has_permission",
    "is_admin",
    "zone_filter",
    "resolve_zone",
    "resolve_company_id",
    "require_order_access",
    "require_product_access",
    "can_manage_inventory",
    "can_manage_settlements",
]
