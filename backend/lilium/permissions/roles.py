# Overview: Role names and the capabilities each role is granted.

ROLE_SUPER_ADMIN = "SUPER_ADMIN"
ROLE_LOCATION_ADMIN = "LOCATION_ADMIN"
ROLE_SHOP_OWNER = "SHOP_OWNER"
ROLE_VENDOR = "VENDOR"
ROLE_COMPANY_MANAGER = "COMPANY_MANAGER"

ALL_ROLES = (
    ROLE_SUPER_ADMIN,
    ROLE_LOCATION_ADMIN,
    ROLE_SHOP_OWNER,
    ROLE_VENDOR,
    ROLE_COMPANY_MANAGER,
)

ADMIN_ROLES = frozenset({ROLE_SUPER_ADMIN, ROLE_LOCATION_ADMIN})

# Roles whose data access is pinned to User.company_id
COMPANY_ROLES = frozenset({ROLE_COMPANY_MANAGER, ROLE_VENDOR})


# -- CAPABILITIES --

VIEW_INVENTORY = "VIEW_INVENTORY"
MANAGE_INVENTORY = "MANAGE_INVENTORY"
MANAGE_ORDERS = "MANAGE_ORDERS"
VIEW_SETTLEMENTS = "VIEW_SETTLEMENTS"
CREATE_SETTLEMENT = "CREATE_SETTLEMENT"
RECONCILE_CASH = "RECONCILE_CASH"
COLLECT_CASH = "COLLECT_CASH"
VERIFY_SETTLEMENT = "VERIFY_SETTLEMENT"
DISPUTE_SETTLEMENT = "DISPUTE_SETTLEMENT"
VIEW_PLATFORM_EARNINGS = "VIEW_PLATFORM_EARNINGS"

ALL_PERMISSIONS = frozenset({
    VIEW_INVENTORY,
    MANAGE_INVENTORY,
    MANAGE_ORDERS,
    VIEW_SETTLEMENTS,
    CREATE_SETTLEMENT,
    RECONCILE_CASH,
    COLLECT_CASH,
    VERIFY_SETTLEMENT,
    DISPUTE_SETTLEMENT,
    VIEW_PLATFORM_EARNINGS,
})

ROLE_PERMISSIONS = {
    ROLE_SUPER_ADMIN: ALL_PERMISSIONS,
    ROLE_LOCATION_ADMIN: frozenset({
        VIEW_INVENTORY,
        MANAGE_INVENTORY,
        MANAGE_ORDERS,
        VIEW_SETTLEMENTS,
        CREATE_SETTLEMENT,
        RECONCILE_CASH,
        COLLECT_CASH,
        DISPUTE_SETTLEMENT,
    }),
    ROLE_COMPANY_MANAGER: frozenset({
        VIEW_SETTLEMENTS,
        CREATE_SETTLEMENT,
        RECONCILE_CASH,
        COLLECT_CASH,
        DISPUTE_SETTLEMENT,
    }),
    ROLE_VENDOR: frozenset({
        VIEW_SETTLEMENTS,
        COLLECT_CASH,
    }),
    ROLE_SHOP_OWNER: frozenset(),
}


def get_role_permissions(role: str) -> frozenset:
    return ROLE_PERMISSIONS.get(role, frozenset())


def validate_role(role: str) -> None:
    if role not in ALL_ROLES:
        raise ValueError(f"Invalid role '{role}'. Must be one of: {', '.join(ALL_ROLES)}")
