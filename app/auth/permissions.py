from enum import Enum
from types import MappingProxyType

from app.schemas.user_schema import RoleName


class Permission(str, Enum):
    INVENTORY_READ = "inventory:read"
    INVENTORY_WRITE = "inventory:write"
    PAYROLL_READ = "payroll:read"
    PAYROLL_RUN = "payroll:run"
    PAYROLL_WRITE = "payroll:write"
    DELIVERIES_READ = "deliveries:read"
    DELIVERIES_UPDATE_STATUS = "deliveries:update_status"
    DELIVERIES_WRITE = "deliveries:write"
    CUSTOMERS_READ = "customers:read"
    CUSTOMERS_WRITE = "customers:write"
    USERS_READ = "users:read"
    USERS_WRITE = "users:write"
    ATTENDANCE_READ = "attendance:read"
    ATTENDANCE_WRITE = "attendance:write"
    SETTINGS_READ = "settings:read"
    SETTINGS_WRITE = "settings:write"
    POS_READ = "pos:read"
    POS_WRITE = "pos:write"
    REPORTS_READ = "reports:read"


P = Permission

ROLE_PERMISSIONS = MappingProxyType(
    {
        RoleName.ADMIN: frozenset(Permission),
        RoleName.INVENTORY_MANAGER: frozenset(
            {
                P.INVENTORY_READ,
                P.INVENTORY_WRITE,
                P.DELIVERIES_READ,
                P.DELIVERIES_WRITE,
                P.CUSTOMERS_READ,
                P.CUSTOMERS_WRITE,
                P.POS_READ,
                P.POS_WRITE,
                P.REPORTS_READ,
            }
        ),
        RoleName.PAYROLL_MANAGER: frozenset(
            {
                P.INVENTORY_READ,
                P.PAYROLL_READ,
                P.PAYROLL_RUN,
                P.PAYROLL_WRITE,
                P.USERS_READ,
                P.USERS_WRITE,
                P.ATTENDANCE_READ,
                P.ATTENDANCE_WRITE,
                P.REPORTS_READ,
            }
        ),
        RoleName.DELIVERY_STAFF: frozenset(
            {P.DELIVERIES_READ, P.DELIVERIES_UPDATE_STATUS}
        ),
        RoleName.POS_CASHIER: frozenset(
            {
                P.POS_READ,
                P.POS_WRITE,
                P.INVENTORY_READ,
                P.DELIVERIES_READ,
                P.CUSTOMERS_READ,
                P.CUSTOMERS_WRITE,
                P.ATTENDANCE_READ,
                P.ATTENDANCE_WRITE,
            }
        ),
        RoleName.VIEWER: frozenset(
            {
                P.INVENTORY_READ,
                P.DELIVERIES_READ,
                P.ATTENDANCE_READ,
                P.ATTENDANCE_WRITE,
                P.REPORTS_READ,
            }
        ),
    }
)


def role_names(user) -> set[RoleName]:
    return {RoleName(role.name) for role in user.roles}


def has_role(user, *names: RoleName) -> bool:
    return bool(role_names(user) & set(names))


def permissions_for(user) -> set[Permission]:
    granted: set[Permission] = set()
    for name in role_names(user):
        granted |= ROLE_PERMISSIONS.get(name, frozenset())
    return granted


def can(user, permission: Permission) -> bool:
    """True when any of the user's roles grants ``permission``."""
    return any(
        permission in ROLE_PERMISSIONS.get(name, frozenset())
        for name in role_names(user)
    )
