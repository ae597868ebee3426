from typing import Dict, FrozenSet, Set, Optional
from dataclasses import dataclass
import uuid


class Role:
    """Role codes handed to us by the gateway in ``X-Actor-Role``."""
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    ACCOUNTANT = "accountant"
    OPERATOR = "operator"
    SYSTEM = "system"


VIEW_PERMISSIONS = {
    "orders:view",
    "invoices:view",
    "ledger:view",
    "accounting:view",
}

ALL_PERMISSIONS = VIEW_PERMISSIONS | {
    "orders:create",
    "orders:update",
    "orders:delete",
    "invoices:create",
    "invoices:void",
    "cod:confirm",
    "cod:override",
    "payments:confirm",
    "ledger:adjust",
    "products:manage",
}

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    Role.SUPER_ADMIN: frozenset(ALL_PERMISSIONS),
    Role.ADMIN: frozenset(ALL_PERMISSIONS - {"orders:delete"}),
    Role.ACCOUNTANT: frozenset(VIEW_PERMISSIONS | {
        "cod:confirm",
        "invoices:create",
        "invoices:void",
    }),
    Role.OPERATOR: frozenset({
        "orders:view",
        "orders:create",
        "orders:update",
        "invoices:view",
        "ledger:view",
        "ledger:adjust",
    }),
    Role.SYSTEM: frozenset({
        "payments:confirm",
        "orders:create",
        "orders:view",
    }),
}


@dataclass(frozen=True)
class Actor:
    """Verified identity performing an operation."""
    id: uuid.UUID
    role: str


def get_role_permissions(role: str) -> Set[str]:
    return set(ROLE_PERMISSIONS.get(role, frozenset()))


class PermissionChecker:
    """
    Permission checker for the current actor.
    SUPER_ADMIN automatically has all permissions.
    """

    def __init__(self, actor: Actor, permissions: Optional[Set[str]] = None):
        self.actor = actor
        self.permissions = permissions if permissions is not None else get_role_permissions(actor.role)

    def is_super_admin(self) -> bool:
        return self.actor.role == Role.SUPER_ADMIN

    def has_permission(self, permission_code: str) -> bool:
        if self.is_super_admin():
            return True
        return permission_code in self.permissions
