from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from stockbook.core.security_current import BusinessAccess, get_current_business_access

ALLOWED_ROLES = ("admin", "manager", "seller", "viewer")

PERMISSION_MATRIX: dict[str, set[str]] = {
    "admin": {"*"},
    "manager": {
        "catalog.view",
        "catalog.manage",
        "inventory.view",
        "inventory.record",
        "inventory.configure",
        "warehouses.view",
        "warehouses.manage",
        "orders.view",
        "orders.create",
        "orders.update",
        "customers.view",
        "customers.manage",
        "reports.export",
        "dashboard.view",
        "changes.view",
    },
    "seller": {
        "catalog.view",
        "inventory.view",
        "inventory.record",
        "warehouses.view",
        "orders.view",
        "orders.create",
        "orders.update",
        "customers.view",
        "customers.manage",
        "dashboard.view",
        "changes.view",
    },
    "viewer": {
        "catalog.view",
        "inventory.view",
        "warehouses.view",
        "orders.view",
        "customers.view",
        "reports.export",
        "dashboard.view",
        "changes.view",
    },
}


def role_permissions(role: str) -> set[str]:
    normalized = (role or "").strip().lower()
    return set(PERMISSION_MATRIX.get(normalized, set()))


def has_permission(*, role: str, permission: str) -> bool:
    permissions = role_permissions(role)
    if "*" in permissions:
        return True
    return permission in permissions


def require_business_roles(*allowed_roles: str) -> Callable[[BusinessAccess], BusinessAccess]:
    normalized_allowed = {role.strip().lower() for role in allowed_roles if role.strip()}
    if not normalized_allowed:
        raise ValueError("At least one allowed role is required")

    def dependency(access: BusinessAccess = Depends(get_current_business_access)) -> BusinessAccess:
        if (access.role or "").lower() not in normalized_allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role for this action",
            )
        return access

    return dependency


def require_permission(permission: str) -> Callable[[BusinessAccess], BusinessAccess]:
    normalized_permission = (permission or "").strip().lower()
    if not normalized_permission:
        raise ValueError("Permission key is required")

    def dependency(access: BusinessAccess = Depends(get_current_business_access)) -> BusinessAccess:
        if not has_permission(role=access.role, permission=normalized_permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permission for this action",
            )
        return access

    return dependency
