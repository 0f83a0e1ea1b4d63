from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from medledger.core.security_current import ClinicAccess, get_current_clinic_access


PERMISSION_MATRIX: dict[str, set[str]] = {
    "owner": {"*"},
    "admin": {
        "team.manage",
        "medications.view",
        "medications.manage",
        "stock.receive",
        "stock.adjust",
        "alerts.refresh",
        "reports.view",
    },
    "pharmacist": {
        "medications.view",
        "stock.receive",
        "stock.adjust",
        "alerts.refresh",
        "reports.view",
    },
    "staff": {
        "medications.view",
        "stock.adjust",
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


def require_permission(permission: str) -> Callable[[ClinicAccess], ClinicAccess]:
    normalized_permission = (permission or "").strip().lower()
    if not normalized_permission:
        raise ValueError("Permission key is required")

    def dependency(access: ClinicAccess = Depends(get_current_clinic_access)) -> ClinicAccess:
        if not has_permission(role=access.role, permission=normalized_permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permission for this action",
            )
        return access

    return dependency
