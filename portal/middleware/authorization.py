from fastapi import Depends, HTTPException, status

from portal.middleware.auth import get_current_user

ROLE_HIERARCHY = {
    "global_admin": 7,
    "administrator": 6,
    "manager": 5,
    "credit_senior": 4,
    "credit_controller": 3,
    "external_user": 2,
    "notification_contact": 1,
}

ROLE_LABELS = {
    "global_admin": "Global Administrator",
    "administrator": "Administrator",
    "manager": "Manager",
    "credit_senior": "Credit Senior",
    "credit_controller": "Credit Controller",
    "external_user": "External User",
    "notification_contact": "Notification Contact",
}

ADMIN_ROLES = ("global_admin", "administrator")
INTERNAL_ROLES = ("global_admin", "administrator", "manager", "credit_senior", "credit_controller")
PORTAL_ACCESS_ROLES = INTERNAL_ROLES + ("external_user",)
DOCUMENT_EDITOR_ROLES = ("global_admin", "administrator", "manager", "credit_senior")
USER_MANAGER_ROLES = ("global_admin", "administrator", "manager")


def is_valid_role(role: str) -> bool:
    return role in ROLE_HIERARCHY


def can_manage_role(manager_role: str, target_role: str) -> bool:
    """Global admins manage everyone; otherwise the manager must outrank the target."""
    if manager_role not in ROLE_HIERARCHY or target_role not in ROLE_HIERARCHY:
        return False
    if manager_role == "global_admin":
        return True
    return ROLE_HIERARCHY[manager_role] > ROLE_HIERARCHY[target_role]


def get_manageable_roles(manager_role: str) -> list[str]:
    return [role for role in ROLE_HIERARCHY if can_manage_role(manager_role, role)]


def can_add_users(role: str) -> bool:
    return role in USER_MANAGER_ROLES


def can_view_users(role: str) -> bool:
    return role in USER_MANAGER_ROLES


def can_delete_users(role: str) -> bool:
    return role in ADMIN_ROLES


def require_roles(*allowed_roles: str):
    """
    FastAPI dependency factory for role-based access control.

    Usage:
        @router.delete("/{invoice_id}")
        async def delete_invoice(
            current_user: dict = Depends(get_current_user),
            _auth: None = Depends(require_roles("global_admin", "administrator")),
        ):
    """
    async def check_role(current_user: dict = Depends(get_current_user)):
        if current_user["role"] not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "INSUFFICIENT_PERMISSIONS",
                        "message": "Access denied. You do not have permission to perform this action.",
                    }
                },
            )
        return None

    return check_role


def assert_can_manage(current_user: dict, target_role: str):
    if not can_manage_role(current_user["role"], target_role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": {
                    "code": "ROLE_NOT_MANAGEABLE",
                    "message": f"You cannot manage users with role '{target_role}'",
                }
            },
        )
