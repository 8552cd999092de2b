"""
Custom permission classes for role and center based access control.

Roles are plain strings on the user.  Coarse gates (``IsAdminRole``,
``IsReceptionRole`` ...) guard whole endpoints; the finer
``ROLE_PERMISSIONS`` table answers "may this role perform this
action" for endpoints shared by several roles.  Tenant isolation is
applied to querysets through :func:`scope_to_center`.
"""
from __future__ import annotations

from rest_framework.permissions import BasePermission, SAFE_METHODS

ADMIN_ROLES = {"admin"}
RECEPTION_ROLES = {"admin", "reception"}
DOCTOR_ROLES = {"admin", "doctor"}
CLINICAL_ROLES = {"admin", "doctor", "reception", "staff", "supervisor"}
SUPERVISOR_ROLES = {"admin", "supervisor"}

APPOINTMENTS = ("appointments:create", "appointments:read", "appointments:update",
                "appointments:delete", "appointments:cancel")
PATIENTS = ("patients:create", "patients:read", "patients:update", "patients:delete",
            "patients:view_medical_records")
USERS = ("users:create", "users:read", "users:update", "users:delete", "users:manage_roles")
BILLING = ("billing:create", "billing:read", "billing:update", "billing:delete",
           "billing:process_payment")
SETTINGS = ("settings:read", "settings:update", "settings:manage_system")
REPORTS = ("reports:view", "reports:export", "reports:analytics")
WHATSAPP = ("whatsapp:send", "whatsapp:read_conversations", "whatsapp:manage_templates",
            "whatsapp:view_analytics")

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": frozenset(APPOINTMENTS + PATIENTS + USERS + BILLING + SETTINGS + REPORTS + WHATSAPP),
    "doctor": frozenset({
        "appointments:read", "appointments:update",
        "patients:read", "patients:view_medical_records",
        "billing:read",
        "reports:view", "reports:analytics",
    }),
    "patient": frozenset({
        "appointments:read", "appointments:create",
        "patients:read",
        "billing:read",
    }),
    "reception": frozenset({
        "appointments:create", "appointments:read", "appointments:update", "appointments:cancel",
        "patients:create", "patients:read", "patients:update",
        "billing:create", "billing:read", "billing:update", "billing:process_payment",
        "whatsapp:send", "whatsapp:read_conversations",
    }),
    "staff": frozenset({
        "appointments:read", "appointments:update",
        "patients:read",
        "billing:read",
    }),
    "guardian": frozenset({
        "patients:read",
        "appointments:read",
    }),
    "supervisor": frozenset({
        "appointments:read",
        "patients:read",
        "reports:view", "reports:analytics",
    }),
}


def has_permission(role: str | None, permission: str) -> bool:
    return permission in ROLE_PERMISSIONS.get(role or "", frozenset())


def _role(request) -> str | None:
    user = getattr(request, "user", None)
    if not (user and user.is_authenticated):
        return None
    return getattr(user, "role", None)


class IsAdminRole(BasePermission):
    """Allow access only to users with an administrative role."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return _role(request) in ADMIN_ROLES


class IsReceptionRole(BasePermission):
    """Reception desk or admin."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return _role(request) in RECEPTION_ROLES


class IsDoctorRole(BasePermission):
    """Doctor or admin."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return _role(request) in DOCTOR_ROLES


class IsSupervisorRole(BasePermission):
    """Supervisor or admin."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return _role(request) in SUPERVISOR_ROLES


class IsClinicalStaff(BasePermission):
    """Any role working inside the center (not patients or guardians)."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return _role(request) in CLINICAL_ROLES


def permission_required(read: str, write: str | None = None,
                        delete: str | None = None) -> type[BasePermission]:
    """Build a permission class: ``read`` for safe methods, ``delete`` for DELETE, ``write`` otherwise."""

    class _RolePermission(BasePermission):
        message = "Insufficient permissions"

        def has_permission(self, request, view) -> bool:  # type: ignore[override]
            if request.method in SAFE_METHODS:
                needed = read
            elif request.method == "DELETE":
                needed = delete or write or read
            else:
                needed = write or read
            return has_permission(_role(request), needed)

    _RolePermission.__name__ = f"Requires[{read}|{write or read}]"
    return _RolePermission


def scope_to_center(qs, user, field: str = "center"):
    """Restrict ``qs`` to the user's center; operators without a center see everything."""
    center_id = getattr(user, "center_id", None)
    if center_id:
        return qs.filter(**{f"{field}_id": center_id})
    return qs
