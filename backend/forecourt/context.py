"""
Caller context passed explicitly into every service call.

The upstream gateway resolves identity; services never read request state.
"""

from __future__ import annotations

from dataclasses import dataclass

from .validation import PermissionDeniedError, ValidationError


ROLE_ATTENDANT = "attendant"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"

VALID_ROLES = (ROLE_ATTENDANT, ROLE_MANAGER, ROLE_ADMIN)
PRIVILEGED_ROLES = (ROLE_MANAGER, ROLE_ADMIN)


@dataclass(frozen=True)
class CallerContext:
    tenant_id: str
    role: str
    user_id: int | None = None

    def __post_init__(self):
        if not self.tenant_id:
            raise ValidationError("tenant_id is required", field="tenant_id")
        if self.role not in VALID_ROLES:
            raise ValidationError(f"Unknown caller role: {self.role}", field="role")

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    def require_role(self, *roles: str) -> None:
        if self.role not in roles:
            raise PermissionDeniedError(
                f"Role '{self.role}' may not perform this action (requires {', '.join(roles)})"
            )

    def require_self_or_privileged(self, attendant_id: int) -> None:
        """Attendants act only on their own shifts; managers and admins on anyone's."""
        if self.is_privileged:
            return
        if self.user_id is None or self.user_id != attendant_id:
            raise PermissionDeniedError("Attendants can only manage their own shifts", entity_id=attendant_id)
