"""
Caller identity and tenant scoping.

Every engine operation receives an AuthContext. Tenant-scoped operations
compare it with the tenant that owns the target entity; platform admin
operations check the role instead.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID

from messaging_engine.errors import PermissionDenied, TenantMismatch


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    SUPPORT_ADMIN = "SUPPORT_ADMIN"
    FINANCE_ADMIN = "FINANCE_ADMIN"
    COMPLIANCE_ADMIN = "COMPLIANCE_ADMIN"
    USER = "USER"
    SYSTEM = "SYSTEM"


# Roles allowed to move credit by hand
BALANCE_ADMIN_ROLES = frozenset({UserRole.SUPER_ADMIN, UserRole.FINANCE_ADMIN})

# Roles allowed to suspend or reactivate tenants
STATUS_ADMIN_ROLES = frozenset({UserRole.SUPER_ADMIN, UserRole.SUPPORT_ADMIN, UserRole.COMPLIANCE_ADMIN})


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller: user, home tenant and role."""

    tenant_id: UUID
    user_id: UUID
    role: UserRole = UserRole.USER

    @classmethod
    def system(cls, tenant_id: UUID) -> "AuthContext":
        """Context for engine-initiated actions such as auto-replies."""
        return cls(tenant_id=tenant_id, user_id=tenant_id, role=UserRole.SYSTEM)

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "AuthContext":
        """
        Build a context from JWT claims (sub, tenant_id, role).

        Raises:
            KeyError/ValueError for missing or malformed claims
        """
        return cls(
            tenant_id=UUID(claims["tenant_id"]),
            user_id=UUID(claims["sub"]),
            role=UserRole(claims.get("role", UserRole.USER.value)),
        )

    def to_claims(self) -> dict[str, str]:
        return {"sub": str(self.user_id), "tenant_id": str(self.tenant_id), "role": self.role.value}

    @property
    def is_platform_admin(self) -> bool:
        return self.role not in (UserRole.USER, UserRole.SYSTEM)


def ensure_tenant(ctx: AuthContext, owner_tenant_id: UUID) -> None:
    """Raise TenantMismatch unless the caller belongs to the owning tenant."""
    if ctx.tenant_id != owner_tenant_id:
        raise TenantMismatch(expected=ctx.tenant_id, actual=owner_tenant_id)


def ensure_role(ctx: AuthContext, allowed: frozenset[UserRole]) -> None:
    """Raise PermissionDenied unless the caller holds one of `allowed`."""
    if ctx.role not in allowed:
        raise PermissionDenied(f"Role {ctx.role.value} may not perform this operation")
