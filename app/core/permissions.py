from enum import Enum
from typing import Dict, FrozenSet
import uuid

from fastapi import HTTPException, status


class Role(str, Enum):
    """Closed set of roles known to the inspection engine."""
    ADMIN = "ADMIN"
    APPROVER = "APPROVER"
    INSPECTOR = "INSPECTOR"


class Capability(str, Enum):
    """Actions a role may perform against inspections and workflows."""
    VIEW_INSPECTIONS = "inspections:view"
    CREATE_INSPECTIONS = "inspections:create"
    APPROVE_INSPECTIONS = "inspections:approve"
    REJECT_INSPECTIONS = "inspections:reject"
    OVERRIDE_DECISIONS = "inspections:override"
    VIEW_WORKFLOWS = "workflows:view"
    MANAGE_WORKFLOWS = "workflows:manage"


# Explicit capability set per role
ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.ADMIN: frozenset(Capability),
    Role.APPROVER: frozenset({
        Capability.VIEW_INSPECTIONS,
        Capability.APPROVE_INSPECTIONS,
        Capability.REJECT_INSPECTIONS,
        Capability.VIEW_WORKFLOWS,
    }),
    Role.INSPECTOR: frozenset({
        Capability.VIEW_INSPECTIONS,
        Capability.CREATE_INSPECTIONS,
        Capability.VIEW_WORKFLOWS,
    }),
}


def parse_role(value: str) -> Role:
    """Convert a role claim into a Role, case-insensitively.

    Raises:
        ValueError: If the value is not a known role
    """
    try:
        return Role(str(value).strip().upper())
    except ValueError:
        raise ValueError(f"Unknown role: {value!r}")


def capabilities_for(role: Role) -> FrozenSet[Capability]:
    return ROLE_CAPABILITIES.get(role, frozenset())


def role_can_override(role: str) -> bool:
    """Whether an approver slot with this role snapshot may resolve an inspection alone."""
    try:
        return Capability.OVERRIDE_DECISIONS in capabilities_for(parse_role(role))
    except ValueError:
        return False


class PermissionChecker:
    """
    Capability checker for an authenticated actor.

    Built once per request from the token claims; endpoints use it before
    anything reaches the decision engine.
    """

    def __init__(self, user_id: uuid.UUID, role: Role):
        self.user_id = user_id
        self.role = role
        self.capabilities = capabilities_for(role)

    def has_capability(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        """Raise 403 unless the actor holds the capability."""
        if not self.has_capability(capability):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied. Required: {capability.value}"
            )
