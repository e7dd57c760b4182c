"""Role policy: what each reviewer role may do and see."""

from dataclasses import dataclass
from enum import Enum

from refund_review.domain.models.reviewer import Role


class Scope(str, Enum):
    WAREHOUSE = "warehouse"
    REGION = "region"
    ALL = "all"


@dataclass(frozen=True)
class RoleCapabilities:
    can_view_analytics: bool
    can_edit_transactions: bool
    can_escalate: bool
    can_override: bool
    scope: Scope


ROLE_CAPABILITIES: dict[Role, RoleCapabilities] = {
    Role.WAREHOUSE_MANAGER: RoleCapabilities(
        can_view_analytics=False,
        can_edit_transactions=True,
        can_escalate=False,
        can_override=False,
        scope=Scope.WAREHOUSE,
    ),
    Role.REGIONAL_MANAGER: RoleCapabilities(
        can_view_analytics=True,
        can_edit_transactions=True,
        can_escalate=True,
        can_override=False,
        scope=Scope.REGION,
    ),
    Role.OPERATIONS_MANAGER: RoleCapabilities(
        can_view_analytics=True,
        can_edit_transactions=True,
        can_escalate=True,
        can_override=True,
        scope=Scope.ALL,
    ),
    Role.EXECUTIVE: RoleCapabilities(
        can_view_analytics=True,
        can_edit_transactions=False,
        can_escalate=False,
        can_override=False,
        scope=Scope.ALL,
    ),
}


def capabilities_for(role: Role | str) -> RoleCapabilities:
    """Return the capabilities of a role. Unknown roles raise ``ValueError``."""
    return ROLE_CAPABILITIES[Role(role)]
