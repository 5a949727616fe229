"""
Authenticated principal supplied by the identity provider.

The kernel trusts the principal's id and role and performs every ownership
check itself ("only the assigned agent", "only the order's retailer").
Agents are retailers with ``is_agent`` set, not a separate role.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from amana_kernel.exceptions import AuthorizationError


class Role(str, Enum):
    RETAILER = "retailer"
    VENDOR = "vendor"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    id: UUID
    role: Role
    is_agent: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def require_role(self, role: Role, action: str) -> None:
        if self.role != role:
            raise AuthorizationError(
                str(self.id), action, f"requires role '{role.value}', caller is '{self.role.value}'"
            )

    def require_agent(self, action: str) -> None:
        if self.role != Role.RETAILER or not self.is_agent:
            raise AuthorizationError(str(self.id), action, "requires an agent account")

    def require_id(self, expected: UUID | None, action: str, reason: str) -> None:
        if expected is None or self.id != expected:
            raise AuthorizationError(str(self.id), action, reason)
