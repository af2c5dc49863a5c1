"""
Request actor resolved from the bearer token.

The auth collaborator issues the token; this core only needs to know
who is acting and in which role.
"""

from dataclasses import dataclass
from typing import Optional

from skymap.app.models.enums import UserRole


@dataclass(frozen=True)
class Actor:
    """Identity and role of the caller for one request."""

    user_id: int
    role: UserRole
    name: Optional[str] = None
    business_id: Optional[int] = None

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(
            user_id=user.id,
            role=user.role,
            name=user.name,
            business_id=user.business_id,
        )

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.STAFF)
