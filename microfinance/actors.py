"""
Actor Context Module

Every mutating operation takes an explicit Actor (id, name, role) instead of
looking up the current session itself. Actors are resolved from the
`user_profiles` table given the identity supplied by authentication.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from enum import Enum

from .errors import Forbidden, NotFoundError
from .storage import StorageInterface

UNKNOWN_USER_NAME = "Unknown User"


class Role(Enum):
    ADMIN = "admin"
    MANAGER = "manager"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of an operation"""
    id: str
    name: str
    role: Role = Role.MANAGER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def require_admin(actor: Actor, operation: str) -> None:
    """Raise Forbidden unless the actor is an admin"""
    if not actor.is_admin:
        raise Forbidden(f"Only admins can {operation}")


class UserDirectory:
    """Maps authenticated identities to {full_name, role} profiles"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "user_profiles"

    def save_profile(self, user_id: str, full_name: str, role: Role = Role.MANAGER,
                     email: Optional[str] = None) -> Actor:
        """Create or replace a user profile"""
        self.storage.save(self.table_name, user_id, {
            "id": user_id,
            "full_name": full_name,
            "role": Role(role).value,
            "email": email,
            "created_at": datetime.now(timezone.utc).isoformat(),
        })
        return Actor(id=user_id, name=full_name, role=Role(role))

    def get_profile(self, user_id: str) -> Actor:
        data = self.storage.load(self.table_name, user_id)
        if not data:
            raise NotFoundError(f"User profile {user_id} not found")
        return Actor(id=data["id"], name=data["full_name"], role=Role(data["role"]))

    def resolve(self, user_id: str) -> Actor:
        """
        Resolve the actor for an authenticated identity.

        A user without a profile still acts, as "Unknown User" with the
        manager role, so attribution is never blocked by a missing profile.
        """
        try:
            return self.get_profile(user_id)
        except NotFoundError:
            return Actor(id=user_id, name=UNKNOWN_USER_NAME, role=Role.MANAGER)
