# roles.py
"""
Role hierarchy for the portal.
Every comparison between role names goes through this module.
"""

import enum
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from loguru import logger


class Role(enum.IntEnum):
    """Ordered roles: a principal with role R may do anything requiring a role <= R."""

    USER = 1
    MANAGER = 2
    ADMIN = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @property
    def is_admin(self) -> bool:
        return self is Role.ADMIN

    @property
    def is_manager(self) -> bool:
        return self is Role.MANAGER

    @property
    def is_user(self) -> bool:
        return self is Role.USER

    @classmethod
    def parse(cls, name: Optional[str]) -> Optional["Role"]:
        """Role for a stored role name, or None when the name is unknown."""
        if name is None:
            return None
        try:
            return cls[name.strip().upper()]
        except KeyError:
            logger.warning(f"[ROLE] Unknown role name: {name!r}")
            return None


ROLE_DESCRIPTIONS = {
    Role.USER: "Regular account with access to its own dashboard and files",
    Role.MANAGER: "Can view activity logs and handle contact submissions",
    Role.ADMIN: "Full access including user and role management",
}

# Where an under-privileged principal lands
LANDING_PAGE = "/dashboard"
LOGIN_PAGE = "/auth/login"

RoleRequirement = Union[Role, Iterable[Role]]


@dataclass
class Principal:
    """The authenticated actor behind a request."""

    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    role: Optional[Role] = None
    is_active: bool = True
    email_verified: bool = False
    avatar_url: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role.label if self.role else None,
            "is_active": self.is_active,
            "email_verified": self.email_verified,
            "avatar_url": self.avatar_url,
        }


def has_role(current: Role, required: Role) -> bool:
    """Minimum-bar check along the hierarchy."""
    return Role(current) >= Role(required)


def has_any_role(current: Role, allowed: Iterable[Role]) -> bool:
    """Allow-list check; the hierarchy is ignored."""
    return current in set(allowed)


def can_access(principal: Optional[Principal], requirement: RoleRequirement) -> bool:
    """
    Single role -> hierarchical check, collection of roles -> allow-list.
    An absent principal, or one whose role could not be resolved, never passes.
    """
    if principal is None or principal.role is None:
        return False

    if isinstance(requirement, Role):
        return has_role(principal.role, requirement)

    return has_any_role(principal.role, requirement)
