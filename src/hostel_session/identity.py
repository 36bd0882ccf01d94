"""
Identity record for the logged-in console user.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


LOGIN_ROUTE = "/login"


class Role(str, Enum):
    """Console roles, valued by their wire names."""
    SUPER_ADMIN = "SUPER_ADMIN"
    HOSTEL_OWNER = "HOSTEL_OWNER"
    CUSTODIAN = "CUSTODIAN"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        """Parse a wire name (``HOSTEL_OWNER``) or alias (``tenant-owner``)."""
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid role: {value!r}")
        key = value.strip()
        role = _ROLE_ALIASES.get(key.lower())
        if role is not None:
            return role
        try:
            return cls(key.upper())
        except ValueError:
            raise ValueError(f"Unknown role: {value!r}")


_ROLE_ALIASES = {
    "elevated-admin": Role.SUPER_ADMIN,
    "tenant-owner": Role.HOSTEL_OWNER,
    "tenant-staff": Role.CUSTODIAN,
}

# Landing page after login, per role
HOME_ROUTES = {
    Role.SUPER_ADMIN: "/super-admin",
    Role.HOSTEL_OWNER: "/owner",
    Role.CUSTODIAN: "/custodian",
}


@dataclass(frozen=True)
class Identity:
    """The authenticated user as known to the console."""
    id: int
    username: str
    role: Role
    hostel_id: Optional[int] = None

    @property
    def home_route(self) -> str:
        return HOME_ROUTES[self.role]

    def to_dict(self) -> dict:
        """Convert to the wire/storage layout."""
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role.value,
            "hostelId": self.hostel_id,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Identity":
        """
        Build an Identity from an API payload or stored record.

        Raises:
            ValueError: If any required field is missing or malformed. A
                partial identity is never returned.
        """
        if not isinstance(data, dict):
            raise ValueError("Identity payload must be an object")

        user_id = data.get("id")
        if isinstance(user_id, bool) or not isinstance(user_id, (int, str)) or user_id == "":
            raise ValueError(f"Invalid user id: {user_id!r}")
        try:
            user_id = int(user_id)
        except ValueError:
            raise ValueError(f"Invalid user id: {user_id!r}")

        username = data.get("username")
        if not isinstance(username, str) or not username.strip():
            raise ValueError("Identity has no username")

        role = Role.parse(data.get("role"))

        hostel_id = data.get("hostelId", data.get("hostel_id"))
        if hostel_id is not None:
            if isinstance(hostel_id, bool):
                raise ValueError(f"Invalid hostel id: {hostel_id!r}")
            try:
                hostel_id = int(hostel_id)
            except (TypeError, ValueError):
                raise ValueError(f"Invalid hostel id: {hostel_id!r}")

        return cls(id=user_id, username=username, role=role, hostel_id=hostel_id)
