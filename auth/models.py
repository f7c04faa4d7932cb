"""
auth/models.py -- Domain types for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and routes do the work. Role and UserStatus are closed enums so
a typo in a role name fails loudly instead of silently denying access.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    director = "director"
    senior_auditor = "senior_auditor"
    auditor = "auditor"
    management = "management"
    board = "board"


class UserStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


@dataclass
class User:
    """A staff member who can sign in to AuditDesk.

    email is the login identifier and is unique across all users.
    role is fixed at registration; no exposed operation changes it.
    Users are never hard-deleted -- set status to inactive or suspended.
    """

    email: str
    first_name: str
    last_name: str
    role: Role
    password_hash: str = ""
    status: UserStatus = UserStatus.active
    id: int | None = None
    phone: str | None = None
    department: str | None = None
    certifications: list[str] = field(default_factory=list)  # CPA, CIA, CISA, ...
    last_login: str | None = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_active(self) -> bool:
        return self.status is UserStatus.active


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a session token."""

    user_id: int
    email: str
    role: Role
    expires_at: datetime


@dataclass(frozen=True)
class Principal:
    """The authenticated caller handed to route handlers by the access gate.

    Built from the live user record, not from the token, so role and name
    reflect the database at request time.
    """

    id: int
    email: str
    role: Role
    first_name: str
    last_name: str

    @classmethod
    def from_user(cls, user: User) -> Principal:
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            first_name=user.first_name,
            last_name=user.last_name,
        )
