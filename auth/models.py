"""
auth/models.py -- Domain types for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store and the account flows do the work.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of account roles. Gates compare members, never raw strings."""

    user = "user"
    subadmin = "subadmin"
    admin = "admin"


@dataclass
class User:
    """A registered account.

    email and handle are stored lowercased and are both accepted as login
    keys. hashed_password is a bcrypt hash and never leaves the process.

    The verification pair (verification_token_hash, verification_token_expires)
    is set while an email verification is pending and cleared on success.
    Only the HMAC of the raw token is stored -- a leaked database does not
    yield usable verification links.
    """

    name: str
    email: str
    handle: str
    hashed_password: str
    role: Role = Role.user
    id: int | None = None
    is_active: bool = True
    is_verified: bool = False
    verification_token_hash: str | None = None
    verification_token_expires: datetime | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Principal:
    """Identity resolved from a session token: who is calling, and as what."""

    id: int
    role: Role
