"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial
predicates). Stores and services do the work.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from core.clock import ensure_aware


class Role:
    """Role names stored on identities. Kept as plain strings in the DB."""

    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    USER = "USER"


@dataclass
class Identity:
    """A user account.

    username doubles as the email address the notifier delivers links to.
    manager_id links the account to a manager profile owned by another
    service; at most one identity may reference a given manager.

    id is None before the record is written to the database.
    """

    username: str
    hashed_password: str
    role: str
    verified: bool = False
    manager_id: int | None = None
    id: int | None = None
    created_at: str | None = None


class TokenKind(str, Enum):
    VERIFICATION = "verification"
    PASSWORD_RESET = "password_reset"
    INVITE = "invite"


@dataclass(frozen=True)
class EphemeralToken:
    """A single-use, expiry-bound token row.

    VERIFICATION and PASSWORD_RESET rows reference an existing identity by
    user_id. INVITE rows reference the identity-to-be by username and carry
    the role and manager assignment applied on redemption.
    """

    kind: TokenKind
    token: str
    expires_at: datetime
    user_id: int | None = None
    username: str | None = None
    role: str | None = None
    manager_id: int | None = None

    def is_expired(self, now: datetime) -> bool:
        return ensure_aware(now) >= self.expires_at
