"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper. IdentityStore is the repository;
_row_to_identity is the mapper. Services and routes never touch SQL directly.

Lookups return None when a row is absent; deciding whether absence is an
error belongs to the caller (the credential check treats it as
InvalidCredentials, the gate as anonymous, account flows as NotFound).

Security:
  All queries use bound parameters. No f-strings in SQL.

Identities are never deleted by this service. Deleting a users row elsewhere
cascades to its verification and password reset tokens (see auth/schema.py).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.engine import Engine

from auth.errors import NotFound
from auth.models import Identity
from auth.schema import users

logger = logging.getLogger("credgate.auth.store")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class IdentityStore:
    """Repository for Identity entities.

    Usage:
        store = IdentityStore(make_engine("sqlite:///credgate.db"))
        saved = store.save(Identity(username="alice@example.com", hashed_password=hash_password("pw"), role="USER"))
        store.find_by_username("alice@example.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_username(self, username: str) -> Identity | None:
        """Look up an identity by exact username (case-sensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.username == username)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def find_by_id(self, user_id: int) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def exists_by_username(self, username: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(users.c.id).where(users.c.username == username)).first()
        return row is not None

    def exists_by_manager_id(self, manager_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(users.c.id).where(users.c.manager_id == manager_id)).first()
        return row is not None

    def has_users(self) -> bool:
        """Return True if at least one identity exists. Used by the bootstrap CLI."""
        with self.engine.connect() as conn:
            row = conn.execute(select(users.c.id).limit(1)).first()
        return row is not None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def save(self, identity: Identity) -> Identity:
        """Insert (id is None) or update an identity and return the stored version.

        Raises sqlalchemy.exc.IntegrityError if the username or manager_id is
        already taken by another row. Raises NotFound when updating an id that
        does not exist.
        """
        values = {
            "username": identity.username,
            "hashed_password": identity.hashed_password,
            "role": identity.role,
            "verified": 1 if identity.verified else 0,
            "manager_id": identity.manager_id,
        }
        with self.engine.begin() as conn:
            if identity.id is None:
                created_at = _now_iso()
                result = conn.execute(users.insert().values(created_at=created_at, **values))
                saved = replace(identity, id=result.inserted_primary_key[0], created_at=created_at)
                logger.info("Identity created (id=%s, role=%s)", saved.id, saved.role)
                return saved
            result = conn.execute(users.update().where(users.c.id == identity.id).values(**values))
        if result.rowcount == 0:
            raise NotFound(f"Identity {identity.id} does not exist.")
        return identity


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        role=row.role,
        verified=bool(row.verified),
        manager_id=row.manager_id,
        created_at=row.created_at,
    )
