"""
auth/ephemeral.py -- Single-use, expiry-bound credential tokens.

Three kinds share one lifecycle: email verification, password reset, and
invite. Each kind lives in its own table; one EphemeralTokenStore instance
serves one kind.

Lifecycle:
  create  -- random opaque string (secrets.token_urlsafe(32): 256 bits),
             persisted with expires_at = now + ttl. Earlier unconsumed tokens
             for the same identity are left alone.
  lookup  -- fetch the row or raise NotFound. Expiry is NOT checked here.
  consume -- DELETE ... WHERE token = :token, reporting whether a row was
             removed. This conditional delete is the only consumption step,
             so at most one caller can ever see True for a given token.
  redeem  -- lookup, reject expired tokens with Expired (row left in place),
             then consume. If the delete removes nothing, a concurrent
             redemption already won and this caller gets NotFound.

Expired rows are never removed on a timer. purge_expired() exists for an
external janitor (see `python main.py purge-tokens`).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy.engine import Engine

from auth.errors import Expired, NotFound
from auth.models import EphemeralToken, Identity, TokenKind
from auth.schema import TOKEN_TABLES
from core.clock import from_epoch_millis, to_epoch_millis

logger = logging.getLogger("credgate.auth.ephemeral")

TOKEN_BYTES = 32


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class EphemeralTokenStore:
    """Repository for one kind of ephemeral credential token.

    Usage:
        verifications = EphemeralTokenStore(engine, TokenKind.VERIFICATION)
        record = verifications.create(identity, now, timedelta(hours=24))
        ...
        record = verifications.redeem(record.token, later)   # Expired / NotFound
    """

    def __init__(self, engine: Engine, kind: TokenKind) -> None:
        self.engine = engine
        self.kind = kind
        self._table = TOKEN_TABLES[kind]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, identity: Identity, now: datetime, ttl: timedelta) -> EphemeralToken:
        """Issue a token owned by an existing identity (verification / password reset)."""
        if self.kind is TokenKind.INVITE:
            raise ValueError("Invite tokens are created with create_invite().")
        if identity.id is None:
            raise ValueError("Cannot issue a token for an identity that has not been saved.")
        record = EphemeralToken(
            kind=self.kind,
            token=generate_token(),
            expires_at=_expiry(now, ttl),
            user_id=identity.id,
        )
        self._insert(record, user_id=record.user_id)
        logger.info("Issued %s token (user_id=%s)", self.kind.value, identity.id)
        return record

    def create_invite(
        self, username: str, role: str, manager_id: int, now: datetime, ttl: timedelta
    ) -> EphemeralToken:
        """Issue an invite token carrying the role and manager for the identity-to-be."""
        if self.kind is not TokenKind.INVITE:
            raise ValueError("create_invite() is only valid on the invite store.")
        record = EphemeralToken(
            kind=self.kind,
            token=generate_token(),
            expires_at=_expiry(now, ttl),
            username=username,
            role=role,
            manager_id=manager_id,
        )
        self._insert(record, username=username, role=role, manager_id=manager_id)
        logger.info("Issued invite token (role=%s, manager_id=%s)", role, manager_id)
        return record

    def _insert(self, record: EphemeralToken, **owner) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                self._table.insert().values(
                    token=record.token,
                    expires_at_ms=to_epoch_millis(record.expires_at),
                    **owner,
                )
            )

    # ------------------------------------------------------------------
    # Read / consume
    # ------------------------------------------------------------------

    def lookup(self, token: str) -> EphemeralToken:
        """Return the stored record for token or raise NotFound. Does not check expiry."""
        with self.engine.connect() as conn:
            row = conn.execute(self._table.select().where(self._table.c.token == token)).fetchone()
        if row is None:
            raise NotFound(f"No {self.kind.value} token matches.")
        return self._row_to_token(row)

    def consume(self, record: EphemeralToken) -> bool:
        """Delete the record. Returns True only for the call that actually removed the row."""
        with self.engine.begin() as conn:
            result = conn.execute(self._table.delete().where(self._table.c.token == record.token))
        return result.rowcount > 0

    def redeem(self, token: str, now: datetime) -> EphemeralToken:
        """Look up, check expiry, and consume in one step.

        Raises NotFound for unknown, already-consumed, or concurrently
        consumed tokens, and Expired for tokens at or past their expiry. An
        expired token is not deleted.
        """
        record = self.lookup(token)
        if record.is_expired(now):
            raise Expired(f"{self.kind.value} token has expired.")
        if not self.consume(record):
            logger.warning("Lost redemption race for %s token", self.kind.value)
            raise NotFound(f"No {self.kind.value} token matches.")
        return record

    def purge_expired(self, now: datetime) -> int:
        """Delete every row with expires_at <= now. Returns the number of rows removed."""
        cutoff = to_epoch_millis(now)
        with self.engine.begin() as conn:
            result = conn.execute(self._table.delete().where(self._table.c.expires_at_ms <= cutoff))
        if result.rowcount:
            logger.info("Purged %d expired %s token(s)", result.rowcount, self.kind.value)
        return result.rowcount

    # ------------------------------------------------------------------
    # Row mapper
    # ------------------------------------------------------------------

    def _row_to_token(self, row) -> EphemeralToken:
        mapping = row._mapping
        return EphemeralToken(
            kind=self.kind,
            token=row.token,
            expires_at=from_epoch_millis(row.expires_at_ms),
            user_id=mapping.get("user_id"),
            username=mapping.get("username"),
            role=mapping.get("role"),
            manager_id=mapping.get("manager_id"),
        )


def _expiry(now: datetime, ttl: timedelta) -> datetime:
    if ttl <= timedelta(0):
        raise ValueError("Token TTL must be positive.")
    # Stored at millisecond precision; truncate here so the returned record
    # matches what lookup() will read back.
    return from_epoch_millis(to_epoch_millis(now) + _ttl_millis(ttl))


def _ttl_millis(ttl: timedelta) -> int:
    return (ttl.days * 86400 + ttl.seconds) * 1000 + ttl.microseconds // 1000
