"""
auth/schema.py -- SQLAlchemy Core tables and engine factory for auth entities.

One MetaData holds the identity table and the three ephemeral token tables so
that the token tables can declare ON DELETE CASCADE foreign keys to users.

Timestamps that take part in comparisons (expires_at_ms) are stored as integer
epoch milliseconds so "expired" is a plain numeric comparison in SQL.
created_at is an ISO 8601 string for display only.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import TokenKind

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False),
    Column("verified", Integer, nullable=False, server_default="0"),
    # UNIQUE on a nullable column: SQLite allows any number of NULLs, which is
    # exactly "optional, but at most one identity per manager".
    Column("manager_id", Integer, unique=True),
    Column("created_at", String(32), nullable=False),
)


def _owned_token_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("token", String(64), nullable=False, unique=True),
        Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        Column("expires_at_ms", BigInteger, nullable=False),
    )


verification_tokens = _owned_token_table("verification_tokens")
password_reset_tokens = _owned_token_table("password_reset_tokens")

invite_tokens = Table(
    "invite_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("username", String(255), nullable=False),
    Column("role", String(30), nullable=False),
    Column("manager_id", Integer, nullable=False),
    Column("expires_at_ms", BigInteger, nullable=False),
)

TOKEN_TABLES: dict[TokenKind, Table] = {
    TokenKind.VERIFICATION: verification_tokens,
    TokenKind.PASSWORD_RESET: password_reset_tokens,
    TokenKind.INVITE: invite_tokens,
}


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys is off by default in SQLite, and
    without it the CASCADE on token tables would be ignored.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(db_url: str) -> Engine:
    """Create an engine for db_url and ensure all auth tables exist."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine
