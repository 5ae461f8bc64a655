"""
auth/gate.py -- Per-request authentication gate.

Runs once per request as HTTP middleware and leaves exactly one Principal on
request.state.principal:

  1. A principal already established upstream is left untouched.
  2. No "Authorization: Bearer <token>" header        -> Anonymous
  3. Token fails verification (malformed / bad signature / expired)
                                                       -> Anonymous
  4. Subject does not resolve to a stored identity    -> Anonymous
  5. Token is not valid for that identity's username  -> Anonymous
  6. Otherwise                                        -> Authenticated

The gate never rejects a request on its own. Routes decide what an Anonymous
principal may do (see auth/dependencies.py). A failing identity lookup is
logged and treated as Anonymous rather than turned into a 500.

Collaborators are read from app.state: codec, identity_store, clock.
"""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import TokenError
from auth.principal import ANONYMOUS, Authenticated, Principal

logger = logging.getLogger("credgate.auth.gate")


def bearer_token(request: Request) -> str | None:
    """Return the credential from an "Authorization: Bearer ..." header, if any."""
    header = request.headers.get("Authorization", "")
    scheme, _, credentials = header.partition(" ")
    credentials = credentials.strip()
    if scheme.lower() != "bearer" or not credentials:
        return None
    return credentials


def resolve_principal(request: Request) -> Principal:
    """Work out who the request is acting as. Never raises."""
    token = bearer_token(request)
    if token is None:
        return ANONYMOUS

    state = request.app.state
    codec = state.codec
    now = state.clock()

    try:
        subject = codec.subject_of(token, now)
    except TokenError as exc:
        logger.info("Session token rejected: %s", type(exc).__name__)
        return ANONYMOUS

    try:
        identity = state.identity_store.find_by_username(subject)
    except SQLAlchemyError:
        logger.warning("Identity lookup failed during authentication", exc_info=True)
        return ANONYMOUS
    if identity is None:
        logger.info("Session token subject no longer exists")
        return ANONYMOUS

    if not codec.is_valid_for(token, identity.username, now):
        return ANONYMOUS
    return Authenticated(identity=identity, role=identity.role)


async def authentication_gate(request: Request, call_next):
    """HTTP middleware wrapper around resolve_principal().

    The identity lookup is blocking SQLAlchemy I/O, so it runs in the
    threadpool like a sync dependency would, not on the event loop.
    """
    if getattr(request.state, "principal", None) is None:
        request.state.principal = await run_in_threadpool(resolve_principal, request)
    return await call_next(request)
