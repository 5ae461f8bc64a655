"""
auth/credentials.py -- Username/password check that issues session tokens.

Order of checks:
  1. Unknown username           -> InvalidCredentials
  2. Wrong password             -> InvalidCredentials (same error, same timing)
  3. Correct password, but the identity is not verified -> AccountNotVerified
  4. Otherwise                  -> a fresh session token for the username

bcrypt runs on every attempt, against DUMMY_HASH when the username is
unknown, so response time does not reveal which usernames exist. The
verified flag is only consulted after the password matched, so
AccountNotVerified never leaks anything to a caller without the password.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from auth.errors import AccountNotVerified, InvalidCredentials
from auth.models import Identity
from auth.passwords import DUMMY_HASH, verify_password
from auth.store import IdentityStore
from auth.tokens import SessionTokenCodec

logger = logging.getLogger("credgate.auth.credentials")


@dataclass(frozen=True)
class LoginResult:
    """The identity that logged in and the session token issued to it."""

    identity: Identity
    token: str


class CredentialService:
    def __init__(self, identities: IdentityStore, codec: SessionTokenCodec) -> None:
        self._identities = identities
        self._codec = codec

    def authenticate(self, username: str, raw_password: str, now: datetime) -> str:
        """Return a session token for valid, verified credentials.

        Raises InvalidCredentials or AccountNotVerified.
        """
        return self.login(username, raw_password, now).token

    def login(self, username: str, raw_password: str, now: datetime) -> LoginResult:
        """Like authenticate(), but also return the identity the token was issued for."""
        identity = self._identities.find_by_username(username)
        if identity is None:
            # Equalize timing -- do NOT return before running bcrypt
            verify_password(raw_password, DUMMY_HASH)
            raise InvalidCredentials("Invalid username or password.")
        if not verify_password(raw_password, identity.hashed_password):
            raise InvalidCredentials("Invalid username or password.")
        if not identity.verified:
            logger.info("Login refused for unverified identity (id=%s)", identity.id)
            raise AccountNotVerified("Account not verified. Please check your email.")
        return LoginResult(identity=identity, token=self._codec.issue(identity.username, now))
