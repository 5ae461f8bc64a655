"""
auth/errors.py -- Exception taxonomy for the credential and token lifecycle.

Propagation policy:
  TokenError subclasses are raised by the session token codec and caught by the
  authentication gate, which downgrades them to an anonymous principal. They
  never reach a client as-is.

  InvalidCredentials, AccountNotVerified, NotFound, DuplicateIdentity and
  InvalidInvite surface to the calling flow. Route handlers map them to
  generic HTTP rejections (see api/routes/v1/).

  ConfigurationError is fatal at startup.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised by the auth package."""


class ConfigurationError(AuthError):
    """Signing secret is missing, malformed, or too short."""


class InvalidCredentials(AuthError):
    """Unknown username or wrong password. The two cases are deliberately indistinguishable."""


class AccountNotVerified(AuthError):
    """Correct password, but the identity has not completed email verification."""


class NotFound(AuthError):
    """An ephemeral token or identity does not exist (or was already consumed)."""


class DuplicateIdentity(AuthError):
    """Username or manager assignment is already taken."""


class InvalidInvite(AuthError):
    """Invite request or redemption violates an invite rule (e.g. role not allowed)."""


class TokenError(AuthError):
    """Base class for token verification failures."""


class MalformedToken(TokenError):
    pass


class BadSignature(TokenError):
    pass


class Expired(TokenError):
    """Token is past its expiry. Used for both session and ephemeral tokens."""
