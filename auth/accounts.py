"""
auth/accounts.py -- Account flows built on the ephemeral token stores.

Flows:
  register               -> unverified identity + verification token + email
  verify_email           -> redeem verification token, mark identity verified
  request_password_reset -> reset token + email, if the address is known
  send_reset_link        -> same, triggered by an admin for a user id
  reset_password         -> redeem reset token, replace the password hash
  invite                 -> invite token, link returned to the inviting admin
  complete_invite        -> redeem invite token, create a verified identity

Every flow takes "now" explicitly and redeems tokens through
EphemeralTokenStore.redeem(), so an expired token raises Expired without being
deleted and without any change to the identity, and a token can only ever be
redeemed once.

Notifier exceptions are not caught here; they propagate to the caller.

Open question kept as-is: issuing a new verification or reset token does not
invalidate earlier unconsumed ones for the same identity.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from urllib.parse import urlencode

from sqlalchemy.exc import IntegrityError

from auth.ephemeral import EphemeralTokenStore
from auth.errors import DuplicateIdentity, InvalidInvite, NotFound
from auth.models import Identity, Role
from auth.notifier import Notifier
from auth.passwords import hash_password
from auth.store import IdentityStore
from core.config import Settings

logger = logging.getLogger("credgate.auth.accounts")

# Roles an invite may grant. Admins are never created through an emailed link.
INVITABLE_ROLES = frozenset({Role.MANAGER})


@dataclass(frozen=True)
class TokenLifetimes:
    verification: timedelta
    password_reset: timedelta
    invite: timedelta

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenLifetimes:
        return cls(
            verification=timedelta(milliseconds=settings.verification_token_ttl_ms),
            password_reset=timedelta(milliseconds=settings.password_reset_token_ttl_ms),
            invite=timedelta(milliseconds=settings.invite_token_ttl_ms),
        )


@dataclass(frozen=True)
class LinkBuilder:
    """Builds the URLs embedded in notifier messages and invite responses."""

    public_base_url: str
    frontend_base_url: str

    def verification(self, token: str) -> str:
        return _with_token(self.public_base_url, "/api/v1/auth/verify", token)

    def password_reset(self, token: str) -> str:
        return _with_token(self.frontend_base_url, "/auth/reset-password", token)

    def invite(self, token: str) -> str:
        return _with_token(self.frontend_base_url, "/complete-invite", token)


def _with_token(base_url: str, path: str, token: str) -> str:
    return f"{base_url.rstrip('/')}{path}?{urlencode({'token': token})}"


class AccountService:
    def __init__(
        self,
        identities: IdentityStore,
        verifications: EphemeralTokenStore,
        password_resets: EphemeralTokenStore,
        invites: EphemeralTokenStore,
        notifier: Notifier,
        lifetimes: TokenLifetimes,
        links: LinkBuilder,
    ) -> None:
        self._identities = identities
        self._verifications = verifications
        self._password_resets = password_resets
        self._invites = invites
        self._notifier = notifier
        self._lifetimes = lifetimes
        self._links = links

    # ------------------------------------------------------------------
    # Registration and verification
    # ------------------------------------------------------------------

    def register(
        self, username: str, password: str, role: str, manager_id: int | None, now: datetime
    ) -> Identity:
        """Create an unverified identity and email it a verification link.

        Raises DuplicateIdentity if the username or manager is already taken.
        """
        self._ensure_available(username, manager_id)
        identity = self._insert(
            Identity(
                username=username,
                hashed_password=hash_password(password),
                role=role,
                verified=False,
                manager_id=manager_id,
            )
        )
        record = self._verifications.create(identity, now, self._lifetimes.verification)
        self._notifier.send_verification_email(identity.username, self._links.verification(record.token))
        return identity

    def verify_email(self, token: str, now: datetime) -> Identity:
        """Redeem a verification token and mark its identity verified.

        Raises NotFound (unknown / already used) or Expired.
        """
        record = self._verifications.redeem(token, now)
        identity = self._owner_of(record.user_id)
        verified = self._identities.save(replace(identity, verified=True))
        logger.info("Identity verified (id=%s)", verified.id)
        return verified

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str, now: datetime) -> None:
        """Email a reset link if the address belongs to an identity.

        Unknown addresses are accepted silently so the caller cannot probe
        which accounts exist.
        """
        identity = self._identities.find_by_username(email)
        if identity is None:
            logger.info("Password reset requested for unknown address")
            return
        self._issue_reset(identity, now)

    def send_reset_link(self, user_id: int, now: datetime) -> None:
        """Admin-triggered reset link. Raises NotFound for an unknown user id."""
        self._issue_reset(self._owner_of(user_id), now)

    def reset_password(self, token: str, new_password: str, now: datetime) -> Identity:
        """Redeem a reset token and replace the password hash.

        Raises NotFound or Expired; on Expired the password is left unchanged.
        """
        record = self._password_resets.redeem(token, now)
        identity = self._owner_of(record.user_id)
        updated = self._identities.save(replace(identity, hashed_password=hash_password(new_password)))
        logger.info("Password reset completed (id=%s)", updated.id)
        return updated

    def _issue_reset(self, identity: Identity, now: datetime) -> None:
        record = self._password_resets.create(identity, now, self._lifetimes.password_reset)
        self._notifier.send_reset_password_email(identity.username, self._links.password_reset(record.token))

    # ------------------------------------------------------------------
    # Invites
    # ------------------------------------------------------------------

    def invite(self, username: str, role: str, manager_id: int, now: datetime) -> str:
        """Create an invite token and return the completion link.

        Raises InvalidInvite for a role that cannot be granted by invite and
        DuplicateIdentity if the username or manager is already taken.
        """
        role = role.upper()
        if role not in INVITABLE_ROLES:
            raise InvalidInvite(f"Role {role!r} cannot be granted by invite.")
        self._ensure_available(username, manager_id)
        record = self._invites.create_invite(username, role, manager_id, now, self._lifetimes.invite)
        return self._links.invite(record.token)

    def complete_invite(self, token: str, password: str, now: datetime) -> Identity:
        """Redeem an invite and create the verified identity it describes.

        Raises NotFound, Expired, or DuplicateIdentity (the username or
        manager was claimed after the invite was issued).
        """
        record = self._invites.redeem(token, now)
        self._ensure_available(record.username, record.manager_id)
        identity = self._insert(
            Identity(
                username=record.username,
                hashed_password=hash_password(password),
                role=record.role,
                verified=True,
                manager_id=record.manager_id,
            )
        )
        logger.info("Invite completed (id=%s, role=%s)", identity.id, identity.role)
        return identity

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_available(self, username: str, manager_id: int | None) -> None:
        if self._identities.exists_by_username(username):
            raise DuplicateIdentity("Username already exists.")
        if manager_id is not None and self._identities.exists_by_manager_id(manager_id):
            raise DuplicateIdentity("This manager is already associated with another user.")

    def _insert(self, identity: Identity) -> Identity:
        # The exists_* checks above race with concurrent inserts; the UNIQUE
        # constraints are the final word.
        try:
            return self._identities.save(identity)
        except IntegrityError as exc:
            raise DuplicateIdentity("Username or manager already taken.") from exc

    def _owner_of(self, user_id: int | None) -> Identity:
        identity = self._identities.find_by_id(user_id) if user_id is not None else None
        if identity is None:
            raise NotFound("Identity does not exist.")
        return identity
