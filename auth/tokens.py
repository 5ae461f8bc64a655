"""
auth/tokens.py -- Session token codec (signed, time-bounded, stateless).

Security design decisions:
  JWS: python-jose with HS256. Tokens carry exactly three claims: sub (the
       username), iat and exp. Nothing about a session is stored server-side;
       every validity fact is inside the signed payload.

  Time: every operation that depends on the clock takes "now" as an argument.
       A token issued at T with TTL D is valid for now < T + D and invalid from
       T + D onwards (equality is expired).

  Precision: iat/exp are JWT NumericDate values carried at millisecond
       precision (the unit of the configured TTL). Whole seconds serialize as
       integers, anything finer as a float with three decimals.

  Failure classes: verify() distinguishes three failures so callers and logs
       can tell them apart:
         MalformedToken -- not a compact JWS, or the claims are not usable
         BadSignature   -- the signature or algorithm does not verify
         Expired        -- signature fine, but now >= exp
       The authentication gate treats all three the same way (anonymous).

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import jws
from jose.exceptions import JWSError

from auth.errors import BadSignature, Expired, MalformedToken, TokenError
from auth.keys import ALGORITHM, SigningKey
from core.clock import ensure_aware, from_epoch_millis, to_epoch_millis

logger = logging.getLogger("credgate.auth.tokens")


@dataclass(frozen=True)
class SessionClaims:
    subject: str
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return ensure_aware(now) >= self.expires_at


# ---------------------------------------------------------------------------
# NumericDate helpers
# ---------------------------------------------------------------------------


def _truncate_to_millis(moment: datetime) -> datetime:
    moment = ensure_aware(moment).astimezone(timezone.utc)
    return moment.replace(microsecond=moment.microsecond // 1000 * 1000)


def _to_numeric_date(moment: datetime) -> int | float:
    millis = to_epoch_millis(moment)
    if millis % 1000 == 0:
        return millis // 1000
    return millis / 1000


def _from_numeric_date(value: object) -> datetime:
    # bool is an int subclass; a boolean exp is not a date
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedToken("NumericDate claim is not a number.")
    try:
        return from_epoch_millis(round(value * 1000))
    except (OverflowError, ValueError) as exc:
        raise MalformedToken("NumericDate claim is out of range.") from exc


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


class SessionTokenCodec:
    """Issues and verifies session tokens with one signing key and one TTL.

    Instances hold no mutable state and are safe to share across concurrent
    requests.

    Usage:
        codec = SessionTokenCodec(SigningKey.from_secret(settings.secret_key), settings.session_ttl_ms)
        token = codec.issue("alice", now)
        codec.subject_of(token, now)          # "alice"
        codec.is_valid_for(token, "alice", later)
    """

    def __init__(self, key: SigningKey, ttl_ms: int) -> None:
        if ttl_ms <= 0:
            raise ValueError("Session TTL must be a positive number of milliseconds.")
        self._key = key
        self.ttl = timedelta(milliseconds=ttl_ms)

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    def issue(self, subject: str, now: datetime) -> str:
        """Return a compact HS256 JWS with claims {sub, iat = now, exp = now + TTL}."""
        if not subject:
            raise ValueError("Session token subject must be a non-empty string.")
        issued_at = _truncate_to_millis(now)
        claims = {
            "sub": subject,
            "iat": _to_numeric_date(issued_at),
            "exp": _to_numeric_date(issued_at + self.ttl),
        }
        return jws.sign(claims, self._key.jose_key, algorithm=ALGORITHM)

    def verify(self, token: str, now: datetime) -> SessionClaims:
        """Verify signature and expiry; return the parsed claims.

        Raises MalformedToken, BadSignature or Expired (all TokenError).
        """
        if not isinstance(token, str) or not token:
            raise MalformedToken("Token is empty.")

        try:
            unverified = jws.get_unverified_claims(token)
            payload = json.loads(unverified)
        except (JWSError, ValueError, UnicodeDecodeError) as exc:
            raise MalformedToken("Token is not a compact JWS.") from exc
        if not isinstance(payload, dict):
            raise MalformedToken("Token payload is not a JSON object.")

        try:
            jws.verify(token, self._key.jose_key, algorithms=[ALGORITHM])
        except JWSError as exc:
            raise BadSignature("Token signature does not verify.") from exc

        claims = _claims_from_payload(payload)
        if claims.is_expired(now):
            raise Expired("Session token has expired.")
        return claims

    def subject_of(self, token: str, now: datetime) -> str:
        """Return the verified subject. Fails exactly like verify()."""
        return self.verify(token, now).subject

    def is_valid_for(self, token: str, expected_subject: str, now: datetime) -> bool:
        """True iff the token verifies, is unexpired, and its subject equals expected_subject.

        Never raises: every verification failure maps to False.
        """
        try:
            claims = self.verify(token, now)
        except TokenError as exc:
            logger.debug("Session token rejected: %s", type(exc).__name__)
            return False
        return claims.subject == expected_subject


def _claims_from_payload(payload: dict) -> SessionClaims:
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise MalformedToken("Token has no subject.")
    if "iat" not in payload or "exp" not in payload:
        raise MalformedToken("Token is missing iat or exp.")
    return SessionClaims(
        subject=subject,
        issued_at=_from_numeric_date(payload["iat"]),
        expires_at=_from_numeric_date(payload["exp"]),
    )
