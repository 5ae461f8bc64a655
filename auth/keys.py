"""
auth/keys.py -- Signing key provider for session tokens.

The configured SECRET_KEY is the standard base64 encoding of raw key bytes.
It is decoded exactly once at startup into an immutable SigningKey, which is
then passed explicitly to SessionTokenCodec. There is no module-level key and
no runtime rotation.

HS256 needs a key at least as long as its output (256 bits); anything shorter
is refused with ConfigurationError rather than silently weakening signatures.
"""

from __future__ import annotations

import base64
import binascii
import secrets
from dataclasses import dataclass, field

from jose import jwk
from jose.backends.base import Key
from jose.constants import ALGORITHMS

from auth.errors import ConfigurationError

ALGORITHM = ALGORITHMS.HS256
MIN_KEY_BYTES = 32


@dataclass(frozen=True)
class SigningKey:
    """An HMAC-SHA256 key ready for python-jose.

    jose_key is the pre-built jose Key object. Passing a Key (rather than raw
    bytes) to jws.sign/jws.verify skips jose's attempt to parse the key as a
    JSON JWK set.
    """

    raw: bytes = field(repr=False)
    jose_key: Key = field(repr=False, compare=False)

    @classmethod
    def from_secret(cls, secret: str | None) -> SigningKey:
        """Decode a base64 secret into a SigningKey or raise ConfigurationError."""
        if not secret or not secret.strip():
            raise ConfigurationError("SECRET_KEY is not configured.")
        try:
            raw = base64.b64decode(secret.strip(), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError("SECRET_KEY is not valid base64.") from exc
        if len(raw) < MIN_KEY_BYTES:
            raise ConfigurationError(
                f"SECRET_KEY decodes to {len(raw) * 8} bits; HS256 requires at least {MIN_KEY_BYTES * 8}."
            )
        return cls(raw=raw, jose_key=jwk.construct(raw, ALGORITHM))


def generate_secret() -> str:
    """Return a fresh base64-encoded 256-bit secret suitable for SECRET_KEY."""
    return base64.b64encode(secrets.token_bytes(MIN_KEY_BYTES)).decode("ascii")
