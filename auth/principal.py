"""
auth/principal.py -- Who the current request is acting as.

Principal is a tagged variant: either Anonymous (no identity established) or
Authenticated (a resolved identity and its role). The authentication gate
always leaves exactly one of these on request.state.principal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from auth.models import Identity


@dataclass(frozen=True)
class Anonymous:
    pass


@dataclass(frozen=True)
class Authenticated:
    identity: Identity
    role: str

    @property
    def username(self) -> str:
        return self.identity.username


Principal = Union[Anonymous, Authenticated]

ANONYMOUS = Anonymous()


def is_authenticated(principal: Principal | None) -> bool:
    """True only for a genuine, gate-established identity."""
    return isinstance(principal, Authenticated)
