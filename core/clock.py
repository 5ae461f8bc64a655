"""
core/clock.py -- The one place the wall clock is read.

Every validity check in auth/ takes "now" as an argument. The HTTP layer gets
that value from the callable stored on app.state.clock, which defaults to
utcnow() and is replaced by a fixed clock in tests.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware values."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_epoch_millis(moment: datetime) -> int:
    """Whole milliseconds since the Unix epoch (sub-millisecond part truncated)."""
    delta = ensure_aware(moment) - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_epoch_millis(millis: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=millis)
