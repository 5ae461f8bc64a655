"""
auth/notifier.py -- Delivery of verification and password reset links.

Email delivery is owned by another service. This module only fixes the
contract the account flows call, plus LoggingNotifier, which writes the event
to the log instead of sending anything (the default when no real transport is
wired in). Any exception a real notifier raises propagates to the flow's
caller unchanged.

Links carry live single-use tokens, so they are logged at DEBUG only.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger("credgate.notifier")


class Notifier(Protocol):
    def send_verification_email(self, address: str, link: str) -> None: ...

    def send_reset_password_email(self, address: str, link: str) -> None: ...


class LoggingNotifier:
    def __init__(self) -> None:
        logger.info("LoggingNotifier active: links are logged, not emailed")

    def send_verification_email(self, address: str, link: str) -> None:
        logger.info("Verification email queued for %s", address)
        logger.debug("Verification link for %s: %s", address, link)

    def send_reset_password_email(self, address: str, link: str) -> None:
        logger.info("Password reset email queued for %s", address)
        logger.debug("Password reset link for %s: %s", address, link)
