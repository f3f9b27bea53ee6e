"""Outbound account notifications (verification and password reset)."""

from __future__ import annotations

import logging
from typing import Protocol

from wedding_api.core.logging import mask_email

LOGGER = logging.getLogger(__name__)


class AuthNotifier(Protocol):
    """Delivery channel for account emails."""

    def send_verification(self, *, email: str, token: str) -> None: ...

    def send_password_reset(self, *, email: str, token: str) -> None: ...


class LoggingNotifier:
    """Notifier that only records that a message was queued.

    Tokens are never written to the log; deployments with a mail provider
    plug in their own ``AuthNotifier``.
    """

    def __init__(self, *, logger: logging.Logger = LOGGER) -> None:
        self._logger = logger

    def send_verification(self, *, email: str, token: str) -> None:
        _ = token
        self._logger.info("verification_email_queued to=%s", mask_email(email))

    def send_password_reset(self, *, email: str, token: str) -> None:
        _ = token
        self._logger.info("password_reset_email_queued to=%s", mask_email(email))
