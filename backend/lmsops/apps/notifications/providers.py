from __future__ import annotations

import logging
import os
from typing import Tuple

logger = logging.getLogger(__name__)


class EmailProvider:
    def send(
        self,
        *,
        template_type: str,
        recipient: str,
        subject: str,
        body: str,
        correlation_id: str | None,
    ) -> None:
        raise NotImplementedError


class NoopProvider(EmailProvider):
    def send(
        self,
        *,
        template_type: str,
        recipient: str,
        subject: str,
        body: str,
        correlation_id: str | None,
    ) -> None:
        return None


class LoggingProvider(EmailProvider):
    """Writes each message to the log instead of a mail server."""

    def send(
        self,
        *,
        template_type: str,
        recipient: str,
        subject: str,
        body: str,
        correlation_id: str | None,
    ) -> None:
        logger.info(
            "Email dispatched to log",
            extra={
                "template_type": template_type,
                "recipient": recipient,
                "subject": subject,
                "correlation_id": correlation_id,
            },
        )


def get_email_provider() -> Tuple[EmailProvider, bool]:
    provider_name = (
        os.getenv("NOTIFICATIONS_EMAIL_PROVIDER")
        or os.getenv("EMAIL_PROVIDER")
        or ""
    ).strip().lower()
    if not provider_name or provider_name in {"none", "noop", "disabled"}:
        return NoopProvider(), False
    if provider_name in {"console", "log", "logging"}:
        return LoggingProvider(), True
    raise ValueError(f"Unsupported email provider: {provider_name}")
