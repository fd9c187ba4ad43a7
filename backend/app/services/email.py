"""Transactional email delivery through an HTTP provider API."""

from __future__ import annotations

import asyncio
import html
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import requests

from app.config import settings
from app.services.errors import DeliveryError, OperationResult

if TYPE_CHECKING:
    from app.services.email_settings import EmailSettingsRepository

logger = logging.getLogger("clinicflow.email")

TEST_EMAIL_TEXT = (
    "This is a test email from ClinicFlow to verify your email configuration. "
    "If you received this email, your email integration is working correctly!"
)


@dataclass
class EmailMessage:
    """Outbound message in the provider's wire shape."""

    sender: str
    to: list[str]
    subject: str
    html: str
    text: str | None = None
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    reply_to: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "from": self.sender,
            "to": self.to,
            "subject": self.subject,
            "html": self.html,
        }
        if self.text:
            payload["text"] = self.text
        if self.cc:
            payload["cc"] = self.cc
        if self.bcc:
            payload["bcc"] = self.bcc
        if self.reply_to:
            payload["reply_to"] = self.reply_to
        return payload


@dataclass
class DeliveryResult:
    """Provider reply: either a message id or an error message."""

    success: bool
    id: str | None = None
    error: str | None = None


class EmailDeliveryProvider(Protocol):
    """Contract for the external transactional email service."""

    async def send(self, api_key: str, message: EmailMessage) -> DeliveryResult:
        ...


class HTTPEmailDeliveryProvider:
    """Delivery provider speaking a Resend-compatible JSON API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: int | None = None,
    ):
        self.base_url = (base_url or settings.email_provider_base_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.email_provider_timeout_seconds

    async def send(self, api_key: str, message: EmailMessage) -> DeliveryResult:
        url = f"{self.base_url}/emails"
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        payload = message.to_payload()

        def _request() -> DeliveryResult:
            try:
                response = requests.post(
                    url,
                    json=payload,
                    headers=headers,
                    timeout=self.timeout_seconds,
                )
            except requests.RequestException as exc:
                return DeliveryResult(success=False, error=f"Email provider request failed: {exc}")

            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}

            if response.status_code >= 400:
                detail = body.get("message") or response.text.strip()[:240] or response.reason
                return DeliveryResult(
                    success=False,
                    error=f"Email provider returned HTTP {response.status_code}: {detail}",
                )
            return DeliveryResult(success=True, id=body.get("id"))

        result = await asyncio.to_thread(_request)
        if result.success:
            logger.info("Email accepted by provider id=%s recipients=%d", result.id, len(message.to))
        else:
            logger.warning("Email provider rejected message: %s", result.error)
        return result


def format_from_header(from_address: str, from_display_name: str | None = None) -> str:
    """Build the From header: ``"Name <address>"`` or just the address."""
    if from_display_name:
        return f"{from_display_name} <{from_address}>"
    return from_address


def _as_list(value: str | Sequence[str] | None) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [item for item in value if item]


def render_email_content(
    title: str,
    content: str,
    clinic_name: str | None = None,
    footer_text: str | None = None,
) -> str:
    """Wrap body HTML with a heading and the standard automated-message footer."""
    footer = footer_text or (
        f"This is an automated message from {clinic_name or settings.email_default_from_name}. "
        "Please do not reply to this email."
    )
    return (
        f"<h2>{html.escape(title)}</h2>\n"
        f"{content}\n"
        '<p style="margin-top: 30px; padding-top: 20px; border-top: 1px solid #e5e7eb; '
        f'color: #6b7280; font-size: 14px;">{html.escape(footer)}</p>'
    )


def build_test_message(
    from_address: str,
    from_display_name: str | None,
    test_recipient: str,
) -> EmailMessage:
    """Fixed verification message used by the settings test send."""
    return EmailMessage(
        sender=format_from_header(from_address, from_display_name),
        to=[test_recipient],
        subject=settings.email_test_subject,
        html=render_email_content(
            title="Email configuration verified",
            content=f"<p>{html.escape(TEST_EMAIL_TEXT)}</p>",
            clinic_name=from_display_name,
        ),
        text=TEST_EMAIL_TEXT,
        reply_to=from_address,
    )


@dataclass
class NotificationOptions:
    """Application email addressed with the actor's persisted settings."""

    to: str | Sequence[str]
    subject: str
    html: str
    text: str | None = None
    cc: str | Sequence[str] | None = None
    bcc: str | Sequence[str] | None = None
    reply_to: str | None = None


async def send_notification(
    actor_id: str,
    options: NotificationOptions,
    *,
    repository: "EmailSettingsRepository",
    provider: EmailDeliveryProvider,
) -> OperationResult:
    """Send an application email using the actor's saved configuration.

    Entry point for other backend modules (reminders, invoices); the settings
    API itself only sends test emails.
    """
    try:
        config = await repository.get(actor_id)
    except Exception as exc:
        logger.exception("Failed to load email settings for notification")
        return OperationResult.failure(DeliveryError(f"Email settings unavailable: {exc}"))

    if config is None or not config.enabled or not config.provider_api_key or not config.from_address:
        return OperationResult.failure(
            DeliveryError("Email settings not configured or disabled")
        )

    recipients = _as_list(options.to)
    if not recipients:
        return OperationResult.failure(DeliveryError("At least one recipient is required"))

    message = EmailMessage(
        sender=format_from_header(
            config.from_address,
            config.from_display_name or settings.email_default_from_name,
        ),
        to=recipients,
        subject=options.subject,
        html=options.html,
        text=options.text,
        cc=_as_list(options.cc),
        bcc=_as_list(options.bcc),
        reply_to=options.reply_to or config.from_address,
    )
    try:
        result = await provider.send(config.provider_api_key, message)
    except Exception as exc:
        logger.exception("Email provider raised while sending notification")
        return OperationResult.failure(DeliveryError(str(exc)))

    if not result.success:
        return OperationResult.failure(DeliveryError(result.error or "Failed to send email"))
    return OperationResult.success(result.id)
