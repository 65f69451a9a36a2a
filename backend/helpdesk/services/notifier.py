"""Outbound email through the ZeptoMail HTTP API."""
import html
import logging
from dataclasses import dataclass

import httpx

from helpdesk.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class EmailResult:
    success: bool
    error: str | None = None
    request_id: str | None = None


class EmailNotifier:
    """
    Fire-and-forget mail delivery.

    `send` never raises: transport and API failures are logged and returned.
    Without a ZeptoMail token the notifier runs in dev mode and only logs.
    """

    def __init__(self, settings: Settings | None = None, transport: httpx.BaseTransport | None = None):
        self.settings = settings or get_settings()
        self.transport = transport

    @property
    def dev_mode(self) -> bool:
        return not self.settings.zeptomail_token

    def send(self, recipients: list[str] | str, subject: str, html_body: str) -> EmailResult:
        if isinstance(recipients, str):
            recipients = [recipients]
        recipients = [r for r in recipients if r]
        if not recipients:
            return EmailResult(success=False, error="No recipients")

        if self.dev_mode:
            logger.info(f"[dev-mode] Email to {', '.join(recipients)}: {subject}")
            return EmailResult(success=True, request_id="dev-mode")

        payload = {
            "from": {
                "address": self.settings.zeptomail_from_email,
                "name": self.settings.zeptomail_from_name or self.settings.app_name,
            },
            "to": [{"email_address": {"address": r}} for r in recipients],
            "subject": subject,
            "htmlbody": html_body,
        }
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Zoho-enczapikey {self.settings.zeptomail_token}",
        }

        try:
            with httpx.Client(timeout=15, transport=self.transport) as client:
                response = client.post(self.settings.zeptomail_api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Email transport error for '{subject}': {e}")
            return EmailResult(success=False, error=str(e))

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            error = None
            if isinstance(data, dict):
                detail = data.get("error")
                error = data.get("message") or (detail.get("message") if isinstance(detail, dict) else detail)
            error = error or f"HTTP {response.status_code}"
            logger.error(f"Email API error for '{subject}': {error}")
            return EmailResult(success=False, error=error)

        request_id = data.get("request_id") if isinstance(data, dict) else None
        logger.info(f"Email sent to {len(recipients)} recipient(s): {subject}")
        return EmailResult(success=True, request_id=request_id)


# ============ Templates ============

def _layout(app_name: str, body: str) -> str:
    return (
        "<div style=\"font-family: Arial, sans-serif; max-width: 560px; margin: 0 auto;\">"
        f"<h2 style=\"color: #1f2937;\">{html.escape(app_name)}</h2>"
        f"{body}"
        "<p style=\"color: #6b7280; font-size: 12px;\">This is an automated message, please do not reply.</p>"
        "</div>"
    )


def otp_email(code: str, purpose: str, ttl_minutes: int, app_name: str) -> tuple[str, str]:
    """(subject, html) for a verification code."""
    subject = f"Your {app_name} verification code"
    body = (
        f"<p>Use the following code to {html.escape(purpose)}:</p>"
        f"<p style=\"font-size: 28px; font-weight: bold; letter-spacing: 6px;\">{html.escape(code)}</p>"
        f"<p>The code expires in {ttl_minutes} minutes. If you did not request it, ignore this email.</p>"
    )
    return subject, _layout(app_name, body)


def welcome_email(name: str, app_url: str, app_name: str) -> tuple[str, str]:
    subject = f"Welcome to {app_name}"
    body = (
        f"<p>Hello {html.escape(name)},</p>"
        "<p>Your account has been created. You can now sign in and open support tickets.</p>"
        f"<p><a href=\"{html.escape(app_url)}\">{html.escape(app_url)}</a></p>"
    )
    return subject, _layout(app_name, body)
