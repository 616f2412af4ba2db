"""
Mail Service - transactional e-mail over an HTTP API (Brevo-compatible).

One Mailer is created at startup and injected; it owns a pooled
httpx.AsyncClient and the Jinja2 environment for e-mail templates.
"""

import base64
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from confpay.config import Settings
from confpay.errors import BadRequestError, MailDeliveryError

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"


@dataclass
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str
    attachments: List[Attachment] = field(default_factory=list)


def build_environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )


class Mailer:
    """Renders and sends transactional e-mail."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        from_name: str,
        from_address: str,
        reply_to: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.from_name = from_name
        self.from_address = from_address
        self.reply_to = reply_to
        self.env = build_environment()
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        return cls(
            api_url=settings.mail_api_url,
            api_key=settings.mail_api_key,
            from_name=settings.mail_from_name,
            from_address=settings.mail_from_address,
            reply_to=settings.mail_reply_to,
            timeout=settings.mail_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def render_registration_confirmation(
        self,
        first_name: str,
        registration_code: str,
        conference_type: str,
        qr_png: bytes,
    ) -> RenderedEmail:
        """Confirmation e-mail with the QR credential attached as a PNG."""
        context = {
            "first_name": first_name,
            "registration_code": registration_code,
            "conference_type": conference_type,
        }
        subject = self.env.from_string(
            "APSC 2026 - Registration Confirmation & Official Invitation ({{ registration_code }})"
        ).render(context)
        return RenderedEmail(
            subject=subject,
            html=self.env.get_template("registration_confirmation.html").render(context),
            text=self.env.get_template("registration_confirmation.txt").render(context),
            attachments=[
                Attachment(
                    filename=f"APSC2026-QR-{registration_code}.png",
                    content=qr_png,
                    content_type="image/png",
                )
            ],
        )

    async def send(self, to: str, email: RenderedEmail) -> Optional[str]:
        """Send a rendered e-mail; returns the provider message id."""
        if not to:
            raise BadRequestError("Missing email recipient (to).")
        if not self.api_key:
            raise MailDeliveryError("Mail API key not configured.")

        payload: Dict[str, Any] = {
            "sender": {"name": self.from_name, "email": self.from_address},
            "to": [{"email": to}],
            "subject": email.subject,
            "htmlContent": email.html,
            "textContent": email.text,
        }
        if self.reply_to:
            payload["replyTo"] = {"email": self.reply_to}
        if email.attachments:
            payload["attachment"] = [
                {
                    "name": a.filename,
                    "content": base64.b64encode(a.content).decode("ascii"),
                }
                for a in email.attachments
            ]

        try:
            response = await self._client.post(
                self.api_url,
                json=payload,
                headers={"api-key": self.api_key, "Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Mail API transport error: {e}")
            raise MailDeliveryError("Failed to send email.")

        if response.status_code not in (200, 201, 202):
            logger.error(f"Mail API error {response.status_code}: {response.text[:500]}")
            raise MailDeliveryError(
                "Failed to send email.", {"status_code": response.status_code}
            )

        try:
            message_id = response.json().get("messageId")
        except ValueError:
            message_id = None
        logger.info(f"Email '{email.subject}' sent, message id {message_id}")
        return message_id
