"""
Email Service using Resend
Renders localized notification content into a small HTML body and delivers it
"""

import asyncio
import html
import logging
from typing import Optional

import resend

from .config import EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .services.retry import retry_async
from .shared.validators import validate_email

logger = logging.getLogger(__name__)

EMAIL_RETRY_BACKOFF = (2.0, 2.0)

THEME = {
    "primary": "#0f766e",
    "text": "#1f2937",
    "muted": "#6b7280",
}


def render_notification_html(title: str, body: str, language: str) -> str:
    direction = "rtl" if language == "ar" else "ltr"
    return (
        f'<div dir="{direction}" style="font-family:Arial,sans-serif;color:{THEME["text"]}">'
        f'<h2 style="color:{THEME["primary"]}">{html.escape(title)}</h2>'
        f"<p>{html.escape(body)}</p>"
        f'<p style="color:{THEME["muted"]};font-size:12px">MyClinic</p>'
        "</div>"
    )


class EmailSender:
    """Email transport; a no-op when no Resend key is configured"""

    def __init__(
        self,
        api_key: Optional[str] = RESEND_API_KEY,
        from_address: str = EMAIL_FROM_ADDRESS,
        backoff=EMAIL_RETRY_BACKOFF,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.backoff = backoff

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def start(self) -> None:
        if self.configured:
            resend.api_key = self.api_key
            logger.info("📧 Resend email transport ready")

    async def send(self, to: str, subject: str, html_content: str) -> bool:
        if not self.configured:
            logger.debug("Resend not configured - email skipped")
            return False

        try:
            to = validate_email(to)
        except ValueError:
            logger.warning(f"⚠️ Invalid email address, skipping: {to}")
            return False

        email_data = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "html": html_content,
        }

        async def _send():
            return await asyncio.to_thread(resend.Emails.send, email_data)

        response = await retry_async(_send, label=f"Email to {to}", backoff=self.backoff)
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return True
