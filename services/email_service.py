# app/services/email_service.py
import asyncio
import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import List, Optional, Tuple

from jinja2 import Environment

from core.config import settings

logger = logging.getLogger(__name__)

_templates = Environment(autoescape=True)

CERTIFICATE_EMAIL_TEMPLATE = _templates.from_string("""
<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Your 80G Certificate</title></head>
<body style="font-family: Arial, sans-serif; color: #1a1a1a;">
    <h2 style="color: #2563eb;">Thank you for your donation!</h2>
    <p>Dear {{ donor_name }},</p>
    <p>We have received your donation of <strong>&#8377;{{ amount }}</strong>.
       Your 80G tax exemption certificate <strong>{{ certificate_number }}</strong> is attached to this email.</p>
    <p>Please keep it for your income tax records.</p>
    <p>With gratitude,<br>{{ organization_name }}</p>
</body>
</html>
""")


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    maintype: str = "application"
    subtype: str = "pdf"


@dataclass
class OutgoingEmail:
    to: str
    subject: str
    html: str
    attachments: List[EmailAttachment] = field(default_factory=list)


def render_certificate_email(
        donor_name: str,
        amount,
        certificate_number: str,
        organization_name: str = None,
) -> str:
    return CERTIFICATE_EMAIL_TEMPLATE.render(
        donor_name=donor_name,
        amount=amount,
        certificate_number=certificate_number,
        organization_name=organization_name or settings.ORGANIZATION_NAME,
    )


class EmailService:
    """Email delivery: ``console`` logs only, ``smtp`` sends through the configured relay."""

    def __init__(self, provider: Optional[str] = None):
        self.provider = provider or settings.EMAIL_PROVIDER

    async def send(self, email: OutgoingEmail) -> Tuple[bool, dict]:
        if self.provider == "console":
            logger.info(f"📧 Email to {email.to}: {email.subject} ({len(email.attachments)} attachment(s))")
            return True, {"provider": "console"}

        if self.provider == "smtp":
            if not settings.SMTP_HOST:
                return False, {"error": "SMTP host not configured"}
            await asyncio.to_thread(self._send_smtp, email)
            return True, {"provider": "smtp"}

        return False, {"error": "Email provider not configured"}

    def _send_smtp(self, email: OutgoingEmail) -> None:
        message = EmailMessage()
        message["From"] = settings.EMAIL_FROM
        message["To"] = email.to
        message["Subject"] = email.subject
        message.set_content("Please view this email in an HTML capable client.")
        message.add_alternative(email.html, subtype="html")
        for attachment in email.attachments:
            message.add_attachment(
                attachment.content,
                maintype=attachment.maintype,
                subtype=attachment.subtype,
                filename=attachment.filename,
            )

        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as smtp:
            smtp.starttls()
            if settings.SMTP_USER:
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD or "")
            smtp.send_message(message)
