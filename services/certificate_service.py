# app/services/certificate_service.py
import asyncio
import logging
from pathlib import Path
from typing import Optional

import aiofiles
from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from models.donation import Donation, DonationStatus
from services.email_service import EmailAttachment, EmailService, OutgoingEmail, render_certificate_email
from services.pdf_generator import PDFGenerator

logger = logging.getLogger(__name__)


class CertificateStorage:
    """Certificates on local disk under FILE_STORAGE_PATH, addressed by a relative key."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.FILE_STORAGE_PATH)

    @staticmethod
    def key_for(certificate_number: str) -> str:
        return f"certificates/{certificate_number}.pdf"

    async def save(self, certificate_number: str, content: bytes) -> str:
        key = self.key_for(certificate_number)
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "wb") as f:
            await f.write(content)
        return key

    async def read(self, key: str) -> Optional[bytes]:
        try:
            async with aiofiles.open(self.root / key, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            return None


class CertificateService:
    """Post-settlement work: render, store and mail the donor's certificate."""

    def __init__(
            self,
            session_factory: async_sessionmaker,
            storage: Optional[CertificateStorage] = None,
            email_service: Optional[EmailService] = None,
            pdf_generator: Optional[PDFGenerator] = None,
    ):
        self.session_factory = session_factory
        self.storage = storage or CertificateStorage()
        self.email_service = email_service or EmailService()
        self.pdf_generator = pdf_generator or PDFGenerator()

    async def render(self, donation: Donation) -> bytes:
        return await asyncio.to_thread(self.pdf_generator.generate_certificate, donation)

    async def issue_certificate(self, donation_id: int) -> bool:
        """Returns True when a certificate was issued by this call."""
        async with self.session_factory() as db:
            donation = await db.get(Donation, donation_id)

        if donation is None:
            logger.error(f"Donation {donation_id} not found after payment verification")
            return False
        if donation.status != DonationStatus.SUCCESS:
            logger.warning(f"Skipping certificate for donation {donation_id} in status {donation.status.value}")
            return False
        if donation.certificate_sent:
            return False
        if not donation.certificate_number:
            logger.error(f"Donation {donation_id} settled without a certificate number")
            return False

        content = await self.render(donation)
        key = await self.storage.save(donation.certificate_number, content)

        async with self.session_factory() as db:
            await db.execute(
                update(Donation)
                .where(Donation.id == donation_id)
                .values(certificate_url=key, certificate_sent=True)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        sent, result = await self.email_service.send(OutgoingEmail(
            to=donation.donor_email,
            subject=f"🎉 Your 80G Tax Exemption Certificate - {settings.ORGANIZATION_NAME}",
            html=render_certificate_email(donation.donor_name, donation.amount, donation.certificate_number),
            attachments=[EmailAttachment(f"80G-Certificate-{donation.certificate_number}.pdf", content)],
        ))
        if not sent:
            logger.error(f"Certificate email for donation {donation_id} not sent: {result.get('error')}")

        logger.info(f"Certificate {donation.certificate_number} issued for donation {donation_id}")
        return True


async def run_post_settlement(
        session_factory: async_sessionmaker,
        donation_id: int,
        certificate_service: Optional[CertificateService] = None,
) -> None:
    """Background task after a settlement commits. Never raises: the payment is already recorded."""
    service = certificate_service or CertificateService(session_factory)
    try:
        await service.issue_certificate(donation_id)
    except Exception:
        logger.exception(f"Post-payment processing error for donation {donation_id} (non-critical)")
