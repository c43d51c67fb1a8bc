# app/services/donation_service.py
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select, func, desc
from fastapi import BackgroundTasks, HTTPException, status
from typing import List, Optional, Tuple
import logging
import uuid

from core.config import settings
from core.exceptions import (
    CampaignNotAcceptingDonations, CampaignNotFound, DonationNotFound,
    GatewayError, GatewayRejected, GatewayUnavailable,
)
from core.retry import is_transient_error, retry_with_backoff
from models.campaign import Campaign
from models.donation import Donation, DonationStatus, PaymentMethod
from models.user import User
from schemas.donation import (
    CreateOrderRequest, CreateOrderResponse, OrderRead, PublicDonationRead, VerifyPaymentRequest,
)
from services.certificate_service import CertificateService, run_post_settlement
from services.payment_gateway import PaymentGateway, to_minor_units
from services.settlement_service import (
    ConfirmationSource, PaymentConfirmation, PaymentProcessor, SettlementOutcome,
)
from utils.pagination import PaginatedResponse, paginate

logger = logging.getLogger(__name__)


class DonationService:
    def __init__(
            self,
            db: AsyncSession,
            gateway: Optional[PaymentGateway] = None,
            session_factory: Optional[async_sessionmaker] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.session_factory = session_factory

    # ---------- create order ----------
    async def create_order(self, order_data: CreateOrderRequest, donor: User) -> CreateOrderResponse:
        """Create a provider order and the pending donation that tracks it."""
        campaign = await self.db.get(Campaign, order_data.campaign_id)
        if not campaign:
            raise CampaignNotFound()
        if not campaign.is_accepting_donations:
            raise CampaignNotAcceptingDonations()

        amount_minor = to_minor_units(order_data.amount)
        receipt = f"receipt_{uuid.uuid4().hex[:24]}"
        try:
            order = await retry_with_backoff(
                lambda: self.gateway.create_order(amount_minor, receipt),
                attempts=settings.GATEWAY_MAX_ATTEMPTS,
                base_delay=settings.GATEWAY_BACKOFF_SECONDS,
                description="create_order",
            )
        except GatewayError as exc:
            if is_transient_error(exc):
                raise GatewayUnavailable("Failed to create payment order. Please try again.")
            raise GatewayRejected(exc.message or "Invalid payment request. Please check the amount and try again.")
        except Exception as exc:
            if is_transient_error(exc):
                logger.warning(f"Order creation failed after retries: {exc!r}")
                raise GatewayUnavailable("Failed to create payment order. Please try again.")
            raise

        # provider_payment_id stays NULL until settlement
        donation = Donation(
            campaign_id=campaign.id,
            donor_id=None if order_data.is_anonymous else donor.id,
            amount=order_data.amount,
            is_anonymous=order_data.is_anonymous,
            payment_method=PaymentMethod.RAZORPAY,
            status=DonationStatus.PENDING,
            provider_order_id=order["id"],
            donor_name=order_data.donor_name,
            donor_email=order_data.donor_email,
            donor_phone=order_data.donor_phone,
            donor_pan=order_data.donor_pan,
            message=order_data.message,
        )
        self.db.add(donation)
        await self.db.commit()
        await self.db.refresh(donation)

        logger.info(f"Donation {donation.id} created for order {order['id']} ({order_data.amount} to campaign {campaign.id})")

        return CreateOrderResponse(
            order=OrderRead(
                id=order["id"],
                amount=int(order.get("amount", amount_minor)),
                currency=order.get("currency", settings.CURRENCY),
                receipt=order.get("receipt", receipt),
                status=order.get("status"),
            ),
            donation_id=donation.id,
        )

    # ---------- verify (client trigger) ----------
    async def verify_payment(
            self,
            verify_data: VerifyPaymentRequest,
            background_tasks: Optional[BackgroundTasks] = None,
    ) -> SettlementOutcome:
        processor = PaymentProcessor(self.session_factory, self.gateway)
        outcome = await processor.process(
            verify_data.donation_id,
            PaymentConfirmation(
                order_id=verify_data.provider_order_id,
                payment_id=verify_data.provider_payment_id,
                signature=verify_data.provider_signature,
                source=ConfirmationSource.CLIENT,
            ),
        )

        if not outcome.already_processed and background_tasks is not None:
            background_tasks.add_task(run_post_settlement, self.session_factory, outcome.donation.id)
        return outcome

    # ---------- queries ----------
    async def list_my_donations(self, user: User) -> List[Donation]:
        result = await self.db.execute(
            select(Donation)
            .where(Donation.donor_id == user.id)
            .order_by(desc(Donation.created_at), desc(Donation.id))
        )
        return list(result.scalars().all())

    async def list_campaign_donations(
            self, campaign_id: int, page: int = 1, limit: int = 10
    ) -> PaginatedResponse[PublicDonationRead]:
        """Successful donations for a campaign page."""
        conditions = [Donation.campaign_id == campaign_id, Donation.status == DonationStatus.SUCCESS]

        total = await self.db.scalar(select(func.count(Donation.id)).where(*conditions))
        result = await self.db.execute(
            select(Donation)
            .where(*conditions)
            .order_by(desc(Donation.created_at), desc(Donation.id))
            .offset((page - 1) * limit)
            .limit(limit)
        )

        items = [
            PublicDonationRead(
                donor_name="Anonymous" if d.is_anonymous else d.donor_name,
                amount=d.amount,
                message=d.message,
                is_anonymous=d.is_anonymous,
                created_at=d.created_at,
            )
            for d in result.scalars().all()
        ]
        return paginate(items, total or 0, page, limit)

    async def get_certificate(self, donation_id: int, user: User) -> Tuple[str, bytes]:
        """(filename, pdf bytes) for the donor who made the donation."""
        donation = await self.db.get(Donation, donation_id)
        if not donation:
            raise DonationNotFound()

        if not self._is_owner(donation, user):
            logger.warning(f"User {user.id} attempted to access certificate of donation {donation_id}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the donor can access this donation certificate",
            )

        if not donation.certificate_url:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Certificate not available")

        certificates = CertificateService(self.session_factory)
        content = await certificates.storage.read(donation.certificate_url)
        if content is None:
            # stored copy lost; the certificate is reproducible from the donation
            content = await certificates.render(donation)
        return f"80G-Certificate-{donation.certificate_number}.pdf", content

    @staticmethod
    def _is_owner(donation: Donation, user: User) -> bool:
        if donation.donor_id is not None:
            return donation.donor_id == user.id
        return donation.donor_email == (user.email or "").lower()
