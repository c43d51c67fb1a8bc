# app/services/idempotency.py
import enum
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import DonationNotPending, PaymentAlreadyProcessed
from models.donation import Donation, DonationStatus
from models.payment_verification import PaymentVerification

logger = logging.getLogger(__name__)


class GuardDecision(str, enum.Enum):
    PROCEED = "proceed"
    ALREADY_SETTLED = "already_settled"


class IdempotencyGuard:
    """Decides whether a provider payment may be applied to a donation.

    The unique index on ``donations.provider_payment_id`` is what actually
    prevents double application; this check exists to turn the common cases
    into clean, user-presentable answers before anything is written.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def check(self, donation: Donation, payment_id: str) -> GuardDecision:
        # same payment already applied to this donation: a retry
        if donation.status == DonationStatus.SUCCESS:
            if donation.provider_payment_id == payment_id:
                return GuardDecision.ALREADY_SETTLED
            logger.warning(f"Donation {donation.id} already has a different successful payment")
            raise PaymentAlreadyProcessed("Donation already has a successful payment")

        if donation.status == DonationStatus.FAILED:
            raise DonationNotPending()

        holder = await self.db.scalar(
            select(Donation.id).where(
                Donation.provider_payment_id == payment_id,
                Donation.id != donation.id,
                Donation.status == DonationStatus.SUCCESS,
            )
        )
        if holder is not None:
            logger.warning(f"Payment ID {payment_id} already used by donation {holder}")
            raise PaymentAlreadyProcessed()

        verification = await self.db.scalar(
            select(PaymentVerification).where(PaymentVerification.provider_payment_id == payment_id)
        )
        if verification is not None and verification.donation_id != donation.id:
            logger.warning(
                f"Payment ID {payment_id} already verified for donation {verification.donation_id}"
            )
            raise PaymentAlreadyProcessed("This payment has already been verified for another donation")

        return GuardDecision.PROCEED

    async def supersede_stale_holders(self, donation_id: int, payment_id: str) -> int:
        """Release ``payment_id`` from abandoned pending/failed rows so it can be reused."""
        result = await self.db.execute(
            update(Donation)
            .where(
                Donation.provider_payment_id == payment_id,
                Donation.id != donation_id,
                Donation.status != DonationStatus.SUCCESS,
            )
            .values(provider_payment_id=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(
                f"Payment ID {payment_id} released from {result.rowcount} unsettled donation(s) "
                f"in favour of donation {donation_id}"
            )
        return result.rowcount or 0
