# app/services/settlement_service.py
import enum
import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.exceptions import (
    DonationError, DonationNotFound, DonationNotPending, GatewayError, GatewayRejected,
    OrderMismatch, PaymentAlreadyProcessed, PaymentAmountMismatch, PaymentSignatureInvalid,
    SettlementFailed,
)
from core.retry import retry_with_backoff
from core.unit_of_work import UnitOfWork
from models.campaign import Campaign
from models.donation import Donation, DonationStatus
from models.payment_verification import PaymentVerification
from services.idempotency import GuardDecision, IdempotencyGuard
from services.payment_gateway import PaymentGateway
from services.reconciliation import AmountReconciler

logger = logging.getLogger(__name__)

CERTIFICATE_ALPHABET = string.ascii_uppercase + string.digits


def generate_certificate_number(prefix: Optional[str] = None) -> str:
    prefix = prefix or settings.CERTIFICATE_PREFIX
    suffix = "".join(secrets.choice(CERTIFICATE_ALPHABET) for _ in range(8))
    return f"{prefix}-{suffix}"


@dataclass
class SettlementOutcome:
    donation: Donation
    already_processed: bool = False

    @property
    def message(self) -> str:
        return "Payment already verified" if self.already_processed else "Payment verified successfully"


class _ClaimLost(Exception):
    """The pending -> success update matched no row: someone else moved the donation first."""


class SettlementService:
    """Applies a verified payment: donation -> success and campaign totals, exactly once."""

    def __init__(
            self,
            session_factory: async_sessionmaker,
            use_transactions: Optional[bool] = None,
            certificate_prefix: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.use_transactions = (
            settings.DB_TRANSACTIONS_ENABLED if use_transactions is None else use_transactions
        )
        self.certificate_prefix = certificate_prefix or settings.CERTIFICATE_PREFIX

    async def settle(
            self,
            donation_id: int,
            payment_id: str,
            payment_signature: Optional[str],
            order_id: Optional[str] = None,
            verification_data: Optional[Dict[str, Any]] = None,
    ) -> SettlementOutcome:
        context = {"donation_id": donation_id, "payment_id": payment_id}
        try:
            async with UnitOfWork(self.session_factory, self.use_transactions, context) as uow:
                db = uow.session
                donation = await db.get(Donation, donation_id)
                if donation is None:
                    raise DonationNotFound()
                context.update(campaign_id=donation.campaign_id, amount=str(donation.amount))

                guard = IdempotencyGuard(db)
                if await guard.check(donation, payment_id) == GuardDecision.ALREADY_SETTLED:
                    logger.info(f"Payment {payment_id} already verified for donation {donation_id}")
                    return SettlementOutcome(donation, already_processed=True)

                if await guard.supersede_stale_holders(donation.id, payment_id):
                    await uow.checkpoint("release_stale_payment_id")

                # the conditional update is the claim; only one caller can move pending -> success
                claimed = await db.execute(
                    update(Donation)
                    .where(Donation.id == donation.id, Donation.status == DonationStatus.PENDING)
                    .values(
                        status=DonationStatus.SUCCESS,
                        provider_payment_id=payment_id,
                        provider_signature=payment_signature,
                        certificate_number=donation.certificate_number or generate_certificate_number(
                            self.certificate_prefix
                        ),
                        failure_reason=None,
                        settled_at=datetime.now(timezone.utc),
                    )
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    raise _ClaimLost()
                await uow.checkpoint("mark_donation_success")

                incremented = await db.execute(
                    update(Campaign)
                    .where(Campaign.id == donation.campaign_id)
                    .values(
                        raised_amount=Campaign.raised_amount + donation.amount,
                        donor_count=Campaign.donor_count + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if incremented.rowcount != 1:
                    raise SettlementFailed(f"Campaign {donation.campaign_id} not found for donation {donation.id}")
                await uow.checkpoint("increment_campaign_totals")

                already_recorded = await db.scalar(
                    select(PaymentVerification.id).where(
                        PaymentVerification.provider_payment_id == payment_id,
                        PaymentVerification.donation_id == donation.id,
                    )
                )
                if already_recorded is None:
                    db.add(PaymentVerification(
                        donation_id=donation.id,
                        provider_payment_id=payment_id,
                        provider_order_id=order_id or donation.provider_order_id or "",
                        amount=donation.amount,
                        currency=settings.CURRENCY,
                        status="verified",
                        verification_data=verification_data or {},
                    ))
                    await uow.checkpoint("record_payment_verification")

        except _ClaimLost:
            return await self._resolve_lost_claim(donation_id, payment_id)
        except IntegrityError as exc:
            if "provider_payment_id" in str(exc.orig):
                logger.warning(f"Duplicate payment ID {payment_id} rejected by storage for donation {donation_id}")
                return await self._resolve_lost_claim(donation_id, payment_id)
            logger.exception(f"Settlement integrity error: {context}")
            raise SettlementFailed()
        except DonationError:
            raise
        except SQLAlchemyError:
            logger.exception(f"Settlement storage failure: {context}")
            raise SettlementFailed()

        donation = await self.get_donation(donation_id)
        logger.info(
            f"Donation {donation_id} settled with payment {payment_id}: "
            f"campaign {donation.campaign_id} +{donation.amount}"
        )
        return SettlementOutcome(donation, already_processed=False)

    async def _resolve_lost_claim(self, donation_id: int, payment_id: str) -> SettlementOutcome:
        """Explain why our claim failed, from the state the winner left behind."""
        donation = await self.get_donation(donation_id)
        if donation is None:
            raise DonationNotFound()
        if donation.status == DonationStatus.SUCCESS:
            if donation.provider_payment_id == payment_id:
                logger.info(f"Payment {payment_id} was settled concurrently for donation {donation_id}")
                return SettlementOutcome(donation, already_processed=True)
            raise PaymentAlreadyProcessed("Donation already has a successful payment")
        if donation.status == DonationStatus.FAILED:
            raise DonationNotPending()
        logger.warning(f"Payment ID {payment_id} was claimed by another donation before {donation_id}")
        raise PaymentAlreadyProcessed()

    async def mark_failed(self, donation_id: int, reason: str) -> bool:
        """pending -> failed; success and failed are terminal and stay untouched."""
        async with self.session_factory() as db:
            result = await db.execute(
                update(Donation)
                .where(Donation.id == donation_id, Donation.status == DonationStatus.PENDING)
                .values(status=DonationStatus.FAILED, failure_reason=reason)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        if result.rowcount:
            logger.warning(f"Donation {donation_id} marked failed: {reason}")
        return bool(result.rowcount)

    async def get_donation(self, donation_id: int) -> Optional[Donation]:
        async with self.session_factory() as db:
            return await db.get(Donation, donation_id)


# ---------- shared pipeline for both triggers ----------

class ConfirmationSource(str, enum.Enum):
    CLIENT = "client"  # checkout handler posting to /verify
    WEBHOOK = "webhook"  # provider's payment.captured event


@dataclass
class PaymentConfirmation:
    order_id: str
    payment_id: str
    signature: Optional[str]
    source: ConfirmationSource = ConfirmationSource.CLIENT
    captured_amount: Optional[int] = None  # minor units, webhook payloads only
    raw_body: Optional[bytes] = field(default=None, repr=False)


class PaymentProcessor:
    """signature -> order -> idempotency -> amount -> settlement, for either trigger.

    Whichever trigger arrives first settles; the other observes the settled
    donation and gets ``already_processed=True``.
    """

    def __init__(
            self,
            session_factory: async_sessionmaker,
            gateway: PaymentGateway,
            settlement: Optional[SettlementService] = None,
            reconciler: Optional[AmountReconciler] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.settlement = settlement or SettlementService(session_factory)
        self.reconciler = reconciler or AmountReconciler(gateway)

    async def process(self, donation_id: int, confirmation: PaymentConfirmation) -> SettlementOutcome:
        donation = await self.settlement.get_donation(donation_id)
        if donation is None:
            raise DonationNotFound()

        if donation.provider_order_id != confirmation.order_id:
            logger.warning(
                f"Order {confirmation.order_id} does not match donation {donation_id} "
                f"(expected {donation.provider_order_id})"
            )
            raise OrderMismatch()

        if not await self._authenticate(confirmation):
            logger.warning(
                f"Invalid {confirmation.source.value} signature for payment {confirmation.payment_id} "
                f"on donation {donation_id}"
            )
            await self.settlement.mark_failed(donation_id, "invalid_signature")
            raise PaymentSignatureInvalid()

        async with self.session_factory() as db:
            decision = await IdempotencyGuard(db).check(donation, confirmation.payment_id)
        if decision == GuardDecision.ALREADY_SETTLED:
            logger.info(f"Payment {confirmation.payment_id} already verified for donation {donation_id}")
            return SettlementOutcome(donation, already_processed=True)

        try:
            reconciliation = await self.reconciler.reconcile(
                confirmation.order_id,
                confirmation.payment_id,
                donation.amount,
                reported_amount=confirmation.captured_amount,
            )
        except GatewayError as exc:
            logger.warning(f"Gateway rejected reconciliation for payment {confirmation.payment_id}: {exc.message}")
            raise GatewayRejected(exc.message)

        if not reconciliation.matches:
            logger.warning(f"Amount mismatch for donation {donation_id}: {reconciliation.reason}")
            await self.settlement.mark_failed(donation_id, "amount_mismatch")
            raise PaymentAmountMismatch()

        return await self.settlement.settle(
            donation_id,
            confirmation.payment_id,
            confirmation.signature,
            order_id=confirmation.order_id,
            verification_data={
                "source": confirmation.source.value,
                "expected_amount": reconciliation.expected,
                "payment_amount": reconciliation.payment_amount,
                "order_amount": reconciliation.order_amount,
                "reconciliation_skipped": reconciliation.skipped,
            },
        )

    async def _authenticate(self, confirmation: PaymentConfirmation) -> bool:
        if confirmation.source == ConfirmationSource.WEBHOOK:
            return self.gateway.verify_webhook_signature(confirmation.raw_body or b"", confirmation.signature)
        return await retry_with_backoff(
            lambda: self.gateway.verify_payment_signature(
                confirmation.order_id, confirmation.payment_id, confirmation.signature
            ),
            attempts=settings.GATEWAY_MAX_ATTEMPTS,
            base_delay=settings.GATEWAY_BACKOFF_SECONDS,
            description="verify_payment_signature",
        )
