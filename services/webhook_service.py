# app/services/webhook_service.py
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.exceptions import (
    DonationError, DonationNotPending, GatewayRejected, OrderMismatch, PaymentAlreadyProcessed,
    PaymentAmountMismatch, PaymentSignatureInvalid, WebhookSignatureInvalid, WebhookSignatureMissing,
)
from models.donation import Donation
from schemas.donation import WebhookEvent
from services.certificate_service import run_post_settlement
from services.payment_gateway import PaymentGateway
from services.settlement_service import ConfirmationSource, PaymentConfirmation, PaymentProcessor

logger = logging.getLogger(__name__)

PAYMENT_CAPTURED = "payment.captured"

# outcomes a provider retry cannot change: acknowledge with 200
HANDLED_REJECTIONS = (
    PaymentAlreadyProcessed,
    DonationNotPending,
    PaymentAmountMismatch,
    PaymentSignatureInvalid,
    OrderMismatch,
    GatewayRejected,
)


@dataclass
class WebhookResult:
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


class WebhookService:
    """Asynchronous trigger: the provider's payment.captured event."""

    def __init__(self, session_factory: async_sessionmaker, gateway: PaymentGateway):
        self.session_factory = session_factory
        self.gateway = gateway
        self.processor = PaymentProcessor(session_factory, gateway)

    async def handle(
            self,
            body: bytes,
            signature: Optional[str],
            background_tasks: Optional[BackgroundTasks] = None,
    ) -> WebhookResult:
        if not signature:
            logger.warning("Webhook request missing signature")
            raise WebhookSignatureMissing()
        if not self.gateway.verify_webhook_signature(body, signature):
            logger.warning("Invalid webhook signature")
            raise WebhookSignatureInvalid()

        try:
            event = WebhookEvent.model_validate_json(body)
        except ValidationError:
            raise DonationError("Malformed webhook payload")

        logger.info(f"Received Razorpay webhook event: {event.event}")
        if event.event != PAYMENT_CAPTURED:
            return WebhookResult("Webhook received", {"message": "Event received"})

        try:
            payment = event.payment_entity()
        except ValidationError:
            payment = None
        if payment is None or not payment.order_id:
            logger.warning("payment.captured event without a usable payment entity")
            return WebhookResult("Webhook received", {"message": "Payment entity missing, ignored"})

        donation_id = await self._find_donation_id(payment.order_id)
        if donation_id is None:
            logger.warning(f"Donation not found for order {payment.order_id}")
            return WebhookResult("Webhook received", {"message": "Donation not found"})

        try:
            outcome = await self.processor.process(
                donation_id,
                PaymentConfirmation(
                    order_id=payment.order_id,
                    payment_id=payment.id,
                    signature=signature,
                    source=ConfirmationSource.WEBHOOK,
                    captured_amount=payment.amount,
                    raw_body=body,
                ),
            )
        except HANDLED_REJECTIONS as exc:
            logger.warning(f"Webhook for payment {payment.id} not applied: {exc.detail}")
            return WebhookResult("Webhook received", {
                "message": exc.detail,
                "processed": False,
                "donationId": donation_id,
            })

        if outcome.already_processed:
            return WebhookResult("Payment verified", {
                "message": "Already verified",
                "processed": True,
                "donationId": donation_id,
            })

        logger.info(f"Payment {payment.id} verified via webhook for donation {donation_id}")
        if background_tasks is not None:
            background_tasks.add_task(run_post_settlement, self.session_factory, donation_id)
        return WebhookResult("Payment verified", {
            "message": "Webhook processed successfully",
            "processed": True,
            "donationId": donation_id,
        })

    async def _find_donation_id(self, order_id: str) -> Optional[int]:
        async with self.session_factory() as db:
            return await db.scalar(
                select(Donation.id)
                .where(Donation.provider_order_id == order_id)
                .order_by(Donation.id.desc())
                .limit(1)
            )
