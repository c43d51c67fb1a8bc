# app/api/v1/endpoints/donation.py
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import get_db, get_session_factory
from core.permissions import get_current_user
from models.user import User
from schemas.donation import CreateOrderRequest, DonationEnvelope, DonationRead, VerifyPaymentRequest
from services.donation_service import DonationService
from services.payment_gateway import PaymentGateway, get_payment_gateway
from services.webhook_service import WebhookService
from utils.api_response import success_response

router = APIRouter()

WEBHOOK_SIGNATURE_HEADER = "X-Razorpay-Signature"


# --------------------------
# Payment flow
# --------------------------

@router.post("/create-order")
async def create_order(
        order_data: CreateOrderRequest,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Create a provider order and a pending donation"""
    service = DonationService(db, gateway=gateway)
    result = await service.create_order(order_data, current_user)
    return success_response(result, "Order created successfully", status_code=201)


@router.post("/verify")
async def verify_payment(
        verify_data: VerifyPaymentRequest,
        background_tasks: BackgroundTasks,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        gateway: PaymentGateway = Depends(get_payment_gateway),
        session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Verify a checkout payment and settle the donation"""
    service = DonationService(db, gateway=gateway, session_factory=session_factory)
    outcome = await service.verify_payment(verify_data, background_tasks)
    return success_response(
        DonationEnvelope(donation=DonationRead.model_validate(outcome.donation)),
        outcome.message,
    )


@router.post("/webhook")
async def razorpay_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
        gateway: PaymentGateway = Depends(get_payment_gateway),
        session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Provider webhook; authenticated by signature, not session"""
    body = await request.body()
    service = WebhookService(session_factory, gateway)
    result = await service.handle(body, request.headers.get(WEBHOOK_SIGNATURE_HEADER), background_tasks)
    return success_response(result.data, result.message)


# --------------------------
# Queries
# --------------------------

@router.get("/my-donations")
async def my_donations(
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    """Donations made by the current user"""
    service = DonationService(db)
    donations = await service.list_my_donations(current_user)
    return success_response(
        {"donations": [DonationRead.model_validate(d) for d in donations]},
        "Donations retrieved successfully",
    )


@router.get("/campaign/{campaign_id}")
async def campaign_donations(
        campaign_id: int,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        db: AsyncSession = Depends(get_db),
):
    """Successful donations of a campaign (public)"""
    service = DonationService(db)
    donations = await service.list_campaign_donations(campaign_id, page, limit)
    return success_response(donations, "Donations retrieved successfully")


@router.get("/certificate/{donation_id}")
async def get_certificate(
        donation_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Download the 80G certificate of a donation"""
    service = DonationService(db, session_factory=session_factory)
    filename, content = await service.get_certificate(donation_id, current_user)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
