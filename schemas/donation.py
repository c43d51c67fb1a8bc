# app/schemas/donation.py
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, Dict, Any
from datetime import datetime
from decimal import Decimal
import re

from models.donation import DonationStatus, PaymentMethod

PHONE_PATTERN = re.compile(r"^[6-9]\d{9}$")
PAN_PATTERN = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")

MAX_DONATION_AMOUNT = Decimal("10000000")


class CamelModel(BaseModel):
    """Accepts camelCase and snake_case on input, emits camelCase."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------- create order ----------
class CreateOrderRequest(CamelModel):
    campaign_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0, le=MAX_DONATION_AMOUNT, decimal_places=2)
    donor_name: str = Field(..., max_length=200)
    donor_email: EmailStr
    donor_phone: Optional[str] = None
    donor_pan: Optional[str] = None
    is_anonymous: bool = False
    message: Optional[str] = Field(None, max_length=500)

    @field_validator("donor_name")
    @classmethod
    def validate_donor_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Donor name is required")
        return v

    @field_validator("donor_email")
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower()

    @field_validator("donor_phone")
    @classmethod
    def validate_phone(cls, v):
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not PHONE_PATTERN.match(v):
            raise ValueError("Please provide a valid 10-digit Indian phone number")
        return v

    @field_validator("donor_pan")
    @classmethod
    def validate_pan(cls, v):
        if v is None or not v.strip():
            return None
        v = v.strip().upper()
        if not PAN_PATTERN.match(v):
            raise ValueError("Please provide a valid PAN number")
        return v


# ---------- verify ----------
class VerifyPaymentRequest(CamelModel):
    donation_id: int = Field(..., gt=0)
    provider_order_id: str = Field(..., max_length=100)
    provider_payment_id: str = Field(..., max_length=100)
    provider_signature: str = Field(..., max_length=255)

    @field_validator("provider_order_id", "provider_payment_id", "provider_signature")
    @classmethod
    def not_blank(cls, v, info):
        # an empty id must never reach the sparse unique index
        v = v.strip()
        if not v:
            raise ValueError(f"{info.field_name} is required")
        return v


# ---------- responses ----------
class OrderRead(CamelModel):
    id: str
    amount: int  # minor units
    currency: str
    receipt: Optional[str] = None
    status: Optional[str] = None


class CreateOrderResponse(CamelModel):
    order: OrderRead
    donation_id: int


class DonationRead(CamelModel):
    id: int
    uuid: str
    campaign_id: int
    donor_id: Optional[int] = None
    amount: float
    is_anonymous: bool
    payment_method: PaymentMethod
    status: DonationStatus
    failure_reason: Optional[str] = None

    provider_order_id: Optional[str] = None
    provider_payment_id: Optional[str] = None

    donor_name: str
    donor_email: str
    donor_phone: Optional[str] = None
    message: Optional[str] = None

    certificate_number: Optional[str] = None
    certificate_url: Optional[str] = None
    certificate_sent: bool = False

    settled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class DonationEnvelope(CamelModel):
    donation: DonationRead


class PublicDonationRead(CamelModel):
    """What a campaign page may show about a donation."""
    donor_name: str
    amount: float
    message: Optional[str] = None
    is_anonymous: bool
    created_at: Optional[datetime] = None


# ---------- webhook ----------
class WebhookPaymentEntity(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    order_id: Optional[str] = None
    amount: int
    currency: Optional[str] = None
    status: Optional[str] = None


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    payload: Dict[str, Any] = Field(default_factory=dict)

    def payment_entity(self) -> Optional[WebhookPaymentEntity]:
        entity = (self.payload.get("payment") or {}).get("entity")
        if not entity:
            return None
        return WebhookPaymentEntity.model_validate(entity)
