# app/models/donation.py
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, func, ForeignKey, Numeric, Enum, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
import uuid
import enum
from models.base import Base


class DonationStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class PaymentMethod(str, enum.Enum):
    RAZORPAY = "razorpay"  # hosted checkout
    DIRECT_TRANSFER = "direct_transfer"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Donation(Base):
    __tablename__ = "donations"
    __table_args__ = (
        # NULL is never equal to NULL, so only settled donations compete for a payment id
        UniqueConstraint("provider_payment_id", name="uq_donations_provider_payment_id"),
        UniqueConstraint("certificate_number", name="uq_donations_certificate_number"),
        Index("ix_donations_campaign_created", "campaign_id", "created_at"),
        Index("ix_donations_method_status", "payment_method", "status"),
    )

    id = Column(Integer, primary_key=True)
    uuid = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))

    # Foreign Keys
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False)
    donor_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)  # None for anonymous

    # payment
    amount = Column(Numeric(12, 2), nullable=False)
    is_anonymous = Column(Boolean, default=False, nullable=False)
    payment_method = Column(
        Enum(PaymentMethod, name="payment_method", values_callable=_enum_values),
        nullable=False,
        default=PaymentMethod.RAZORPAY,
    )
    status = Column(
        Enum(DonationStatus, name="donation_status", values_callable=_enum_values),
        nullable=False,
        default=DonationStatus.PENDING,
        index=True,
    )
    failure_reason = Column(String(255), nullable=True)

    # provider references
    provider_order_id = Column(String(100), nullable=True, index=True)
    provider_payment_id = Column(String(100), nullable=True)  # set only by settlement
    provider_signature = Column(String(255), nullable=True)

    # donor snapshot taken at order time
    donor_name = Column(String(200), nullable=False)
    donor_email = Column(String(255), nullable=False, index=True)
    donor_phone = Column(String(20), nullable=True)
    donor_pan = Column(String(10), nullable=True)
    message = Column(Text, nullable=True)

    # certificate
    certificate_number = Column(String(50), nullable=True)
    certificate_url = Column(String(500), nullable=True)
    certificate_sent = Column(Boolean, default=False, nullable=False)

    settled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    campaign = relationship("Campaign", back_populates="donations")
    donor = relationship("User", back_populates="donations")
    verifications = relationship("PaymentVerification", back_populates="donation")
