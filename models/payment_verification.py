# app/models/payment_verification.py
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, JSON, UniqueConstraint, func
from sqlalchemy.orm import relationship
from models.base import Base


class PaymentVerification(Base):
    """Ledger of applied provider payments, one row per payment id."""
    __tablename__ = "payment_verifications"
    __table_args__ = (
        UniqueConstraint("provider_payment_id", name="uq_payment_verifications_provider_payment_id"),
    )

    id = Column(Integer, primary_key=True)
    donation_id = Column(Integer, ForeignKey("donations.id"), nullable=False, index=True)

    provider_payment_id = Column(String(100), nullable=False)
    provider_order_id = Column(String(100), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), default="INR", nullable=False)
    status = Column(String(20), default="verified", nullable=False)
    verification_data = Column(JSON, default=dict)

    verified_at = Column(DateTime(timezone=True), server_default=func.now())

    donation = relationship("Donation", back_populates="verifications")
