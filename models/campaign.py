# app/models/campaign.py
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Text, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
import enum
from models.base import Base


class CampaignStatus(str, enum.Enum):
    PENDING = "pending"  # awaiting moderation
    APPROVED = "approved"
    REJECTED = "rejected"
    CLOSED = "closed"


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True)
    uuid = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))

    organizer_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # basics
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    organizer = Column(String(200), nullable=False, default="")

    # totals: only the settlement path writes raised_amount / donor_count
    goal_amount = Column(Numeric(12, 2), nullable=False)
    raised_amount = Column(Numeric(12, 2), nullable=False, default=0)
    donor_count = Column(Integer, nullable=False, default=0)

    status = Column(
        Enum(CampaignStatus, name="campaign_status", values_callable=lambda e: [m.value for m in e]),
        default=CampaignStatus.PENDING,
        nullable=False,
    )
    end_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    donations = relationship("Donation", back_populates="campaign")

    @property
    def is_accepting_donations(self) -> bool:
        return self.status not in (CampaignStatus.REJECTED, CampaignStatus.CLOSED)
