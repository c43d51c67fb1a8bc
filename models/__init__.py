from models.base import Base

from models.user import User
from models.campaign import Campaign, CampaignStatus
from models.donation import Donation, DonationStatus, PaymentMethod
from models.payment_verification import PaymentVerification
