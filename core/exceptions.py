# app/core/exceptions.py
from typing import Optional

from fastapi import HTTPException, status


class DonationError(HTTPException):
    """Base for errors raised by the donation and settlement services."""
    status_code_default = status.HTTP_400_BAD_REQUEST
    detail_default = "Donation request failed"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(
            status_code=self.status_code_default,
            detail=detail or self.detail_default,
        )


# ---------- Lookups ----------
class DonationNotFound(DonationError):
    status_code_default = status.HTTP_404_NOT_FOUND
    detail_default = "Donation not found"


class CampaignNotFound(DonationError):
    status_code_default = status.HTTP_404_NOT_FOUND
    detail_default = "Campaign not found"


class CampaignNotAcceptingDonations(DonationError):
    detail_default = "This campaign is not accepting donations"


# ---------- Verification ----------
class PaymentSignatureInvalid(DonationError):
    detail_default = "Payment verification failed"


class PaymentAmountMismatch(DonationError):
    detail_default = "Payment amount mismatch"


class OrderMismatch(DonationError):
    detail_default = "Payment order does not belong to this donation"


class DonationNotPending(DonationError):
    detail_default = "This donation can no longer be paid. Please start a new donation."


class PaymentAlreadyProcessed(DonationError):
    """Payment id consumed elsewhere, or the donation already holds another payment.

    Expected when the client and the webhook race; log it as a warning, not an error.
    """
    detail_default = "This payment has already been processed for another donation"


class WebhookSignatureMissing(DonationError):
    detail_default = "Missing signature"


class WebhookSignatureInvalid(DonationError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    detail_default = "Invalid signature"


# ---------- Gateway ----------
class GatewayUnavailable(DonationError):
    status_code_default = status.HTTP_503_SERVICE_UNAVAILABLE
    detail_default = "Network error occurred. Please check your payment status and try again if needed."


class GatewayRejected(DonationError):
    status_code_default = status.HTTP_502_BAD_GATEWAY
    detail_default = "The payment gateway rejected the request"


class PaymentGatewayNotConfigured(DonationError):
    status_code_default = status.HTTP_503_SERVICE_UNAVAILABLE
    detail_default = "Payment gateway is not configured. Please contact support."


# ---------- Storage ----------
class SettlementFailed(DonationError):
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail_default = "Payment could not be recorded. Please contact support with your payment id."


class GatewayError(Exception):
    """Raw failure reported by the payment provider's API."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500
