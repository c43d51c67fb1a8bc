# app/services/payment_gateway.py
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Union

import httpx
from fastapi import Request

from core import signature
from core.config import Settings
from core.exceptions import GatewayError, PaymentGatewayNotConfigured

logger = logging.getLogger(__name__)

MINOR_UNITS_PER_MAJOR = 100  # paise per rupee


def to_minor_units(amount: Union[Decimal, int, float, str]) -> int:
    """Rupees to paise, rounding half-up at the paisa."""
    value = Decimal(str(amount)) * MINOR_UNITS_PER_MAJOR
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(int(amount)) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))


class PaymentGateway(ABC):
    """What the settlement core needs from a payment provider. Amounts are minor units."""

    @abstractmethod
    async def create_order(self, amount: int, receipt: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def fetch_order(self, order_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def verify_payment_signature(self, order_id: str, payment_id: str, payment_signature: str) -> bool:
        ...

    @abstractmethod
    def verify_webhook_signature(self, body: bytes, webhook_signature: Optional[str]) -> bool:
        ...

    async def aclose(self) -> None:
        return None


class RazorpayGateway(PaymentGateway):
    def __init__(
            self,
            key_id: Optional[str],
            key_secret: Optional[str],
            webhook_secret: Optional[str] = None,
            base_url: str = "https://api.razorpay.com/v1",
            currency: str = "INR",
            timeout: float = 10.0,
            transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret or key_secret
        self.currency = currency
        self._client: Optional[httpx.AsyncClient] = None
        if key_id and key_secret:
            self._client = httpx.AsyncClient(
                base_url=base_url,
                auth=(key_id, key_secret),
                timeout=timeout,
                transport=transport,
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "RazorpayGateway":
        if not (settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET):
            logger.error("Razorpay is not configured. Check RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.")
        return cls(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            webhook_secret=settings.webhook_secret,
            base_url=settings.RAZORPAY_BASE_URL,
            currency=settings.CURRENCY,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if self._client is None:
            raise PaymentGatewayNotConfigured()

        response = await self._client.request(method, path, **kwargs)
        if response.is_success:
            return response.json()

        description = None
        code = None
        try:
            error = response.json().get("error") or {}
            description = error.get("description")
            code = error.get("code")
        except ValueError:
            pass
        logger.warning(f"Razorpay {method} {path} failed: {response.status_code} {description or response.text[:200]}")
        raise GatewayError(
            description or f"Razorpay returned HTTP {response.status_code}",
            status_code=response.status_code,
            code=code,
        )

    async def create_order(self, amount: int, receipt: str) -> Dict[str, Any]:
        if amount <= 0:
            raise ValueError("Invalid amount for order creation")
        order = await self._request(
            "POST", "/orders",
            json={"amount": amount, "currency": self.currency, "receipt": receipt},
        )
        logger.info(f"Razorpay order created: {order.get('id')} for amount {amount}")
        return order

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/payments/{payment_id}")

    async def fetch_order(self, order_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/orders/{order_id}")

    async def verify_payment_signature(self, order_id: str, payment_id: str, payment_signature: str) -> bool:
        if not self.key_secret:
            logger.error("Razorpay key secret not configured")
            return False
        return signature.verify_payment_signature(self.key_secret, order_id, payment_id, payment_signature)

    def verify_webhook_signature(self, body: bytes, webhook_signature: Optional[str]) -> bool:
        if not self.webhook_secret:
            logger.error("Razorpay webhook secret not configured")
            return False
        return signature.verify_webhook_signature(self.webhook_secret, body, webhook_signature)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def get_payment_gateway(request: Request) -> PaymentGateway:
    """Dependency: the gateway built once in the application lifespan."""
    return request.app.state.payment_gateway
