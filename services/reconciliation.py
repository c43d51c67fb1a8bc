# app/services/reconciliation.py
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from core.config import settings
from core.exceptions import GatewayUnavailable
from core.retry import is_transient_error, retry_with_backoff
from services.payment_gateway import PaymentGateway, to_minor_units

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    matches: bool
    expected: int
    payment_amount: Optional[int] = None
    order_amount: Optional[int] = None
    skipped: bool = False

    @property
    def reason(self) -> str:
        return (
            f"expected {self.expected}, payment {self.payment_amount}, "
            f"order {self.order_amount} (minor units)"
        )


class AmountReconciler:
    """Confirms the provider captured exactly the donation amount.

    Client-supplied amounts are never trusted: both the payment and the order are
    fetched from the provider by id.
    """

    def __init__(
            self,
            gateway: PaymentGateway,
            attempts: int = None,
            base_delay: float = None,
            strict: bool = None,
    ):
        self.gateway = gateway
        self.attempts = attempts if attempts is not None else settings.GATEWAY_MAX_ATTEMPTS
        self.base_delay = base_delay if base_delay is not None else settings.GATEWAY_BACKOFF_SECONDS
        self.strict = strict if strict is not None else settings.AMOUNT_RECONCILIATION_STRICT

    async def reconcile(
            self,
            order_id: str,
            payment_id: str,
            expected_amount: Decimal,
            reported_amount: Optional[int] = None,
    ) -> ReconciliationResult:
        expected = to_minor_units(expected_amount)

        # signed webhook payloads carry the captured amount; check it before any network call
        if reported_amount is not None and int(reported_amount) != expected:
            return ReconciliationResult(matches=False, expected=expected, payment_amount=int(reported_amount))

        try:
            payment = await retry_with_backoff(
                lambda: self.gateway.fetch_payment(payment_id),
                attempts=self.attempts,
                base_delay=self.base_delay,
                description=f"fetch_payment({payment_id})",
            )
            order = await retry_with_backoff(
                lambda: self.gateway.fetch_order(order_id),
                attempts=self.attempts,
                base_delay=self.base_delay,
                description=f"fetch_order({order_id})",
            )
        except Exception as exc:
            if not is_transient_error(exc):
                raise
            if self.strict:
                logger.warning(f"Amount reconciliation unavailable for payment {payment_id}: {exc!r}")
                raise GatewayUnavailable()
            logger.warning(
                f"Amount reconciliation skipped for payment {payment_id} (non-critical): {exc!r}"
            )
            return ReconciliationResult(matches=True, expected=expected, skipped=True)

        payment_amount = int(payment.get("amount", -1))
        order_amount = int(order.get("amount", -1))
        return ReconciliationResult(
            matches=payment_amount == expected and order_amount == expected,
            expected=expected,
            payment_amount=payment_amount,
            order_amount=order_amount,
        )
