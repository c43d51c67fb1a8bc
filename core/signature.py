# app/core/signature.py
import hashlib
import hmac
from typing import Optional, Union


def compute_signature(secret: str, message: Union[str, bytes]) -> str:
    """Hex HMAC-SHA256 of ``message`` keyed with ``secret``."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(expected: str, signature: Optional[str]) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))


def verify_payment_signature(
        secret: Optional[str],
        order_id: str,
        payment_id: str,
        signature: Optional[str],
) -> bool:
    """Checkout signature: HMAC over ``"{order_id}|{payment_id}"``.

    A mismatch is an ordinary outcome and returns False.
    """
    if not secret or not order_id or not payment_id:
        return False
    return _matches(compute_signature(secret, f"{order_id}|{payment_id}"), signature)


def verify_webhook_signature(secret: Optional[str], body: bytes, signature: Optional[str]) -> bool:
    """Webhook signature: HMAC over the raw request body, exactly as received."""
    if not secret:
        return False
    return _matches(compute_signature(secret, body), signature)
