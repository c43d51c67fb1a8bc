# app/core/retry.py
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from core.exceptions import GatewayError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = {502, 503, 504}


def is_transient_error(exc: BaseException) -> bool:
    """Network-class failures worth another attempt; anything else is final."""
    if isinstance(exc, httpx.TransportError):
        # connect/read timeouts, DNS failures, connection resets
        return True
    if isinstance(exc, asyncio.TimeoutError):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, GatewayError):
        return exc.status_code in TRANSIENT_STATUS_CODES
    return False


async def retry_with_backoff(
        operation: Callable[[], Awaitable[T]],
        *,
        attempts: int = 3,
        base_delay: float = 1.0,
        is_transient: Callable[[BaseException], bool] = is_transient_error,
        description: Optional[str] = None,
) -> T:
    """Await ``operation`` with exponential backoff between transient failures.

    Delays are ``base_delay * 2 ** attempt``. Non-transient errors propagate
    immediately; the last transient error propagates once ``attempts`` is spent.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    name = description or getattr(operation, "__name__", "operation")
    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as exc:
            if not is_transient(exc) or attempt == attempts - 1:
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(
                f"Transient error on {name} (attempt {attempt + 1}/{attempts}), "
                f"retrying in {delay:.2f}s: {exc!r}"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
