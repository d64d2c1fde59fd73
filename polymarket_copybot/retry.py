"""
Retry policy for order submission.

Errors are classified by type and message. Terminal errors (auth, geoblock,
funds, invalid params, duplicates) fail on the first attempt; transient ones
are retried with exponential backoff.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from .errors import InsufficientFundsError

logger = logging.getLogger(__name__)

T = TypeVar("T")

NON_RETRYABLE_STATUS = {400, 401, 403}
RETRYABLE_STATUS = {429, 500, 502, 503, 504}

# Three-digit HTTP status quoted in a message; not part of "1400" or "0.401"
STATUS_IN_MESSAGE = re.compile(r"(?<![\d.])([1-5]\d\d)(?!\.?\d)")

NON_RETRYABLE_PATTERNS = (
    ("unauthorized", "invalid api key"),
    ("cloudflare", "blocked", "geoblock"),
    ("insufficient", "not enough balance", "allowance"),
    ("invalid", "bad request"),
    ("duplicate",),
)

RETRYABLE_PATTERNS = (
    ("network", "timeout", "timed out", "econnreset", "connection reset", "connection refused"),
    ("rate limit", "too many requests"),
    ("internal server error", "bad gateway", "service unavailable"),
)


@dataclass
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0


def compute_delay(attempt: int, config: RetryConfig) -> float:
    """Delay to wait after the given (1-based) failed attempt."""
    delay = config.initial_delay * (config.backoff_multiplier ** (attempt - 1))
    return min(delay, config.max_delay)


def _status_code(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def is_retryable_error(error: BaseException) -> bool:
    """
    Decide whether a failed submission is worth another attempt.

    Non-retryable checks run first so that e.g. "invalid ... timeout"
    is treated as terminal.
    """
    if isinstance(error, InsufficientFundsError):
        return False

    message = str(error).lower()
    status = _status_code(error)
    quoted = {int(code) for code in STATUS_IN_MESSAGE.findall(message)}

    if status in NON_RETRYABLE_STATUS or quoted & NON_RETRYABLE_STATUS:
        return False
    for patterns in NON_RETRYABLE_PATTERNS:
        if any(p in message for p in patterns):
            return False

    if isinstance(error, (httpx.TransportError, TimeoutError, ConnectionError)):
        return True
    if status is not None and (status == 429 or status >= 500):
        return True
    if quoted & RETRYABLE_STATUS:
        return True
    for patterns in RETRYABLE_PATTERNS:
        if any(p in message for p in patterns):
            return True

    return True


async def execute_with_retry(
    fn: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    Await fn() until it succeeds, a terminal error occurs, or attempts run out.

    The last error is re-raised unchanged.
    """
    config = config or RetryConfig()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as e:
            if not is_retryable_error(e):
                logger.error(f"{label} failed with non-retryable error: {e}")
                raise
            if attempt >= config.max_attempts:
                logger.error(f"{label} failed after {attempt} attempts: {e}")
                raise
            delay = compute_delay(attempt, config)
            logger.warning(
                f"{label} attempt {attempt}/{config.max_attempts} failed: {e}. "
                f"Retrying in {delay:.1f}s"
            )
            await sleep(delay)
