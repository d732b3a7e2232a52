"""
Provider error hierarchy, classification and bounded exponential backoff.

Transient failures (429 rate limits, 5xx, timeouts, dropped connections)
are retried with exponential backoff up to a fixed attempt count. Permanent
failures (4xx client errors, insufficient provider balance) are raised
immediately. ``classify_provider_error`` maps any provider exception onto
the payout ``ErrorCode`` taxonomy.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from creator_payouts.config import settings
from creator_payouts.models.enums import ErrorCode

logger = logging.getLogger("creator_payouts.retry")

RETRIABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class ProviderError(Exception):
    """Base exception for transfer provider errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        retriable: bool = True,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retriable = retriable
        self.error_code = error_code


class RateLimitError(ProviderError):
    """429 Too Many Requests from the transfer provider."""

    def __init__(self, message: str = "Rate limited", retry_after: float | None = None):
        super().__init__(message, status_code=429, retriable=True)
        self.retry_after = retry_after


class PermanentError(ProviderError):
    """Non-retriable error (e.g. invalid account, bad request)."""

    def __init__(self, message: str, status_code: int = 400, error_code: Optional[str] = None):
        super().__init__(message, status_code=status_code, retriable=False, error_code=error_code)


class ProviderTimeoutError(ProviderError):
    """The provider did not answer in time. The request may have been applied."""

    def __init__(self, message: str = "Provider request timed out"):
        super().__init__(message, status_code=504, retriable=True)


class ProviderNetworkError(ProviderError):
    """Connection-level failure before a response was received."""

    def __init__(self, message: str = "Could not reach provider"):
        super().__init__(message, status_code=503, retriable=True)


def classify_provider_error(exc: Exception) -> tuple[ErrorCode, bool, str]:
    """
    Map a provider exception to ``(code, retryable, message)``.

    Anything that is not a ``ProviderError`` is classified as
    ``UNEXPECTED_ERROR`` and is not retryable.
    """
    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, RateLimitError):
        return ErrorCode.RATE_LIMIT_EXCEEDED, True, message
    if isinstance(exc, ProviderTimeoutError):
        return ErrorCode.TIMEOUT, True, message
    if isinstance(exc, ProviderNetworkError):
        return ErrorCode.NETWORK_ERROR, True, message
    if not isinstance(exc, ProviderError):
        return ErrorCode.UNEXPECTED_ERROR, False, message

    if exc.error_code:
        try:
            code = ErrorCode(exc.error_code)
        except ValueError:
            pass
        else:
            return code, exc.retriable, message

    if exc.status_code == 429:
        return ErrorCode.RATE_LIMIT_EXCEEDED, True, message
    if exc.status_code in RETRIABLE_STATUS_CODES:
        return ErrorCode.SERVER_ERROR, True, message
    if exc.status_code >= 500:
        return ErrorCode.SERVER_ERROR, exc.retriable, message

    lowered = message.lower()
    if exc.status_code in (400, 422):
        if "balance" in lowered:
            return ErrorCode.INSUFFICIENT_BALANCE, False, message
        if "account" in lowered or "recipient" in lowered:
            return ErrorCode.INVALID_BANK_ACCOUNT, False, message
        return ErrorCode.INVALID_REQUEST, False, message

    return ErrorCode.PROVIDER_ERROR, exc.retriable, message


def backoff_delay(attempt: int, base_delay: float, max_delay: Optional[float] = None) -> float:
    """Delay before retry ``attempt`` (1-based): base, 2*base, 4*base ... capped."""
    cap = settings.retry_max_delay if max_delay is None else max_delay
    return min(base_delay * (2 ** (attempt - 1)), cap)


async def with_retry(
    func: Callable[..., Any],
    *args: Any,
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    **kwargs: Any,
) -> Any:
    """
    Execute an async function with exponential backoff on retriable errors.

    Args:
        func: Async callable to execute.
        max_retries: Maximum number of retry attempts after the first call.
        base_delay: Delay before the first retry, doubled each attempt.

    Returns:
        The result of the function call.

    Raises:
        ProviderError: On permanent failure or exhausted retries.
    """
    retries = settings.retry_max_attempts if max_retries is None else max_retries
    delay = settings.retry_base_delay if base_delay is None else base_delay

    for attempt in range(1, retries + 2):
        try:
            return await func(*args, **kwargs)
        except ProviderError as e:
            if not e.retriable or attempt > retries:
                if e.retriable:
                    logger.error("Exhausted %d retries for provider call: %s", retries, e)
                raise

            sleep_for = backoff_delay(attempt, delay)
            if isinstance(e, RateLimitError) and e.retry_after:
                sleep_for = min(e.retry_after, settings.retry_max_delay)

            logger.warning(
                "Retriable error on attempt %d/%d: %s, sleeping %.1fs",
                attempt,
                retries + 1,
                e,
                sleep_for,
            )
            await asyncio.sleep(sleep_for)

    raise ProviderError("Unknown error after retries")
