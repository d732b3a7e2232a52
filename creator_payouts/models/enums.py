"""Enumerations for the creator payout domain model."""

from enum import Enum


class PayoutStatus(str, Enum):
    """Lifecycle states for an individual payout."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PayoutMethod(str, Enum):
    """Transfer provider a payout is routed through."""

    WISE = "wise"
    STRIPE_CONNECT = "stripe_connect"


class ErrorCode(str, Enum):
    """Categorized payout failure codes."""

    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INVALID_BANK_ACCOUNT = "INVALID_BANK_ACCOUNT"
    CREATOR_NOT_FOUND = "CREATOR_NOT_FOUND"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    UNSUPPORTED_COUNTRY = "UNSUPPORTED_COUNTRY"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    UNSUPPORTED_CURRENCY = "UNSUPPORTED_CURRENCY"
    INVALID_REQUEST = "INVALID_REQUEST"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


# Codes the caller may retry with the same idempotency reference
RETRYABLE_CODES = frozenset({
    ErrorCode.RATE_LIMIT_EXCEEDED,
    ErrorCode.TIMEOUT,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.SERVER_ERROR,
})


class ResolutionSource(str, Enum):
    """Which fallback step produced a country/currency resolution."""

    PROFILE = "profile"
    BANK_CURRENCY = "bank_currency"
    BANK_CODE = "bank_code"
    DEFAULT = "default"
