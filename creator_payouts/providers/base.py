"""
Abstract transfer provider interface.

All money-transfer providers implement this interface. The live adapter
wraps the Wise REST API; the mock provider keeps everything in memory for
tests and local development. Transfer state strings follow Wise's
vocabulary (``processing``, ``outgoing_payment_sent``, ``bounced_back`` ...)
and are mapped onto ``PayoutStatus`` by ``status_for_provider_state``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from creator_payouts.models.enums import ErrorCode, PayoutMethod, PayoutStatus


@dataclass
class Quote:
    """A time-limited conversion offer."""

    quote_id: str
    source_currency: str
    target_currency: str
    source_amount: Decimal
    target_amount: Decimal
    rate: Decimal
    fee: Decimal
    expires_at: datetime

    def expires_within(self, seconds: float) -> bool:
        return self.expires_at <= datetime.now(timezone.utc) + timedelta(seconds=seconds)

    @property
    def is_identity(self) -> bool:
        return self.source_currency == self.target_currency


@dataclass
class RecipientRequest:
    """Bank destination to register with the provider."""

    account_holder_name: str
    currency: str
    account_number: str = field(repr=False)
    routing_identifier: Optional[str] = None
    country: Optional[str] = None
    creator_id: Optional[str] = None


@dataclass
class TransferRequest:
    """Request to create a transfer against an accepted quote."""

    recipient_id: str
    quote_id: str
    customer_transaction_id: str  # Idempotency reference
    source_currency: str
    source_amount: Decimal
    target_currency: str
    target_amount: Decimal
    reference: str = ""  # Shown on the recipient's bank statement
    metadata: Optional[dict] = None


@dataclass
class TransferResponse:
    """Provider view of a transfer."""

    transfer_id: str
    status: str  # Provider state, e.g. "processing", "outgoing_payment_sent"
    customer_transaction_id: Optional[str] = None
    source_amount: Optional[Decimal] = None
    target_amount: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    fee: Optional[Decimal] = None


@dataclass
class ProviderBalance:
    currency: str
    amount: Decimal


# Created but not yet funded from the platform balance
AWAITING_FUNDING = "incoming_payment_waiting"

# Provider transfer states that settle a payout; everything else is in flight
PROVIDER_STATE_STATUS = {
    "outgoing_payment_sent": PayoutStatus.COMPLETED,
    "bounced_back": PayoutStatus.FAILED,
    "funds_refunded": PayoutStatus.FAILED,
    "charged_back": PayoutStatus.REFUNDED,
    "cancelled": PayoutStatus.CANCELLED,
}

# Error codes recorded when the provider reports a failed transfer
FAILED_STATE_CODES = {
    "bounced_back": ErrorCode.INVALID_BANK_ACCOUNT,
    "funds_refunded": ErrorCode.PROVIDER_ERROR,
}


def status_for_provider_state(state: Optional[str]) -> PayoutStatus:
    return PROVIDER_STATE_STATUS.get((state or "").lower(), PayoutStatus.PROCESSING)


class TransferProvider(ABC):
    """Abstract base class for transfer providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g. 'wise')."""
        ...

    @property
    @abstractmethod
    def method(self) -> PayoutMethod:
        """Payout method this provider serves."""
        ...

    @abstractmethod
    def supports_currency(self, currency: str) -> bool:
        ...

    @abstractmethod
    async def get_balance(self, currency: str) -> ProviderBalance:
        """Platform account balance available for payouts in ``currency``."""
        ...

    @abstractmethod
    async def create_quote(self, source_currency: str, target_currency: str, source_amount: Decimal) -> Quote:
        ...

    @abstractmethod
    async def get_quote(self, quote_id: str) -> Quote:
        ...

    @abstractmethod
    async def create_recipient(self, request: RecipientRequest) -> str:
        """Register a bank destination and return the provider recipient id."""
        ...

    @abstractmethod
    async def create_transfer(self, request: TransferRequest) -> TransferResponse:
        """
        Create a transfer.

        Implementations must dedupe on ``customer_transaction_id``: a second
        call with the same value returns the existing transfer.

        Raises:
            ProviderError: On transient failure.
            PermanentError: On non-retriable failure.
            ProviderTimeoutError: When the outcome is unknown.
        """
        ...

    @abstractmethod
    async def fund_transfer(self, transfer_id: str) -> str:
        """Fund a created transfer from the platform balance. Returns the new state."""
        ...

    @abstractmethod
    async def get_transfer(self, transfer_id: str) -> TransferResponse:
        ...

    @abstractmethod
    async def find_transfer_by_reference(self, customer_transaction_id: str) -> Optional[TransferResponse]:
        """Look up a transfer by idempotency reference, or None if none was created."""
        ...

    @abstractmethod
    async def cancel_transfer(self, transfer_id: str) -> TransferResponse:
        ...

    async def aclose(self) -> None:
        """Release network resources. No-op by default."""
        return None
