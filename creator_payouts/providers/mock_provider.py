"""
Mock transfer provider for tests and local development.

Simulates the Wise flow in memory:
  - Fixed USD-based rate table (USD→NGN 1600, ...) with cross rates
  - Platform balances per currency, debited when a transfer is funded
  - Transfers deduped by customer transaction id
  - Configurable latency and random failure rate (429 / 503 / 400)
  - Scripted failures per operation or per creator for deterministic tests
"""

import asyncio
import itertools
import random
import uuid
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from creator_payouts.config import settings
from creator_payouts.engine.retry import (
    PermanentError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
)
from creator_payouts.models.enums import ErrorCode, PayoutMethod
from creator_payouts.providers.base import (
    AWAITING_FUNDING,
    ProviderBalance,
    Quote,
    RecipientRequest,
    TransferProvider,
    TransferRequest,
    TransferResponse,
)

# Units of each currency per 1 USD
USD_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "NGN": Decimal("1600"),
    "GHS": Decimal("15.5"),
    "KES": Decimal("129"),
    "ZAR": Decimal("18.4"),
    "EGP": Decimal("48.5"),
    "INR": Decimal("83.5"),
    "PHP": Decimal("56.2"),
    "BRL": Decimal("5.05"),
    "MXN": Decimal("17.1"),
    "TRY": Decimal("32.4"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "CAD": Decimal("1.36"),
}

CENT = Decimal("0.01")


class MockTransferProvider(TransferProvider):
    """
    In-memory provider with deterministic rates.

    Transfers go ``incoming_payment_waiting`` on creation and ``processing``
    once funded. Tests drive later states with ``set_transfer_state``.
    """

    def __init__(
        self,
        failure_rate: Optional[float] = None,
        latency_ms: Optional[int] = None,
        balances: Optional[dict[str, Decimal]] = None,
        method: PayoutMethod = PayoutMethod.WISE,
        fee: Decimal = Decimal("0"),
        quote_ttl_s: int = 1800,
    ):
        self._failure_rate = failure_rate if failure_rate is not None else settings.mock_failure_rate
        self._latency_ms = latency_ms if latency_ms is not None else settings.mock_latency_ms
        self._method = method
        self._fee = fee
        self._quote_ttl_s = quote_ttl_s
        self.balances: dict[str, Decimal] = dict(balances or {"USD": Decimal("1000000")})

        self._ids = itertools.count(50_000_001)
        self._quotes: dict[str, Quote] = {}
        self._recipients: dict[str, RecipientRequest] = {}
        self._transfers: dict[str, TransferResponse] = {}
        self._requests: dict[str, TransferRequest] = {}
        self._by_reference: dict[str, str] = {}
        self._scripted: dict[str, deque[Exception]] = defaultdict(deque)
        self._creator_failures: dict[str, deque[Exception]] = defaultdict(deque)
        self._timeouts_after_create = 0

        self.create_calls = 0  # Transfers actually created (dedup hits excluded)
        self.quote_calls = 0

    @property
    def name(self) -> str:
        return f"mock_{self._method.value}"

    @property
    def method(self) -> PayoutMethod:
        return self._method

    # ─── Test scripting ────────────────────────────────────────────────

    def fail_next(self, operation: str, error: Exception, times: int = 1) -> None:
        """Raise ``error`` on the next ``times`` calls to ``operation``."""
        for _ in range(times):
            self._scripted[operation].append(error)

    def fail_for_creator(self, creator_id: str, error: Exception, times: int = 1) -> None:
        """Raise ``error`` on the next ``times`` transfer creations for ``creator_id``."""
        for _ in range(times):
            self._creator_failures[creator_id].append(error)

    def timeout_after_create(self, times: int = 1) -> None:
        """Create the transfer, then raise a timeout as if the response was lost."""
        self._timeouts_after_create += times

    def set_transfer_state(self, transfer_id: str, state: str) -> None:
        self._transfers[str(transfer_id)].status = state

    @property
    def transfers(self) -> list[TransferResponse]:
        return list(self._transfers.values())

    # ─── Internals ─────────────────────────────────────────────────────

    async def _simulate(self, operation: str) -> None:
        if self._latency_ms > 0:
            jitter = random.uniform(0.5, 1.5)
            await asyncio.sleep(self._latency_ms * jitter / 1000)

        if self._scripted[operation]:
            raise self._scripted[operation].popleft()

    def _random_failure(self) -> None:
        roll = random.random()

        if roll < self._failure_rate * 0.3:
            raise RateLimitError(message="Mock rate limit: too many requests", retry_after=1.0)

        if roll < self._failure_rate * 0.6:
            raise ProviderError(
                message="Mock transient error: service temporarily unavailable",
                status_code=503,
                retriable=True,
            )

        if roll < self._failure_rate:
            raise PermanentError(message="Mock permanent error: invalid account details", status_code=400)

    def _rate(self, source_currency: str, target_currency: str) -> Decimal:
        try:
            return USD_RATES[target_currency] / USD_RATES[source_currency]
        except KeyError:
            raise PermanentError(
                f"Unsupported currency route {source_currency}->{target_currency}",
                error_code=ErrorCode.UNSUPPORTED_CURRENCY.value,
            ) from None

    # ─── TransferProvider ──────────────────────────────────────────────

    def supports_currency(self, currency: str) -> bool:
        return currency in USD_RATES

    async def get_balance(self, currency: str) -> ProviderBalance:
        await self._simulate("get_balance")
        return ProviderBalance(currency=currency, amount=self.balances.get(currency, Decimal("0")))

    async def create_quote(self, source_currency: str, target_currency: str, source_amount: Decimal) -> Quote:
        await self._simulate("create_quote")
        self.quote_calls += 1
        rate = self._rate(source_currency, target_currency)
        target_amount = ((source_amount - self._fee) * rate).quantize(CENT, rounding=ROUND_HALF_UP)
        quote = Quote(
            quote_id=str(uuid.uuid4()),
            source_currency=source_currency,
            target_currency=target_currency,
            source_amount=source_amount,
            target_amount=target_amount,
            rate=rate,
            fee=self._fee,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self._quote_ttl_s),
        )
        self._quotes[quote.quote_id] = quote
        return quote

    async def get_quote(self, quote_id: str) -> Quote:
        await self._simulate("get_quote")
        try:
            return self._quotes[quote_id]
        except KeyError:
            raise PermanentError(f"Quote not found: {quote_id}", status_code=404) from None

    async def create_recipient(self, request: RecipientRequest) -> str:
        await self._simulate("create_recipient")
        if not request.account_number:
            raise PermanentError("Recipient account number is required", status_code=422)
        recipient_id = str(next(self._ids))
        self._recipients[recipient_id] = request
        return recipient_id

    async def create_transfer(self, request: TransferRequest) -> TransferResponse:
        await self._simulate("create_transfer")

        existing_id = self._by_reference.get(request.customer_transaction_id)
        if existing_id is not None:
            return self._transfers[existing_id]

        creator_id = (request.metadata or {}).get("creator_id")
        if creator_id and self._creator_failures[creator_id]:
            raise self._creator_failures[creator_id].popleft()
        self._random_failure()

        if request.recipient_id not in self._recipients:
            raise PermanentError(f"Recipient account not found: {request.recipient_id}", status_code=422)

        transfer = TransferResponse(
            transfer_id=str(next(self._ids)),
            status=AWAITING_FUNDING,
            customer_transaction_id=request.customer_transaction_id,
            source_amount=request.source_amount,
            target_amount=request.target_amount,
            rate=self._rate(request.source_currency, request.target_currency),
            fee=self._fee,
        )
        self._transfers[transfer.transfer_id] = transfer
        self._requests[transfer.transfer_id] = request
        self._by_reference[request.customer_transaction_id] = transfer.transfer_id
        self.create_calls += 1

        if self._timeouts_after_create:
            self._timeouts_after_create -= 1
            raise ProviderTimeoutError("Mock timeout: transfer created but response lost")
        return transfer

    async def fund_transfer(self, transfer_id: str) -> str:
        await self._simulate("fund_transfer")
        transfer = self._transfers.get(str(transfer_id))
        if transfer is None:
            raise PermanentError(f"Transfer not found: {transfer_id}", status_code=404)
        if transfer.status != AWAITING_FUNDING:
            return transfer.status

        request = self._requests[transfer.transfer_id]
        available = self.balances.get(request.source_currency, Decimal("0"))
        if available < request.source_amount:
            raise PermanentError(
                "Insufficient balance to fund transfer",
                error_code=ErrorCode.INSUFFICIENT_BALANCE.value,
            )
        self.balances[request.source_currency] = available - request.source_amount
        transfer.status = "processing"
        return transfer.status

    async def get_transfer(self, transfer_id: str) -> TransferResponse:
        await self._simulate("get_transfer")
        try:
            return self._transfers[str(transfer_id)]
        except KeyError:
            raise PermanentError(f"Transfer not found: {transfer_id}", status_code=404) from None

    async def find_transfer_by_reference(self, customer_transaction_id: str) -> Optional[TransferResponse]:
        await self._simulate("find_transfer_by_reference")
        transfer_id = self._by_reference.get(customer_transaction_id)
        return self._transfers.get(transfer_id) if transfer_id else None

    async def cancel_transfer(self, transfer_id: str) -> TransferResponse:
        await self._simulate("cancel_transfer")
        transfer = await self.get_transfer(transfer_id)
        if transfer.status in ("outgoing_payment_sent", "funds_refunded", "charged_back"):
            raise PermanentError(f"Transfer {transfer_id} can no longer be cancelled ({transfer.status})", status_code=409)
        transfer.status = "cancelled"
        return transfer
