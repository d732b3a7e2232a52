"""
Wise REST API adapter.

Wraps the endpoints used by the payout flow:
  POST /v2/quotes                                    create quote
  GET  /v2/quotes/{id}                               read quote
  POST /v1/accounts                                  create recipient
  POST /v1/transfers                                 create transfer
  POST /v3/profiles/{pid}/transfers/{id}/payments    fund from balance
  GET  /v1/transfers/{id}                            transfer status
  PUT  /v1/transfers/{id}/cancel                     cancel
  GET  /v4/profiles/{pid}/balances                   platform balances

HTTP failures are mapped onto the provider exception hierarchy so callers
can classify them without knowing about httpx.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

import httpx

from creator_payouts.config import settings
from creator_payouts.engine.retry import (
    RETRIABLE_STATUS_CODES,
    PermanentError,
    ProviderError,
    ProviderNetworkError,
    ProviderTimeoutError,
    RateLimitError,
)
from creator_payouts.models.enums import ErrorCode, PayoutMethod
from creator_payouts.providers.base import (
    ProviderBalance,
    Quote,
    RecipientRequest,
    TransferProvider,
    TransferRequest,
    TransferResponse,
)
from creator_payouts.routing.country_currency import WISE_CURRENCIES
from creator_payouts.security.encryption import mask_account_number

logger = logging.getLogger("creator_payouts.wise")

# Wise recipient account types for local bank payouts
RECIPIENT_TYPES = {
    "NGN": "nigerian_bank_account",
    "GHS": "ghanaian_bank_account",
    "KES": "kenyan_bank_account",
}

TRANSFER_LOOKUP_PAGE_SIZE = 100


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc) + timedelta(minutes=30)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _error_message(response: httpx.Response) -> tuple[str, Optional[str]]:
    message = f"Wise API error ({response.status_code})"
    code = None
    try:
        payload = response.json()
    except ValueError:
        return response.reason_phrase or message, None
    if isinstance(payload, dict):
        code = payload.get("error") or payload.get("code")
        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            message = errors[0].get("message") or message
        else:
            message = payload.get("message") or message
    return message, code


class WiseProvider(TransferProvider):
    def __init__(
        self,
        api_url: Optional[str] = None,
        api_token: Optional[str] = None,
        profile_id: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: Optional[float] = None,
    ):
        self.profile_id = profile_id or settings.wise_profile_id
        token = api_token if api_token is not None else settings.wise_api_token
        self._client = client or httpx.AsyncClient(
            base_url=api_url or settings.wise_api_url,
            timeout=timeout_s or settings.provider_timeout_s,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
        )

    @property
    def name(self) -> str:
        return "wise"

    @property
    def method(self) -> PayoutMethod:
        return PayoutMethod.WISE

    def _profile(self) -> int | str:
        return int(self.profile_id) if str(self.profile_id).isdigit() else self.profile_id

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"Wise {method} {path} timed out") from e
        except httpx.TransportError as e:
            raise ProviderNetworkError(f"Wise {method} {path} failed: {e}") from e

        if response.is_success:
            return response.json() if response.content else None

        message, code = _error_message(response)
        logger.warning("Wise %s %s -> %d: %s", method, path, response.status_code, message)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(message, retry_after=float(retry_after) if retry_after else None)
        if response.status_code >= 500:
            raise ProviderError(
                message,
                status_code=response.status_code,
                retriable=response.status_code in RETRIABLE_STATUS_CODES,
                error_code=code,
            )
        raise PermanentError(message, status_code=response.status_code, error_code=code)

    def supports_currency(self, currency: str) -> bool:
        return currency in WISE_CURRENCIES or currency == settings.default_source_currency

    async def get_balance(self, currency: str) -> ProviderBalance:
        balances = await self._request(
            "GET", f"/v4/profiles/{self.profile_id}/balances", params={"types": "STANDARD"}
        )
        for balance in balances or []:
            if balance.get("currency") == currency:
                amount = balance.get("amount") or {}
                return ProviderBalance(currency=currency, amount=_decimal(amount.get("value")) or Decimal("0"))
        return ProviderBalance(currency=currency, amount=Decimal("0"))

    def _to_quote(self, payload: dict[str, Any]) -> Quote:
        fee = payload.get("fee")
        if fee is None:
            options = payload.get("paymentOptions") or [{}]
            fee = ((options[0] or {}).get("fee") or {}).get("total")
        return Quote(
            quote_id=str(payload["id"]),
            source_currency=payload["sourceCurrency"],
            target_currency=payload["targetCurrency"],
            source_amount=_decimal(payload.get("sourceAmount")) or Decimal("0"),
            target_amount=_decimal(payload.get("targetAmount")) or Decimal("0"),
            rate=_decimal(payload.get("rate")) or Decimal("0"),
            fee=_decimal(fee) or Decimal("0"),
            expires_at=_parse_time(payload.get("expirationTime")),
        )

    async def create_quote(self, source_currency: str, target_currency: str, source_amount: Decimal) -> Quote:
        payload = await self._request("POST", "/v2/quotes", json={
            "profile": self._profile(),
            "sourceCurrency": source_currency,
            "targetCurrency": target_currency,
            "sourceAmount": float(source_amount),
            "paymentOption": "BALANCE",
        })
        return self._to_quote(payload)

    async def get_quote(self, quote_id: str) -> Quote:
        return self._to_quote(await self._request("GET", f"/v2/quotes/{quote_id}"))

    async def create_recipient(self, request: RecipientRequest) -> str:
        details: dict[str, Any]
        recipient_type = RECIPIENT_TYPES.get(request.currency)
        if recipient_type:
            details = {
                "accountNumber": request.account_number,
                "bankCode": request.routing_identifier,
                "accountType": "checking",
            }
            if request.currency == "NGN":
                details["legalType"] = "PRIVATE"
        elif (request.account_number or "")[:2].isalpha():
            recipient_type = "iban"
            details = {"IBAN": request.account_number, "legalType": "PRIVATE"}
        else:
            raise PermanentError(
                f"Unsupported recipient currency: {request.currency}",
                error_code=ErrorCode.UNSUPPORTED_CURRENCY.value,
            )

        logger.info(
            "Creating Wise recipient type=%s currency=%s account=%s",
            recipient_type,
            request.currency,
            mask_account_number(request.account_number),
        )
        payload = await self._request("POST", "/v1/accounts", json={
            "currency": request.currency,
            "type": recipient_type,
            "profile": self._profile(),
            "accountHolderName": request.account_holder_name,
            "ownedByCustomer": False,
            "details": details,
        })
        return str(payload["id"])

    @staticmethod
    def _to_transfer(payload: dict[str, Any]) -> TransferResponse:
        return TransferResponse(
            transfer_id=str(payload["id"]),
            status=payload.get("status") or "processing",
            customer_transaction_id=payload.get("customerTransactionId"),
            source_amount=_decimal(payload.get("sourceValue")),
            target_amount=_decimal(payload.get("targetValue")),
            rate=_decimal(payload.get("rate")),
        )

    async def create_transfer(self, request: TransferRequest) -> TransferResponse:
        payload = await self._request("POST", "/v1/transfers", json={
            "targetAccount": int(request.recipient_id) if request.recipient_id.isdigit() else request.recipient_id,
            "quoteUuid": request.quote_id,
            "customerTransactionId": request.customer_transaction_id,
            "details": {"reference": request.reference or request.customer_transaction_id[:35]},
        })
        return self._to_transfer(payload)

    async def fund_transfer(self, transfer_id: str) -> str:
        payload = await self._request(
            "POST",
            f"/v3/profiles/{self.profile_id}/transfers/{transfer_id}/payments",
            json={"type": "BALANCE"},
        )
        if (payload or {}).get("status") == "REJECTED":
            raise PermanentError(
                f"Funding rejected: {payload.get('errorCode') or 'unknown'}",
                error_code=ErrorCode.INSUFFICIENT_BALANCE.value
                if payload.get("errorCode") == "transfer.insufficient_funds"
                else None,
            )
        return "processing"

    async def get_transfer(self, transfer_id: str) -> TransferResponse:
        return self._to_transfer(await self._request("GET", f"/v1/transfers/{transfer_id}"))

    async def find_transfer_by_reference(self, customer_transaction_id: str) -> Optional[TransferResponse]:
        offset = 0
        while True:
            page = await self._request("GET", "/v1/transfers", params={
                "profile": self.profile_id,
                "limit": TRANSFER_LOOKUP_PAGE_SIZE,
                "offset": offset,
            }) or []
            for transfer in page:
                if transfer.get("customerTransactionId") == customer_transaction_id:
                    return self._to_transfer(transfer)
            if len(page) < TRANSFER_LOOKUP_PAGE_SIZE:
                return None
            offset += TRANSFER_LOOKUP_PAGE_SIZE

    async def cancel_transfer(self, transfer_id: str) -> TransferResponse:
        return self._to_transfer(await self._request("PUT", f"/v1/transfers/{transfer_id}/cancel"))

    async def aclose(self) -> None:
        await self._client.aclose()
