"""
Payout request validation with categorized failure codes.

Before any row is written or any provider call is made, we verify:
  1. Amount is positive
  2. Currency is a supported ISO code
  3. A verified bank destination exists
  4. The creator exists

Failures here never reach the provider, so no Payout row is persisted.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from creator_payouts.engine.bank_accounts import ADD_BANK_ACCOUNT_MESSAGE, BankDetails
from creator_payouts.models.enums import ErrorCode


@dataclass
class EligibilityResult:
    """Result of a validation check."""

    eligible: bool
    code: Optional[ErrorCode] = None
    message: str = ""


def _as_decimal(amount) -> Optional[Decimal]:
    if amount is None:
        return None
    try:
        return Decimal(str(amount))
    except InvalidOperation:
        return None


def check_eligibility(
    amount,
    currency: Optional[str],
    bank_details: Optional[BankDetails],
    creator_exists: bool = True,
    supported_currency: bool = True,
) -> EligibilityResult:
    """
    Check whether a payout request may proceed to the provider.

    Args:
        amount: Requested amount in ``currency`` units.
        currency: ISO 4217 code of the amount.
        bank_details: Decrypted destination, or None if none is verified.
        creator_exists: Whether the creator profile was found.
        supported_currency: Whether the provider can pay out in ``currency``.

    Returns:
        EligibilityResult indicating pass/fail with categorized code.
    """
    if not creator_exists:
        return EligibilityResult(
            eligible=False,
            code=ErrorCode.CREATOR_NOT_FOUND,
            message="Creator not found",
        )

    value = _as_decimal(amount)
    if value is None or not value.is_finite() or value <= 0:
        return EligibilityResult(
            eligible=False,
            code=ErrorCode.INVALID_AMOUNT,
            message=f"Invalid amount: {amount}",
        )

    code = (currency or "").strip().upper()
    if len(code) != 3 or not code.isalpha() or not supported_currency:
        return EligibilityResult(
            eligible=False,
            code=ErrorCode.UNSUPPORTED_CURRENCY,
            message=f"Unsupported currency: {currency}",
        )

    if bank_details is None or not bank_details.account_number:
        return EligibilityResult(
            eligible=False,
            code=ErrorCode.INVALID_BANK_ACCOUNT,
            message=ADD_BANK_ACCOUNT_MESSAGE,
        )

    return EligibilityResult(eligible=True)
