"""Verified payout destination lookup."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from creator_payouts.creators.store import CreatorStore
from creator_payouts.routing.country_currency import CURRENCY_COUNTRY, country_for_routing_code
from creator_payouts.security.encryption import FieldCipher, mask_account_number

logger = logging.getLogger("creator_payouts.bank_accounts")

ADD_BANK_ACCOUNT_MESSAGE = "No verified bank account on file. Please add a bank account to receive payouts."


@dataclass
class BankDetails:
    """Decrypted payout destination. Never log or persist ``account_number``."""

    account_number: str = field(repr=False)
    routing_identifier: Optional[str]
    account_holder_name: str
    currency: Optional[str] = None
    country: Optional[str] = None

    @property
    def masked_account(self) -> str:
        return mask_account_number(self.account_number)


async def get_verified_bank_account(
    creators: CreatorStore,
    creator_id: str,
    cipher: FieldCipher,
) -> Optional[BankDetails]:
    """
    Return the creator's newest verified bank account, decrypted.

    ``None`` is a normal outcome (no verified account yet). Callers reject
    the payout with ``ADD_BANK_ACCOUNT_MESSAGE``.

    Raises:
        DecryptionError: If the stored ciphertext does not match the key.
    """
    account = await creators.get_verified_bank_account(creator_id)
    if account is None:
        logger.info("Creator %s has no verified bank account", creator_id)
        return None

    routing = cipher.decrypt_optional(account.routing_number_encrypted)
    return BankDetails(
        account_number=cipher.decrypt(account.account_number_encrypted),
        routing_identifier=routing,
        account_holder_name=account.account_holder_name,
        currency=account.currency,
        country=CURRENCY_COUNTRY.get(account.currency or "") or country_for_routing_code(routing),
    )
