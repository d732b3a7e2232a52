"""
Country/currency resolution for creator payouts.

Determines where a creator gets paid, first match wins:
  1. Profile ``country_code`` → currency from the country table
  2. Newest verified bank account ``currency`` → inferred country
  3. Decrypted routing identifier → national bank code / IBAN / ABA match
  4. Default: US / USD

The payout method is Wise for countries whose currency Wise pays out
natively; everything else routes to Stripe Connect. Resolution never
raises: lookup failures are logged and fall through to the next step.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from creator_payouts.creators.store import CreatorStore
from creator_payouts.models.enums import PayoutMethod, ResolutionSource
from creator_payouts.routing.country_currency import (
    COUNTRY_CURRENCY,
    CURRENCY_COUNTRY,
    WISE_SUPPORTED_COUNTRIES,
    country_for_routing_code,
)
from creator_payouts.security.encryption import DecryptionError, FieldCipher

logger = logging.getLogger("creator_payouts.resolver")

DEFAULT_COUNTRY = "US"
DEFAULT_CURRENCY = "USD"


@dataclass(frozen=True)
class CountryCurrency:
    """Result of country/currency resolution."""

    country_code: str
    currency: str
    payout_method: PayoutMethod
    source: ResolutionSource


def payout_method_for(country_code: str) -> PayoutMethod:
    if country_code in WISE_SUPPORTED_COUNTRIES:
        return PayoutMethod.WISE
    return PayoutMethod.STRIPE_CONNECT


def _resolved(country: str, currency: str, source: ResolutionSource) -> CountryCurrency:
    return CountryCurrency(
        country_code=country,
        currency=currency,
        payout_method=payout_method_for(country),
        source=source,
    )


async def resolve_country_currency(
    creators: CreatorStore,
    creator_id: str,
    cipher: Optional[FieldCipher] = None,
) -> CountryCurrency:
    """
    Resolve a creator's payout country, currency and method.

    Args:
        creators: Profile and bank account store.
        creator_id: The creator being paid.
        cipher: Field cipher for the routing-number fallback. Step 3 is
            skipped without one.
    """
    # Step 1: profile country
    try:
        profile = await creators.get_profile(creator_id)
    except SQLAlchemyError:
        logger.warning("Profile lookup failed for creator %s", creator_id, exc_info=True)
        profile = None

    country = ((profile.country_code if profile else None) or "").strip().upper()
    if country:
        currency = COUNTRY_CURRENCY.get(country)
        if currency:
            return _resolved(country, currency, ResolutionSource.PROFILE)
        logger.info("Creator %s profile country %s has no currency mapping", creator_id, country)

    try:
        account = await creators.get_verified_bank_account(creator_id)
    except SQLAlchemyError:
        logger.warning("Bank account lookup failed for creator %s", creator_id, exc_info=True)
        account = None

    if account is not None:
        # Step 2: bank account currency
        currency = (account.currency or "").strip().upper()
        inferred = CURRENCY_COUNTRY.get(currency)
        if inferred:
            return _resolved(inferred, currency, ResolutionSource.BANK_CURRENCY)

        # Step 3: routing identifier
        if cipher is not None and account.routing_number_encrypted:
            try:
                routing = cipher.decrypt(account.routing_number_encrypted)
            except DecryptionError:
                logger.warning("Could not decrypt routing number for creator %s", creator_id)
                routing = None
            routed_country = country_for_routing_code(routing)
            if routed_country:
                return _resolved(routed_country, COUNTRY_CURRENCY[routed_country], ResolutionSource.BANK_CODE)

    # Step 4: default
    logger.info("Creator %s resolved to default %s/%s", creator_id, DEFAULT_COUNTRY, DEFAULT_CURRENCY)
    return _resolved(DEFAULT_COUNTRY, DEFAULT_CURRENCY, ResolutionSource.DEFAULT)
