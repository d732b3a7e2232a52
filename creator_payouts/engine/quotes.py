"""
Conversion quotes.

Quotes are short-lived. The transfer initiator calls ``ensure_fresh``
right before creating a transfer so an expired (or nearly expired) quote is
replaced instead of being rejected by the provider.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from creator_payouts.config import settings
from creator_payouts.engine.retry import with_retry
from creator_payouts.providers.base import Quote, TransferProvider

logger = logging.getLogger("creator_payouts.quotes")


def identity_quote(currency: str, amount: Decimal) -> Quote:
    """Same-currency payout: rate 1, no provider round-trip."""
    return Quote(
        quote_id=f"identity-{uuid.uuid4()}",
        source_currency=currency,
        target_currency=currency,
        source_amount=amount,
        target_amount=amount,
        rate=Decimal("1"),
        fee=Decimal("0"),
        expires_at=datetime.now(timezone.utc) + timedelta(days=1),
    )


async def get_quote(
    provider: TransferProvider,
    source_currency: str,
    target_currency: str,
    source_amount: Decimal,
) -> Quote:
    if source_currency == target_currency:
        return identity_quote(source_currency, source_amount)

    quote = await with_retry(provider.create_quote, source_currency, target_currency, source_amount)
    logger.info(
        "Quote %s: %s %s -> %s %s (rate=%s fee=%s)",
        quote.quote_id,
        quote.source_amount,
        quote.source_currency,
        quote.target_amount,
        quote.target_currency,
        quote.rate,
        quote.fee,
    )
    return quote


async def ensure_fresh(provider: TransferProvider, quote: Quote) -> Quote:
    """Return ``quote`` or a replacement if it expires within the refresh margin."""
    if quote.is_identity or not quote.expires_within(settings.quote_refresh_margin_s):
        return quote
    logger.info("Quote %s expires at %s, re-quoting", quote.quote_id, quote.expires_at.isoformat())
    return await get_quote(provider, quote.source_currency, quote.target_currency, quote.source_amount)
