from creator_payouts.routing.country_currency import (
    COUNTRY_CURRENCY,
    CURRENCY_COUNTRY,
    WISE_SUPPORTED_COUNTRIES,
)
from creator_payouts.routing.resolver import CountryCurrency, resolve_country_currency

__all__ = [
    "COUNTRY_CURRENCY",
    "CURRENCY_COUNTRY",
    "WISE_SUPPORTED_COUNTRIES",
    "CountryCurrency",
    "resolve_country_currency",
]
