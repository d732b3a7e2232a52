"""
Static country, currency and bank-code lookup tables.

Loaded once at import and exposed read-only (``MappingProxyType`` /
``frozenset``). The resolver is the only consumer; nothing mutates these at
runtime.

Coverage: every country whose local currency Wise pays out natively
(Africa, Asia, Latin America, Middle East) plus the major Stripe Connect
markets that fall back to the alternate provider.
"""

import re
from types import MappingProxyType
from typing import Mapping, Optional


COUNTRY_CURRENCY: Mapping[str, str] = MappingProxyType({
    # ─── Africa ────────────────────────────────────────────────────────
    "NG": "NGN",  # Nigeria
    "GH": "GHS",  # Ghana
    "KE": "KES",  # Kenya
    "ZA": "ZAR",  # South Africa
    "TZ": "TZS",  # Tanzania
    "UG": "UGX",  # Uganda
    "EG": "EGP",  # Egypt
    "MA": "MAD",  # Morocco
    # ─── Asia ──────────────────────────────────────────────────────────
    "IN": "INR",  # India
    "ID": "IDR",  # Indonesia
    "MY": "MYR",  # Malaysia
    "PH": "PHP",  # Philippines
    "TH": "THB",  # Thailand
    "VN": "VND",  # Vietnam
    "BD": "BDT",  # Bangladesh
    "PK": "PKR",  # Pakistan
    "LK": "LKR",  # Sri Lanka
    "NP": "NPR",  # Nepal
    "CN": "CNY",  # China
    "KR": "KRW",  # South Korea
    # ─── Latin America ─────────────────────────────────────────────────
    "BR": "BRL",  # Brazil
    "MX": "MXN",  # Mexico
    "AR": "ARS",  # Argentina
    "CL": "CLP",  # Chile
    "CO": "COP",  # Colombia
    "CR": "CRC",  # Costa Rica
    "UY": "UYU",  # Uruguay
    # ─── Middle East & Eastern Europe ──────────────────────────────────
    "TR": "TRY",  # Turkey
    "IL": "ILS",  # Israel
    "UA": "UAH",  # Ukraine
    "GE": "GEL",  # Georgia
    # ─── Stripe Connect markets ────────────────────────────────────────
    "US": "USD",
    "GB": "GBP",
    "CA": "CAD",
    "AU": "AUD",
    "NZ": "NZD",
    "JP": "JPY",
    "SG": "SGD",
    "HK": "HKD",
    "CH": "CHF",
    "NO": "NOK",
    "SE": "SEK",
    "DK": "DKK",
    "PL": "PLN",
    # Eurozone
    "DE": "EUR",
    "FR": "EUR",
    "ES": "EUR",
    "NL": "EUR",
    "IT": "EUR",
    "AT": "EUR",
    "BE": "EUR",
    "IE": "EUR",
    "PT": "EUR",
    "FI": "EUR",
    "GR": "EUR",
    "LU": "EUR",
})

# Currencies Wise pays out to local bank accounts for us
WISE_CURRENCIES = frozenset({
    "NGN", "GHS", "KES", "ZAR", "TZS", "UGX", "EGP",
    "INR", "IDR", "MYR", "PHP", "THB", "VND", "BDT", "PKR", "LKR", "NPR", "CNY", "KRW",
    "BRL", "MXN", "ARS", "CLP", "COP", "CRC", "UYU",
    "TRY", "ILS", "MAD", "UAH", "GEL",
})

WISE_SUPPORTED_COUNTRIES = frozenset(
    country for country, currency in COUNTRY_CURRENCY.items() if currency in WISE_CURRENCIES
)

# Reverse map. Shared currencies resolve to a single representative country.
CURRENCY_COUNTRY: Mapping[str, str] = MappingProxyType({
    **{currency: country for country, currency in COUNTRY_CURRENCY.items() if currency != "EUR"},
    "EUR": "DE",
})

BANK_CODE_COUNTRY: Mapping[str, str] = MappingProxyType({
    # ─── Nigeria (CBN bank codes) ──────────────────────────────────────
    "044": "NG",  # Access Bank
    "058": "NG",  # GTBank
    "057": "NG",  # Zenith Bank
    "011": "NG",  # First Bank
    "033": "NG",  # UBA
    "050": "NG",  # Ecobank
    "214": "NG",  # FCMB
    "070": "NG",  # Fidelity Bank
    "221": "NG",  # Stanbic IBTC
    "232": "NG",  # Sterling Bank
    "032": "NG",  # Union Bank
    "035": "NG",  # Wema Bank
    "082": "NG",  # Keystone Bank
    "076": "NG",  # Polaris Bank
    "030": "NG",  # Heritage Bank
    "023": "NG",  # Citibank Nigeria
    "101": "NG",  # Providus Bank
    "090267": "NG",  # Kuda
    # ─── Ghana (sort codes) ────────────────────────────────────────────
    "280100": "GH",  # Access Bank Ghana
    "130100": "GH",  # Ecobank Ghana
    "240100": "GH",  # Fidelity Bank Ghana
    "170100": "GH",  # First Atlantic Bank
    "040100": "GH",  # GCB Bank
    "230100": "GH",  # GTBank Ghana
    "020100": "GH",  # Standard Chartered Ghana
    "190100": "GH",  # Stanbic Bank Ghana
    "120100": "GH",  # Zenith Bank Ghana
    # ─── Kenya (CBK bank codes) ────────────────────────────────────────
    "68": "KE",  # Equity Bank
    "01": "KE",  # KCB
    "11": "KE",  # Co-operative Bank
    "03": "KE",  # Absa Kenya
    "02": "KE",  # Standard Chartered Kenya
    "07": "KE",  # NCBA
    "63": "KE",  # Diamond Trust Bank
    "31": "KE",  # Stanbic Kenya
    "70": "KE",  # Family Bank
    "72": "KE",  # Gulf African Bank
})

BANK_NAMES: Mapping[str, str] = MappingProxyType({
    "044": "Access Bank",
    "058": "GTBank",
    "057": "Zenith Bank",
    "011": "First Bank",
    "033": "UBA",
    "090267": "Kuda Bank",
    "280100": "Access Bank Ghana",
    "040100": "GCB Bank",
    "68": "Equity Bank",
    "01": "KCB Bank",
})

_IBAN_RE = re.compile(r"^([A-Z]{2})\d{2}[A-Z0-9]{10,30}$")
_ABA_RE = re.compile(r"^\d{9}$")
_UK_SORT_CODE_RE = re.compile(r"^\d{2}-\d{2}-\d{2}$")


def country_for_routing_code(routing: Optional[str]) -> Optional[str]:
    """
    Infer a country from a bank routing identifier.

    Exact national bank codes win, then structural formats: IBAN country
    prefix, US ABA routing number (9 digits), UK sort code (``NN-NN-NN``).
    """
    code = (routing or "").strip().upper().replace(" ", "")
    if not code:
        return None
    if code in BANK_CODE_COUNTRY:
        return BANK_CODE_COUNTRY[code]
    iban = _IBAN_RE.match(code)
    if iban and iban.group(1) in COUNTRY_CURRENCY:
        return iban.group(1)
    if _ABA_RE.match(code):
        return "US"
    if _UK_SORT_CODE_RE.match(code):
        return "GB"
    return None


def bank_name(bank_code: Optional[str]) -> str:
    if not bank_code:
        return ""
    return BANK_NAMES.get(bank_code, f"Bank {bank_code}")
