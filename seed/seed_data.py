"""
Seed the database with realistic sample data.

Creates:
  - Creators across Wise markets (NG, GH, KE, IN, BR, MX, TR) and Stripe
    Connect markets (US, GB, DE)
  - One verified, encrypted bank account and a USD balance per creator
  - Edge cases: no profile country (resolved from bank currency or bank
    code), no verified bank account, balance too low

Requires FIELD_ENCRYPTION_KEY (a Fernet key) in the environment or .env.

Run:
    python -m seed.seed_data
"""

import asyncio
from decimal import Decimal

from creator_payouts.database import async_session, init_db
from creator_payouts.models.payout import CreatorBalance, CreatorBankAccount, CreatorProfile
from creator_payouts.security.encryption import FieldCipher, get_field_cipher


CREATORS = [
    # Nigeria (largest group)
    {"id": "CR-001", "username": "adaeze", "display_name": "Adaeze Okafor", "country_code": "NG"},
    {"id": "CR-002", "username": "tundebeats", "display_name": "Tunde Bakare", "country_code": "NG"},
    {"id": "CR-003", "username": "chioma.sings", "display_name": "Chioma Eze", "country_code": "NG"},

    # Ghana / Kenya
    {"id": "CR-010", "username": "kwame", "display_name": "Kwame Mensah", "country_code": "GH"},
    {"id": "CR-011", "username": "wanjiku", "display_name": "Wanjiku Kamau", "country_code": "KE"},

    # Asia / Latin America / Middle East
    {"id": "CR-020", "username": "arjun", "display_name": "Arjun Mehta", "country_code": "IN"},
    {"id": "CR-021", "username": "lucasbr", "display_name": "Lucas Oliveira", "country_code": "BR"},
    {"id": "CR-022", "username": "valeria", "display_name": "Valeria Ruiz", "country_code": "MX"},
    {"id": "CR-023", "username": "emre", "display_name": "Emre Yilmaz", "country_code": "TR"},

    # Stripe Connect markets
    {"id": "CR-030", "username": "jordan", "display_name": "Jordan Reed", "country_code": "US"},
    {"id": "CR-031", "username": "ellie", "display_name": "Ellie Clarke", "country_code": "GB"},
    {"id": "CR-032", "username": "jonas", "display_name": "Jonas Weber", "country_code": "DE"},

    # ─── Edge cases ────────────────────────────────────────────────────

    # No profile country, NGN bank account → resolved from bank currency
    {"id": "CR-050", "username": "ngozi", "display_name": "Ngozi Obi", "country_code": None},

    # No profile country, no bank currency, GTBank code → resolved from bank code
    {"id": "CR-051", "username": "segun", "display_name": "Segun Adeyemi", "country_code": None},

    # No verified bank account → payout rejected with "add a bank account"
    {"id": "CR-060", "username": "nobank", "display_name": "Ife Balogun", "country_code": "NG"},

    # Balance too low → INSUFFICIENT_BALANCE
    {"id": "CR-061", "username": "broke", "display_name": "Kofi Asante", "country_code": "GH"},
]

BANK_ACCOUNTS = [
    {"creator_id": "CR-001", "account_number": "0123456789", "routing": "044", "holder": "Adaeze Okafor", "currency": "NGN"},
    {"creator_id": "CR-002", "account_number": "2087654321", "routing": "058", "holder": "Tunde Bakare", "currency": "NGN"},
    {"creator_id": "CR-003", "account_number": "3012345678", "routing": "057", "holder": "Chioma Eze", "currency": "NGN"},
    {"creator_id": "CR-010", "account_number": "1441000123456", "routing": "040100", "holder": "Kwame Mensah", "currency": "GHS"},
    {"creator_id": "CR-011", "account_number": "0150291234567", "routing": "68", "holder": "Wanjiku Kamau", "currency": "KES"},
    {"creator_id": "CR-020", "account_number": "50100123456789", "routing": "HDFC0000123", "holder": "Arjun Mehta", "currency": "INR"},
    {"creator_id": "CR-021", "account_number": "123456789", "routing": "341", "holder": "Lucas Oliveira", "currency": "BRL"},
    {"creator_id": "CR-022", "account_number": "002180700123456789", "routing": "002", "holder": "Valeria Ruiz", "currency": "MXN"},
    {"creator_id": "CR-023", "account_number": "TR330006100519786457841326", "routing": None, "holder": "Emre Yilmaz", "currency": "TRY"},
    {"creator_id": "CR-030", "account_number": "000123456789", "routing": "021000021", "holder": "Jordan Reed", "currency": "USD"},
    {"creator_id": "CR-031", "account_number": "31926819", "routing": "60-16-13", "holder": "Ellie Clarke", "currency": "GBP"},
    {"creator_id": "CR-032", "account_number": "DE89370400440532013000", "routing": None, "holder": "Jonas Weber", "currency": "EUR"},
    {"creator_id": "CR-050", "account_number": "0987654321", "routing": "033", "holder": "Ngozi Obi", "currency": "NGN"},
    {"creator_id": "CR-051", "account_number": "0112233445", "routing": "058", "holder": "Segun Adeyemi", "currency": None},
    {"creator_id": "CR-061", "account_number": "1441000999999", "routing": "130100", "holder": "Kofi Asante", "currency": "GHS"},
]

BALANCES = {
    "CR-001": Decimal("1250.00"),
    "CR-002": Decimal("480.50"),
    "CR-003": Decimal("75.00"),
    "CR-010": Decimal("300.00"),
    "CR-011": Decimal("220.00"),
    "CR-020": Decimal("910.00"),
    "CR-021": Decimal("150.00"),
    "CR-022": Decimal("640.00"),
    "CR-023": Decimal("95.00"),
    "CR-030": Decimal("2000.00"),
    "CR-031": Decimal("410.00"),
    "CR-032": Decimal("330.00"),
    "CR-050": Decimal("60.00"),
    "CR-051": Decimal("45.00"),
    "CR-060": Decimal("500.00"),
    "CR-061": Decimal("10.00"),
}


def _bank_account(cipher: FieldCipher, data: dict) -> CreatorBankAccount:
    return CreatorBankAccount(
        creator_id=data["creator_id"],
        account_number_encrypted=cipher.encrypt(data["account_number"]),
        routing_number_encrypted=cipher.encrypt(data["routing"]) if data["routing"] else None,
        account_holder_name=data["holder"],
        currency=data["currency"],
        is_verified=True,
    )


async def seed():
    """Seed the database with sample data."""
    try:
        cipher = get_field_cipher()
    except ValueError:
        print(f"FIELD_ENCRYPTION_KEY is not set. Generate one with:\n  FIELD_ENCRYPTION_KEY={FieldCipher.generate_key()}")
        return

    await init_db()

    async with async_session() as session:
        # Check if already seeded
        existing = await session.get(CreatorProfile, "CR-001")
        if existing:
            print("Database already seeded. Skipping.")
            return

        for creator_data in CREATORS:
            session.add(CreatorProfile(**creator_data))

        for account_data in BANK_ACCOUNTS:
            session.add(_bank_account(cipher, account_data))

        for creator_id, amount in BALANCES.items():
            session.add(CreatorBalance(creator_id=creator_id, currency="USD", available_amount=amount))

        await session.commit()
        print(
            f"Seeded {len(CREATORS)} creators, {len(BANK_ACCOUNTS)} bank accounts "
            f"and {len(BALANCES)} balances."
        )


if __name__ == "__main__":
    asyncio.run(seed())
