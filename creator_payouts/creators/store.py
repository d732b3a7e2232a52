"""
Creator-side collaborator stores: profiles, bank accounts, balances.

These tables belong to the main application; the payout service reads
profiles and bank accounts and performs exactly one write, the balance
deduction after a transfer is created.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from creator_payouts.models.payout import CreatorBalance, CreatorBankAccount, CreatorProfile


class CreatorStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_profile(self, creator_id: str) -> Optional[CreatorProfile]:
        return await self.session.get(CreatorProfile, creator_id)

    async def get_verified_bank_account(self, creator_id: str) -> Optional[CreatorBankAccount]:
        """Most recently created verified account, or None."""
        result = await self.session.execute(
            select(CreatorBankAccount)
            .where(
                CreatorBankAccount.creator_id == creator_id,
                CreatorBankAccount.is_verified.is_(True),
            )
            .order_by(CreatorBankAccount.created_at.desc(), CreatorBankAccount.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def get_available_balance(self, creator_id: str, currency: str) -> Decimal:
        result = await self.session.execute(
            select(CreatorBalance.available_amount).where(
                CreatorBalance.creator_id == creator_id,
                CreatorBalance.currency == currency,
            )
        )
        amount = result.scalar_one_or_none()
        return Decimal(str(amount)) if amount is not None else Decimal("0")

    async def deduct_balance(self, creator_id: str, currency: str, amount: Decimal) -> bool:
        """
        Debit ``amount`` if and only if the balance covers it.

        The guard lives in the UPDATE's WHERE clause so concurrent
        deductions cannot drive the balance negative. Returns False when
        nothing was debited.
        """
        result = await self.session.execute(
            update(CreatorBalance)
            .where(
                CreatorBalance.creator_id == creator_id,
                CreatorBalance.currency == currency,
                CreatorBalance.available_amount >= amount,
            )
            .values(available_amount=CreatorBalance.available_amount - amount)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
