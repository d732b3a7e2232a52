from creator_payouts.models.enums import ErrorCode, PayoutMethod, PayoutStatus, ResolutionSource
from creator_payouts.models.payout import (
    AuditLog,
    Base,
    CreatorBalance,
    CreatorBankAccount,
    CreatorProfile,
    Payout,
)

__all__ = [
    "Base",
    "Payout",
    "AuditLog",
    "CreatorProfile",
    "CreatorBankAccount",
    "CreatorBalance",
    "PayoutStatus",
    "PayoutMethod",
    "ErrorCode",
    "ResolutionSource",
]
