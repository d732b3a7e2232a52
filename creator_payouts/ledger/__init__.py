from creator_payouts.ledger.repository import (
    PayoutLedger,
    PayoutNotFound,
    TransitionEvent,
    TransitionOutcome,
)
from creator_payouts.ledger.state_machine import InvalidTransition, assert_transition

__all__ = [
    "PayoutLedger",
    "PayoutNotFound",
    "TransitionEvent",
    "TransitionOutcome",
    "InvalidTransition",
    "assert_transition",
]
