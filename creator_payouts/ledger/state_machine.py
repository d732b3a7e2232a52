"""Legal payout status transitions."""

from creator_payouts.models.enums import PayoutStatus


class InvalidTransition(Exception):
    def __init__(self, current: str, target: str):
        super().__init__(f"Illegal payout transition: {current} -> {target}")
        self.current = current
        self.target = target


ALLOWED: dict[PayoutStatus, frozenset[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset({
        PayoutStatus.PROCESSING,
        PayoutStatus.FAILED,
        PayoutStatus.CANCELLED,
    }),
    PayoutStatus.PROCESSING: frozenset({
        PayoutStatus.COMPLETED,
        PayoutStatus.FAILED,
        PayoutStatus.CANCELLED,
        PayoutStatus.REFUNDED,
    }),
    # Charge-backs after a failure are the only way out of FAILED
    PayoutStatus.FAILED: frozenset({PayoutStatus.REFUNDED}),
    PayoutStatus.COMPLETED: frozenset(),
    PayoutStatus.CANCELLED: frozenset(),
    PayoutStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, nxt in ALLOWED.items() if not nxt) | {
    PayoutStatus.FAILED,
}

# Provider outcomes that can only be reached from PROCESSING
SETTLED_VIA_PROCESSING = frozenset({PayoutStatus.COMPLETED, PayoutStatus.REFUNDED})


def is_legal(current: str, target: str) -> bool:
    return PayoutStatus(target) in ALLOWED.get(PayoutStatus(current), frozenset())


def assert_transition(current: str, target: str) -> None:
    if not is_legal(current, target):
        raise InvalidTransition(current, target)
