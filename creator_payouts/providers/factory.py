"""Provider selection from settings."""

from functools import lru_cache

from creator_payouts.config import settings
from creator_payouts.providers.base import TransferProvider
from creator_payouts.providers.mock_provider import MockTransferProvider
from creator_payouts.providers.wise import WiseProvider


@lru_cache
def get_provider() -> TransferProvider:
    """Process-wide provider: the in-memory mock unless ``mock_provider`` is off."""
    if settings.mock_provider:
        return MockTransferProvider()
    return WiseProvider()
