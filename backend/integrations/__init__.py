"""Provider-facing boundary of the reconciliation engine.

This package contains:
- Provider protocol: normalized record types handed over by provider adapters
- Exceptions: typed errors raised when a provider's records cannot be applied
"""

from integrations.provider_protocol import (
    AccountSyncBatch,
    ProviderHolding,
    ProviderTrade,
    ProviderTransaction,
)

__all__ = [
    "AccountSyncBatch",
    "ProviderHolding",
    "ProviderTrade",
    "ProviderTransaction",
]
