"""External API integrations.

This package contains:
- Provider protocol: Normalized types and the interface the sync services use
- Exceptions: Transient/permanent provider error hierarchy
- Plaid client: Integration with the Plaid API
"""

from integrations.exceptions import (
    MalformedResponseError,
    PermanentProviderError,
    ProviderError,
    TransientProviderError,
)
from integrations.provider_protocol import (
    AggregationClient,
    ProviderAccount,
    ProviderTransaction,
    TransactionSyncPage,
)

__all__ = [
    "AggregationClient",
    "MalformedResponseError",
    "PermanentProviderError",
    "ProviderAccount",
    "ProviderError",
    "ProviderTransaction",
    "TransactionSyncPage",
    "TransientProviderError",
]
