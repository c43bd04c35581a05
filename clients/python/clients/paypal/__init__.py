from .client import PayPalClient, PayPalConfig, PayoutBatch
from .exceptions import PayPalAPIError, PayPalClientError, PayPalNotConfiguredError

__all__ = [
    "PayPalClient",
    "PayPalConfig",
    "PayoutBatch",
    "PayPalClientError",
    "PayPalNotConfiguredError",
    "PayPalAPIError",
]
