class PayPalClientError(Exception):
    """Base exception for PayPalClient."""
    pass


class PayPalNotConfiguredError(PayPalClientError):
    """Raised when PayPal API credentials are missing."""
    pass


class PayPalAPIError(PayPalClientError):
    """Raised when the PayPal REST API rejects a call."""
    pass
