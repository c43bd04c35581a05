"""Domain errors raised by the operations layer.

Each carries the HTTP status the API maps it to.
"""


class MarketplaceError(Exception):
    """Base exception for marketplace operations."""

    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidRequest(MarketplaceError):
    """Malformed or out-of-range input."""
    status_code = 400


class NotFound(MarketplaceError):
    status_code = 404


class Forbidden(MarketplaceError):
    status_code = 403


class InvalidState(MarketplaceError):
    """The entity is not in a state that allows the operation."""
    status_code = 409


class AuctionNotActive(InvalidState):
    status_code = 400


class AuctionEnded(InvalidState):
    status_code = 400


class BidTooLow(InvalidRequest):
    def __init__(self, minimum_cents: int):
        self.minimum_cents = minimum_cents
        super().__init__(f"Bid must be at least ${minimum_cents / 100:.2f}")


class AlreadyWinning(InvalidState):
    def __init__(self):
        super().__init__("You are already the highest bidder")


class ExternalFailure(MarketplaceError):
    """A payment provider call failed after local state was compensated."""
    status_code = 502
