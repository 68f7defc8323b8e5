class MarketplaceError(Exception):
    """Base error. The message is meant to be shown to the user as-is."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(MarketplaceError):
    pass


class PermissionDenied(MarketplaceError):
    pass


class SelfBid(PermissionDenied):
    def __init__(self, message: str = "You cannot bid on your own listing") -> None:
        super().__init__(message)


class SelfModerationDenied(PermissionDenied):
    def __init__(self, message: str = "You cannot moderate your own listing") -> None:
        super().__init__(message)


class InvalidAmount(MarketplaceError):
    pass


class BidTooLow(MarketplaceError):
    def __init__(self, amount: float, highest: float) -> None:
        super().__init__(f"Bid of {amount:g} must be higher than the current highest bid of {highest:g}")
        self.amount = amount
        self.highest = highest


class InvalidTransition(MarketplaceError):
    pass


class UpstreamUnavailable(MarketplaceError):
    pass


class AcceptBidIncomplete(UpstreamUnavailable):
    def __init__(self, listing_id: str, bid_id: str, attempts: int) -> None:
        super().__init__(
            f"Accepting bid {bid_id} on listing {listing_id} failed after {attempts} attempts; "
            "no changes were applied, retry later"
        )
        self.listing_id = listing_id
        self.bid_id = bid_id
        self.attempts = attempts


class InvalidDocument(MarketplaceError, ValueError):
    pass
