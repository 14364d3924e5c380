"""TradeMe marketplace API access."""

from .client import MarketplaceClient, MarketplaceRequestError, WatchlistPage
from .signer import sign

__all__ = [
    "MarketplaceClient",
    "MarketplaceRequestError",
    "WatchlistPage",
    "sign",
]
