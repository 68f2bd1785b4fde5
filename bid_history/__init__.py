"""
PodAuctionHouse bid history reconstruction from on-chain AuctionBid events.
"""

from .errors import (
    BidHistoryError,
    BlockResolutionError,
    ConfigError,
    DecodeError,
    LedgerQueryError,
)
from .ledger import LedgerClient, Web3LedgerClient
from .models import BidEvent
from .reconstructor import decode_bid_event, fetch_bid_history

__all__ = [
    "BidEvent",
    "BidHistoryError",
    "BlockResolutionError",
    "ConfigError",
    "DecodeError",
    "LedgerClient",
    "LedgerQueryError",
    "Web3LedgerClient",
    "decode_bid_event",
    "fetch_bid_history",
]
