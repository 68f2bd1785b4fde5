#!/usr/bin/env python3
"""
Pydantic models for PodAuctionHouse bid history.
"""

from datetime import datetime, timezone
from typing import NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from web3 import Web3


class BidEvent(BaseModel):
    """A single AuctionBid log joined with its block timestamp"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    token_id: int = Field(..., alias="tokenId", ge=0, description="Token being auctioned")
    bidder: str = Field(..., description="Address that placed the bid")
    amount: int = Field(..., ge=0, description="Bid value in wei")
    block_number: int = Field(..., alias="blockNumber", ge=0, description="Block containing the bid")
    timestamp: int = Field(..., ge=0, description="Unix timestamp of the containing block")
    transaction_hash: Optional[str] = Field(None, alias="transactionHash", description="Transaction hash")
    log_index: Optional[int] = Field(None, alias="logIndex", description="Position of the log in its block")

    @field_validator('bidder')
    @classmethod
    def validate_bidder(cls, v):
        if not Web3.is_address(v):
            raise ValueError(f'Invalid Ethereum address: {v!r}')
        return Web3.to_checksum_address(v)

    @property
    def bid_time(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)


class BidLog(NamedTuple):
    """Decoded AuctionBid log before its block timestamp is known"""
    token_id: int
    bidder: str
    amount: int
    block_number: int
    transaction_hash: Optional[str] = None
    log_index: Optional[int] = None

    def with_timestamp(self, timestamp: int) -> BidEvent:
        return BidEvent(
            token_id=self.token_id,
            bidder=self.bidder,
            amount=self.amount,
            block_number=self.block_number,
            timestamp=timestamp,
            transaction_hash=self.transaction_hash,
            log_index=self.log_index,
        )
