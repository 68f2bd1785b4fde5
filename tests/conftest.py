#!/usr/bin/env python3
"""
Pytest configuration for bid history tests
"""

import threading

import pytest
from web3.datastructures import AttributeDict

from bid_history.ledger import LedgerClient

AUCTION_ADDRESS = "0xc7d41396b44D7Eb650fb164DCf4bCd4d9Ef93990"
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20


class FakeLedger(LedgerClient):
    """In-memory ledger returning canned logs and blocks"""

    def __init__(self, logs=None, blocks=None, query_error=None, failing_blocks=()):
        self.logs = list(logs or [])
        self.blocks = dict(blocks or {})
        self.query_error = query_error
        self.failing_blocks = set(failing_blocks)
        self.query_calls = []
        self.block_calls = []
        self._lock = threading.Lock()

    def query_logs(self, address, event_name, from_block, to_block):
        self.query_calls.append((address, event_name, from_block, to_block))
        if self.query_error is not None:
            raise self.query_error
        # Range deliberately ignored: callers must filter themselves
        return [
            log for log in self.logs
            if log['address'].lower() == address.lower() and log['event'] == event_name
        ]

    def get_block(self, block_number):
        with self._lock:
            self.block_calls.append(block_number)
        if block_number in self.failing_blocks:
            raise ConnectionError(f"pruned block {block_number}")
        return AttributeDict({'number': block_number, 'timestamp': self.blocks[block_number]})

    def event_argument_names(self, event_name):
        return ['tokenId', 'sender', 'value']


def build_log(block_number, token_id=1, bidder=ALICE, amount=10 ** 18, log_index=0,
              address=AUCTION_ADDRESS, event='AuctionBid'):
    """Build a decoded log shaped like web3's get_logs output"""
    return AttributeDict({
        'args': AttributeDict({'tokenId': token_id, 'sender': bidder, 'value': amount}),
        'event': event,
        'address': address,
        'blockNumber': block_number,
        'logIndex': log_index,
        'transactionHash': bytes([block_number % 256]) * 32,
    })


@pytest.fixture
def make_ledger():
    return FakeLedger


@pytest.fixture
def make_log():
    return build_log


@pytest.fixture
def auction_address():
    return AUCTION_ADDRESS


@pytest.fixture
def bidders():
    return ALICE, BOB


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep local TRACE_BACK_* settings out of tests"""
    for var in ('TRACE_BACK_CONFIG', 'TRACE_BACK_NETWORK', 'TRACE_BACK_RPC_URL', 'TRACE_BACK_LOG_LEVEL'):
        monkeypatch.delenv(var, raising=False)
