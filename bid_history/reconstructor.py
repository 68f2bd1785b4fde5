#!/usr/bin/env python3
"""
Reconstruct PodAuctionHouse bid history from AuctionBid logs.

Logs are queried from `start_block` onwards, decoded into named fields,
filtered by block height and joined with their block timestamps. Block
lookups fan out over a bounded thread pool, one call per distinct block.
Output keeps ledger order (block number, then log position).

Any block lookup or decode failure aborts the whole call; no partial
history is returned.
"""

import logging
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from web3 import Web3

from .errors import BidHistoryError, BlockResolutionError, DecodeError, LedgerQueryError
from .ledger import LedgerClient
from .models import BidEvent, BidLog

logger = logging.getLogger(__name__)

DEFAULT_EVENT = "AuctionBid"
DEFAULT_MAX_WORKERS = 8

# Positional layout of the bid event arguments
BID_FIELDS = ('token_id', 'bidder', 'amount')

_MISSING = object()


def _field(raw: Any, key: str, default: Any = _MISSING) -> Any:
    """Read `key` from a web3 AttributeDict, plain dict or attribute object"""
    if isinstance(raw, Mapping):
        if key in raw:
            return raw[key]
    elif hasattr(raw, key):
        return getattr(raw, key)
    if default is _MISSING:
        raise KeyError(key)
    return default


def _is_uint(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _normalize_transaction_hash(tx_hash) -> Optional[str]:
    """Normalize transaction hash to hex string with 0x prefix"""
    if tx_hash is None:
        return None
    if isinstance(tx_hash, (bytes, bytearray)):
        return '0x' + bytes(tx_hash).hex()
    tx_str = str(tx_hash)
    return tx_str if tx_str.startswith('0x') else f'0x{tx_str}'


def decode_bid_event(raw_log: Any, arg_names: Optional[Sequence[str]] = None) -> BidLog:
    """Map a raw AuctionBid log onto named fields.

    Arguments 0, 1 and 2 are token id, bidder and amount. When `arg_names`
    (the event inputs in declaration order) is given, arguments are picked
    by name so the mapping does not depend on how the decoder ordered them.
    """
    args = _field(raw_log, 'args', None)
    if args is None:
        raise DecodeError("Log has no decoded arguments", raw_log)

    try:
        if arg_names:
            values = [args[name] for name in arg_names]
        elif isinstance(args, Mapping):
            values = list(args.values())
        else:
            values = list(args)
    except (KeyError, TypeError) as e:
        raise DecodeError(f"Log arguments do not match the event: {e}", raw_log) from e

    if len(values) < len(BID_FIELDS):
        raise DecodeError(
            f"Expected at least {len(BID_FIELDS)} event arguments, got {len(values)}", raw_log
        )
    fields = dict(zip(BID_FIELDS, values))

    block_number = _field(raw_log, 'blockNumber', None)
    if not _is_uint(block_number):
        raise DecodeError(f"Invalid block number {block_number!r}", raw_log)
    if not _is_uint(fields['token_id']):
        raise DecodeError(f"Invalid token id {fields['token_id']!r}", raw_log)
    if not _is_uint(fields['amount']):
        raise DecodeError(f"Invalid bid amount {fields['amount']!r}", raw_log)
    bidder = fields['bidder']
    if not isinstance(bidder, str) or not Web3.is_address(bidder):
        raise DecodeError(f"Invalid bidder address {bidder!r}", raw_log)

    log_index = _field(raw_log, 'logIndex', None)
    return BidLog(
        token_id=fields['token_id'],
        bidder=Web3.to_checksum_address(bidder),
        amount=fields['amount'],
        block_number=block_number,
        transaction_hash=_normalize_transaction_hash(_field(raw_log, 'transactionHash', None)),
        log_index=log_index if _is_uint(log_index) else None,
    )


def _block_timestamp(ledger: LedgerClient, block_number: int) -> int:
    try:
        block = ledger.get_block(block_number)
    except BlockResolutionError:
        raise
    except Exception as e:
        raise BlockResolutionError(block_number, f"Failed to fetch block {block_number}: {e}") from e

    if block is None:
        raise BlockResolutionError(block_number, f"Block {block_number} not found")
    number = _field(block, 'number', None)
    if number is not None and number != block_number:
        raise BlockResolutionError(
            block_number, f"Ledger returned block {number} when asked for {block_number}"
        )
    timestamp = _field(block, 'timestamp', None)
    if not _is_uint(timestamp):
        raise BlockResolutionError(block_number, f"Block {block_number} has no usable timestamp")
    return timestamp


def resolve_block_timestamps(ledger: LedgerClient, block_numbers: Sequence[int],
                             max_workers: int = DEFAULT_MAX_WORKERS,
                             deadline: Optional[float] = None) -> Dict[int, int]:
    """Fetch timestamps for distinct block numbers concurrently.

    Fails with the lowest failing block's error, or with a BlockResolutionError
    when `deadline` seconds pass before every lookup finished.
    """
    if max_workers < 1:
        raise ValueError("max_workers must be at least 1")
    block_numbers = sorted(set(block_numbers))
    if not block_numbers:
        return {}

    executor = ThreadPoolExecutor(
        max_workers=min(max_workers, len(block_numbers)),
        thread_name_prefix="block-lookup",
    )
    started = time.monotonic()
    try:
        futures = {executor.submit(_block_timestamp, ledger, n): n for n in block_numbers}
        done, not_done = wait(futures, timeout=deadline, return_when=FIRST_EXCEPTION)

        failed = sorted((f for f in done if f.exception() is not None), key=futures.get)
        if failed:
            # Lower blocks still in flight may fail too; let them settle first
            earlier = [f for f in not_done if futures[f] < futures[failed[0]]]
            if earlier:
                remaining = None if deadline is None else max(0.0, deadline - (time.monotonic() - started))
                wait(earlier, timeout=remaining)
            for future in sorted(earlier, key=futures.get):
                if future.done() and not future.cancelled() and future.exception() is not None:
                    raise future.exception()
            raise failed[0].exception()
        if not_done:
            pending = min(futures[f] for f in not_done)
            raise BlockResolutionError(
                pending,
                f"Deadline of {deadline}s expired with {len(not_done)} block lookups outstanding",
            )
        return {futures[f]: f.result() for f in done}
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def fetch_bid_history(ledger: LedgerClient, address: str, event_name: str = DEFAULT_EVENT,
                      start_block: int = 0, end_block: Union[int, str] = 'latest',
                      max_workers: int = DEFAULT_MAX_WORKERS,
                      deadline: Optional[float] = None) -> List[BidEvent]:
    """Return every `event_name` bid emitted by `address` from `start_block` on.

    `start_block` is inclusive and also bounds the log query. `end_block`
    defaults to the chain head. Raises LedgerQueryError, DecodeError or
    BlockResolutionError; none of them are retried here.
    """
    if start_block < 0:
        raise ValueError("start_block must be non-negative")

    logger.info(f"🔍 Fetching {event_name} history for {address} from block {start_block} to {end_block}")
    try:
        raw_logs = ledger.query_logs(address, event_name, start_block, end_block)
        arg_names = ledger.event_argument_names(event_name)
    except BidHistoryError:
        raise
    except Exception as e:
        raise LedgerQueryError(f"Log query for {event_name} at {address} failed: {e}") from e

    decoded = [decode_bid_event(raw_log, arg_names) for raw_log in raw_logs]
    retained = [bid for bid in decoded if bid.block_number >= start_block]
    if len(retained) < len(decoded):
        logger.debug(f"Dropped {len(decoded) - len(retained)} logs below block {start_block}")

    timestamps = resolve_block_timestamps(
        ledger, [bid.block_number for bid in retained], max_workers, deadline
    )
    events = [bid.with_timestamp(timestamps[bid.block_number]) for bid in retained]

    logger.info(f"✅ Reconstructed {len(events)} bids across {len(timestamps)} blocks")
    return events
