#!/usr/bin/env python3
"""
trace-back: print the AuctionBid history of a PodAuctionHouse deployment.

Usage:
    trace-back                               # bid timestamps on the default network
    trace-back -n ftmtestnet --start-block 0 --format table
    trace-back --address 0x... --end-block 26000000 --format json
"""

import argparse
import json
import logging
import sys
from typing import Dict, List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from web3 import Web3

from .config import Settings, get_network_config, get_trace_config, load_abi, load_config
from .errors import BidHistoryError
from .ledger import Web3LedgerClient
from .models import BidEvent
from .reconstructor import DEFAULT_EVENT, DEFAULT_MAX_WORKERS, fetch_bid_history

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _block_arg(value: str):
    return value if value == 'latest' else int(value)


def _log_level(name: str) -> int:
    return getattr(logging, str(name).upper(), logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Reconstruct PodAuctionHouse bid history from AuctionBid logs')
    parser.add_argument('--config', '-c', help='Path to config file (default: bundled config.yaml)', default=None)
    parser.add_argument('--network', '-n', help='Network name from config (default: trace_back.network)', default=None)
    parser.add_argument('--address', help='Auction contract address', default=None)
    parser.add_argument('--event', help=f'Bid event name (default: {DEFAULT_EVENT})', default=None)
    parser.add_argument('--start-block', dest='start_block', type=int, default=None,
                        help='First block to include (inclusive)')
    parser.add_argument('--end-block', dest='end_block', type=_block_arg, default='latest',
                        help="Last block to query, or 'latest'")
    parser.add_argument('--page-size', dest='page_size', type=int, default=None,
                        help='Blocks per eth_getLogs request')
    parser.add_argument('--workers', type=int, default=None,
                        help='Concurrent block lookups')
    parser.add_argument('--deadline', type=float, default=None,
                        help='Seconds allowed for resolving block timestamps')
    parser.add_argument('--format', '-f', dest='output_format', default='timestamps',
                        choices=['timestamps', 'table', 'json'], help='Output format')
    parser.add_argument('--log-level', dest='log_level', default=None, help='Logging level')
    return parser


def build_client(network_config: Dict, abi: List[Dict], page_size: Optional[int]) -> Web3LedgerClient:
    client = Web3LedgerClient.from_network(network_config, abi, page_size=page_size)
    client.connect()
    return client


def create_bid_table(events: List[BidEvent], address: str) -> Table:
    """Create a table of bids in ledger order"""
    table = Table(title=f"🔨 Bids on {address[:6]}..{address[-4:]}", title_style="bold cyan")

    table.add_column("Block", style="dim", justify="right")
    table.add_column("Time (UTC)", style="magenta")
    table.add_column("Token", style="cyan", justify="right")
    table.add_column("Bidder", style="yellow")
    table.add_column("Amount", style="green", justify="right")

    for event in events:
        table.add_row(
            str(event.block_number),
            event.bid_time.strftime('%Y-%m-%d %H:%M:%S'),
            str(event.token_id),
            f"{event.bidder[:6]}..{event.bidder[-4:]}",
            f"{Web3.from_wei(event.amount, 'ether'):f}",
        )
    return table


def render(events: List[BidEvent], output_format: str, address: str, console: Console) -> None:
    if output_format == 'json':
        print(json.dumps([event.model_dump(by_alias=True) for event in events], indent=2))
    elif output_format == 'table':
        console.print(create_bid_table(events, address))
    else:
        print([event.timestamp for event in events])


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    load_dotenv()
    args = build_parser().parse_args(argv)
    settings = Settings()

    level_override = args.log_level or settings.log_level
    logging.basicConfig(format=LOG_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(_log_level(level_override or 'INFO'))

    try:
        config = load_config(args.config or settings.config)
        trace = get_trace_config(config)
        # Config level applies only when neither flag nor environment set one
        if not level_override and trace.get('log_level'):
            root_logger.setLevel(_log_level(trace['log_level']))

        network_config = get_network_config(config, args.network or settings.network, settings.rpc_url)
        abi = load_abi(config)
        address = args.address or trace.get('contract_address')
        if not address:
            logger.error("No contract address given")
            return 1

        client = build_client(network_config, abi, args.page_size or trace.get('page_size'))
        events = fetch_bid_history(
            client,
            address,
            event_name=args.event or trace.get('event', DEFAULT_EVENT),
            start_block=args.start_block if args.start_block is not None else trace.get('start_block', 0),
            end_block=args.end_block,
            max_workers=args.workers or trace.get('max_workers', DEFAULT_MAX_WORKERS),
            deadline=args.deadline,
        )
    except (BidHistoryError, ValueError) as e:
        logger.error(f"❌ {type(e).__name__}: {e}")
        return 1

    render(events, args.output_format, address, Console())
    return 0


if __name__ == "__main__":
    sys.exit(main())
