#!/usr/bin/env python3
"""
Ledger access for bid history reconstruction.

`LedgerClient` is the read interface the reconstructor depends on: filtered
log queries by contract address and event name, and block lookups by number.
`Web3LedgerClient` implements it on top of a JSON-RPC node through web3.py.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from .errors import BlockResolutionError, LedgerQueryError

logger = logging.getLogger(__name__)

BlockIdentifier = Union[int, str]

# Provider errors that usually go away when the block range is narrowed
SPLIT_ERROR_MARKERS = (
    'too many results',
    'response size',
    'query returned more than',
    'limit',
    'timeout',
    'timed out',
    'gateway',
    'internal error',
    'server error',
)


class LedgerClient(ABC):
    """Read-only view of a ledger used to reconstruct event history"""

    @abstractmethod
    def query_logs(self, address: str, event_name: str,
                   from_block: int, to_block: BlockIdentifier) -> List[Any]:
        """Return decoded logs of `event_name` emitted by `address`, in ledger order.

        Each log exposes `args` (event arguments) and `blockNumber`.
        """

    @abstractmethod
    def get_block(self, block_number: int) -> Mapping[str, Any]:
        """Return block metadata; must include `timestamp`."""

    def event_argument_names(self, event_name: str) -> Optional[Sequence[str]]:
        """Argument names of `event_name` in declaration order, if known"""
        return None


class Web3LedgerClient(LedgerClient):
    """LedgerClient backed by a web3.py HTTP connection"""

    MAX_BLOCK_CACHE = 1000

    def __init__(self, rpc_url: Optional[str], abi: List[Dict], chain_id: Optional[int] = None,
                 timeout: float = 30, poa: bool = False, page_size: Optional[int] = None,
                 min_span: int = 500, w3: Optional[Web3] = None):
        if page_size is not None and page_size < 1:
            raise ValueError(f"page_size must be at least 1, got {page_size}")
        self.rpc_url = rpc_url
        self.abi = abi
        self.chain_id = chain_id
        self.page_size = page_size
        self.min_span = min_span
        self.w3 = w3 or self._build_web3(rpc_url, timeout, poa)

        self.block_cache: Dict[int, Mapping[str, Any]] = {}
        self._cache_lock = threading.Lock()

    @classmethod
    def from_network(cls, network_config: Dict, abi: List[Dict],
                     page_size: Optional[int] = None) -> "Web3LedgerClient":
        """Build a client from a `networks.<name>` config entry"""
        return cls(
            network_config['rpc_url'],
            abi,
            chain_id=network_config.get('chain_id'),
            timeout=network_config.get('timeout', 30),
            poa=network_config.get('poa', False),
            page_size=page_size,
        )

    @staticmethod
    def _build_web3(rpc_url: str, timeout: float, poa: bool) -> Web3:
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': timeout}))
        if poa:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return w3

    def connect(self) -> int:
        """Check the node is reachable and on the expected chain; return the head block"""
        try:
            if not self.w3.is_connected():
                raise LedgerQueryError(f"Failed to connect to {self.rpc_url}")
            chain_id = self.w3.eth.chain_id
            latest_block = self.w3.eth.block_number
        except LedgerQueryError:
            raise
        except Exception as e:
            raise LedgerQueryError(f"Failed to connect to {self.rpc_url}: {e}") from e

        if self.chain_id is not None and chain_id != self.chain_id:
            raise LedgerQueryError(
                f"Node at {self.rpc_url} reports chain_id {chain_id}, expected {self.chain_id}"
            )
        logger.info(f"[{latest_block}] Connected to {self.rpc_url} (chain_id: {chain_id})")
        return latest_block

    def _event_abi(self, event_name: str) -> Dict:
        for entry in self.abi:
            if entry.get('type') == 'event' and entry.get('name') == event_name:
                return entry
        raise LedgerQueryError(f"Event {event_name} is not declared in the contract ABI")

    def event_argument_names(self, event_name: str) -> Optional[Sequence[str]]:
        return [arg['name'] for arg in self._event_abi(event_name).get('inputs', [])]

    def _resolve_block_identifier(self, block: BlockIdentifier) -> int:
        if block == 'latest':
            try:
                return self.w3.eth.block_number
            except Exception as e:
                raise LedgerQueryError(f"Failed to fetch latest block number: {e}") from e
        try:
            return int(block)
        except (TypeError, ValueError) as e:
            raise LedgerQueryError(f"Unsupported block identifier {block!r}") from e

    def query_logs(self, address: str, event_name: str,
                   from_block: int, to_block: BlockIdentifier = 'latest') -> List[Any]:
        self._event_abi(event_name)
        try:
            contract = self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=self.abi)
        except ValueError as e:
            raise LedgerQueryError(f"Invalid contract address {address}: {e}") from e
        event_cls = getattr(contract.events, event_name)

        to_block = self._resolve_block_identifier(to_block)
        if from_block > to_block:
            logger.debug(f"Empty range {from_block}-{to_block} for {event_name}")
            return []

        page_size = self.page_size or (to_block - from_block + 1)
        logs = []
        for page_start in range(from_block, to_block + 1, page_size):
            page_end = min(page_start + page_size - 1, to_block)
            page = self._get_event_logs_with_split(event_cls, page_start, page_end)
            logger.debug(f"[{page_end}] {len(page)} {event_name} logs in blocks {page_start}-{page_end}")
            logs.extend(page)

        logger.info(f"Fetched {len(logs)} {event_name} logs from {address} in blocks {from_block}-{to_block}")
        return logs

    def _get_event_logs_with_split(self, event_cls, from_block: int, to_block: int) -> List[Any]:
        """Fetch logs with eth_getLogs, halving the range on provider size/limit errors.

        Left half is always fetched before the right half so results stay in block order.
        """
        try:
            return list(event_cls.get_logs(from_block=from_block, to_block=to_block))
        except LedgerQueryError:
            raise
        except Exception as e:
            span = to_block - from_block
            msg = str(e).lower()
            should_split = span > self.min_span and any(x in msg for x in SPLIT_ERROR_MARKERS)
            if not should_split:
                raise LedgerQueryError(
                    f"eth_getLogs failed for blocks {from_block}-{to_block}: {e}"
                ) from e

            mid = from_block + span // 2
            logger.warning(f"Splitting log query {from_block}-{to_block} at {mid}: {e}")
            left = self._get_event_logs_with_split(event_cls, from_block, mid)
            right = self._get_event_logs_with_split(event_cls, mid + 1, to_block)
            return left + right

    def get_block(self, block_number: int) -> Mapping[str, Any]:
        """Get block data with caching; blocks are immutable once final"""
        with self._cache_lock:
            if block_number in self.block_cache:
                return self.block_cache[block_number]

        try:
            block = self.w3.eth.get_block(block_number)
        except Exception as e:
            raise BlockResolutionError(
                block_number, f"Failed to fetch block {block_number}: {e}"
            ) from e

        with self._cache_lock:
            if len(self.block_cache) >= self.MAX_BLOCK_CACHE:
                oldest_block = min(self.block_cache.keys())
                del self.block_cache[oldest_block]
                logger.debug(f"Evicted block {oldest_block} from cache")
            self.block_cache[block_number] = block
        logger.debug(f"Cached block {block_number}")
        return block
