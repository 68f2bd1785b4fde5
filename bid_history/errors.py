"""
Errors raised while reconstructing bid history.
"""

from typing import Any, Optional


class BidHistoryError(Exception):
    """Base class for bid history failures"""


class ConfigError(BidHistoryError):
    """Missing or invalid configuration"""


class LedgerQueryError(BidHistoryError):
    """Log query failed (node unreachable, timeout, provider error)"""


class BlockResolutionError(BidHistoryError):
    """Timestamp lookup failed for a specific block"""

    def __init__(self, block_number: Optional[int], message: str):
        super().__init__(message)
        self.block_number = block_number


class DecodeError(BidHistoryError):
    """Raw log could not be turned into a BidEvent"""

    def __init__(self, message: str, raw_log: Any = None):
        super().__init__(message)
        self.raw_log = raw_log
