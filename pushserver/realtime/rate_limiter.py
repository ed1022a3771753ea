"""
Per-address admission limit for new streams.

The limit is a point-in-time count over the live connection table, so it
corrects itself as connections close without any separate bookkeeping.
"""

from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger
from .connection_manager import ConnectionManager

logger = get_logger(__name__)


class RateLimiter:
    """
    Connection-count limiter keyed by client address.

    The limit is scoped to the address only: it is not split per handler and
    there is no global cap.
    """

    def __init__(self, connection_manager: ConnectionManager, max_connections_per_ip: int = 10) -> None:
        """
        Initialize the rate limiter.

        Args:
            connection_manager: Live connection table to count against
            max_connections_per_ip: Concurrent streams allowed per address (default: 10)
        """
        self.connection_manager = connection_manager
        self.max_connections_per_ip = max_connections_per_ip

    def check_rate_limit(self, client_address: str) -> bool:
        """
        Check if a client may open another stream.

        Args:
            client_address: The requesting address

        Returns:
            bool: True if rate limit not exceeded, False if exceeded
        """
        current = self.connection_manager.count_for_address(client_address)
        if current >= self.max_connections_per_ip:
            logger.warning(
                "Connection limit reached for address",
                client_address=client_address,
                current=current,
                limit=self.max_connections_per_ip,
            )
            return False
        return True

    def get_rate_limit_info(self, client_address: str) -> dict[str, Any]:
        """
        Get rate limit information for an address.

        Returns:
            dict: Current count, limit and remaining slots
        """
        current = self.connection_manager.count_for_address(client_address)
        return {
            "current": current,
            "limit": self.max_connections_per_ip,
            "remaining": max(0, self.max_connections_per_ip - current),
        }
