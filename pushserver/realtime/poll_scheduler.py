"""
Poll scheduler.

Once per tick, visits every non-empty subscription key, asks the key's
handler whether anything changed since the key's watermark, and broadcasts
the change to the key's subscribers.
"""

import asyncio
from typing import Any

from ..exceptions import ErrorContext, wrap_handler_exception
from ..handlers.base import ChangeEvent
from ..handlers.registry import HandlerRegistry
from ..structured_logging.enhanced_logging_config import get_logger
from .connection_manager import ConnectionManager
from .connection_models import split_subscription_key
from .envelope import EVENT_UPDATE, update_payload

logger = get_logger(__name__)


class PollScheduler:
    """
    Timer-driven change detection across all subscribed channels.

    Cost per tick scales with the number of distinct channels, not the number
    of connections. Watermarks are kept for the life of the worker, so a key
    that empties and later fills again resumes from its last watermark.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        connection_manager: ConnectionManager,
        check_interval: float = 2.0,
    ) -> None:
        self.registry = registry
        self.connection_manager = connection_manager
        self.check_interval = check_interval
        # subscription key -> last broadcast watermark
        self.watermarks: dict[str, int] = {}

    def poll_key(self, key: str) -> int:
        """
        Poll one subscription key.

        Any exception raised while polling, including a malformed result from
        the handler, counts as no change for this key on this tick.

        Returns:
            Number of connections the update was queued for (0 if nothing changed)
        """
        handler_name, route = split_subscription_key(key)
        try:
            return self._poll_key(key, handler_name, route)
        except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: a failing handler counts as no change for this tick
            wrap_handler_exception(e, ErrorContext(handler=handler_name, route=route, operation="detect_change"))
            return 0

    def _poll_key(self, key: str, handler_name: str, route: str) -> int:
        handler = self.registry.get(handler_name)
        if handler is None:
            logger.debug("Skipping orphaned subscription key", subscription_key=key, handler=handler_name)
            return 0

        since = self.watermarks.get(key, 0)
        change = handler.detect_change(route, since)
        if change is None:
            return 0

        if not isinstance(change, ChangeEvent):
            raise TypeError(f"detect_change returned {type(change).__name__}, expected ChangeEvent or None")
        if not isinstance(change.watermark, int) or isinstance(change.watermark, bool):
            raise TypeError(f"ChangeEvent watermark must be int, got {type(change.watermark).__name__}")
        if not isinstance(change.payload, dict):
            raise TypeError(f"ChangeEvent payload must be dict, got {type(change.payload).__name__}")

        if change.watermark < since:
            logger.warning(
                "Handler reported a watermark lower than the current one",
                subscription_key=key,
                current=since,
                reported=change.watermark,
            )
        data = update_payload(change.payload, handler_name, route)
        self.watermarks[key] = max(since, change.watermark)

        delivered = self.connection_manager.broadcast(key, EVENT_UPDATE, data)
        logger.debug(
            "Change broadcast",
            subscription_key=key,
            watermark=self.watermarks[key],
            delivered=delivered,
        )
        return delivered

    def tick(self) -> dict[str, Any]:
        """
        Run one polling pass over a snapshot of the current keys.

        Returns:
            dict: keys polled and total deliveries, for logging and tests
        """
        keys = self.connection_manager.index.keys()
        delivered = 0
        for key in keys:
            delivered += self.poll_key(key)
        return {"keys": len(keys), "delivered": delivered}

    async def run(self) -> None:
        """
        Poll forever at the configured interval.

        A failing tick is logged and the loop carries on. Cancel the task to
        stop it.
        """
        logger.info("Starting poll scheduler", interval_seconds=self.check_interval)

        try:
            while True:
                await asyncio.sleep(self.check_interval)
                try:
                    self.tick()
                except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: one bad tick must not stop polling
                    logger.error("Error in poll scheduler tick", error=str(e), exc_info=True)
        except asyncio.CancelledError:
            logger.info("Poll scheduler cancelled")
            raise
