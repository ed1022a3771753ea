"""
Heartbeat scheduler.

Pings every open stream at a fixed interval and evicts streams whose
liveness has not been refreshed within the connection timeout. This is the
only way peers that vanished without closing their socket get reclaimed.
"""

import asyncio
import time
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger
from .connection_manager import ConnectionManager
from .envelope import EVENT_HEARTBEAT, heartbeat_payload

logger = get_logger(__name__)


class HeartbeatScheduler:
    """Periodic liveness pings plus timeout eviction."""

    def __init__(
        self,
        connection_manager: ConnectionManager,
        heartbeat_interval: float = 30.0,
        connection_timeout: float = 300.0,
    ) -> None:
        """
        Initialize the heartbeat scheduler.

        Args:
            connection_manager: Connection table to ping and evict from
            heartbeat_interval: Seconds between ticks
            connection_timeout: Seconds without liveness before a connection is closed
        """
        self.connection_manager = connection_manager
        self.heartbeat_interval = heartbeat_interval
        self.connection_timeout = connection_timeout

    def tick(self, now: float | None = None) -> dict[str, Any]:
        """
        Run one heartbeat pass.

        Liveness is refreshed only when the ping was queued, so a peer whose
        buffer stays full ages out like a dead one.

        Returns:
            dict: counts of pinged, evicted and failed connections
        """
        now = now if now is not None else time.time()
        pinged = evicted = failed = 0

        for connection in self.connection_manager:
            idle = now - connection.last_seen
            if idle > self.connection_timeout:
                logger.info(
                    "Evicting stale SSE connection",
                    connection_id=connection.connection_id,
                    handler=connection.handler,
                    route=connection.route,
                    idle_seconds=round(idle, 1),
                )
                if self.connection_manager.close(connection.connection_id, reason="timeout"):
                    evicted += 1
                continue

            payload = heartbeat_payload(connection.uptime(now))
            if self.connection_manager.send(connection, EVENT_HEARTBEAT, payload):
                connection.touch(now)
                pinged += 1
            else:
                failed += 1

        if evicted or failed:
            logger.info("Heartbeat tick completed", pinged=pinged, evicted=evicted, failed=failed)
        return {"pinged": pinged, "evicted": evicted, "failed": failed}

    async def run(self) -> None:
        """
        Ping forever at the configured interval.

        A failing tick is logged and the loop carries on. Cancel the task to
        stop it.
        """
        logger.info(
            "Starting heartbeat scheduler",
            interval_seconds=self.heartbeat_interval,
            connection_timeout_seconds=self.connection_timeout,
        )

        try:
            while True:
                await asyncio.sleep(self.heartbeat_interval)
                try:
                    self.tick()
                except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: one bad tick must not stop heartbeats
                    logger.error("Error in heartbeat scheduler tick", error=str(e), exc_info=True)
        except asyncio.CancelledError:
            logger.info("Heartbeat scheduler cancelled")
            raise
