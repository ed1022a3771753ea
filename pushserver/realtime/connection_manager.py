"""
Connection table and subscription bookkeeping.

The ConnectionManager is the only place that mutates the connection table
and the subscription index, and it always updates both together. All
methods run on the worker's event loop thread, so no locking is needed.
"""

import time
from collections.abc import Iterator
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger
from .connection_models import Connection
from .envelope import EVENT_SHUTDOWN, shutdown_payload
from .subscription_index import SubscriptionIndex

logger = get_logger(__name__)


class ConnectionManager:
    """
    Owns the open connections of one worker.

    The table answers "how do I reach them" and "are they alive"; the
    subscription index answers "who gets notified".
    """

    def __init__(self, send_queue_size: int = 256) -> None:
        """
        Initialize an empty connection table.

        Args:
            send_queue_size: Frames buffered per connection before sends start failing
        """
        self.send_queue_size = send_queue_size
        self.connections: dict[str, Connection] = {}
        self.index = SubscriptionIndex()
        self.accepting = True

    def open(self, handler: str, route: str, client_address: str) -> Connection:
        """
        Create a connection and subscribe it to its channel.

        Args:
            handler: Handler name the stream subscribes to
            route: Route the stream subscribes to (starts with "/")
            client_address: Requesting client address, used for rate limiting

        Returns:
            The new Connection
        """
        connection = Connection(
            handler=handler, route=route, client_address=client_address, queue_size=self.send_queue_size
        )
        self.connections[connection.connection_id] = connection
        self.index.subscribe(connection.subscription_key, connection.connection_id)

        logger.info(
            "SSE connection established",
            connection_id=connection.connection_id,
            handler=handler,
            route=route,
            client_address=client_address,
            total_connections=len(self.connections),
        )
        return connection

    def close(self, connection_id: str, reason: str = "closed") -> bool:
        """
        Remove a connection from the table and the index and end its stream.

        Safe to call more than once for the same connection.

        Returns:
            True if the connection was open
        """
        connection = self.connections.pop(connection_id, None)
        if connection is None:
            return False

        self.index.unsubscribe(connection.subscription_key, connection_id)
        connection.close()

        logger.info(
            "SSE connection closed",
            connection_id=connection_id,
            handler=connection.handler,
            route=connection.route,
            reason=reason,
            duration=connection.uptime(),
            total_connections=len(self.connections),
        )
        return True

    def get(self, connection_id: str) -> Connection | None:
        return self.connections.get(connection_id)

    def __len__(self) -> int:
        return len(self.connections)

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self.connections.values()))

    def count_for_address(self, client_address: str) -> int:
        """Point-in-time count of open connections from one client address."""
        return sum(1 for connection in self.connections.values() if connection.client_address == client_address)

    def matching(self, handler: str, route: str) -> list[Connection]:
        """Connections subscribed to exactly this handler and route."""
        return [
            connection
            for connection in self.connections.values()
            if connection.handler == handler and connection.route == route
        ]

    def send(self, connection: Connection, event: str, data: dict[str, Any]) -> bool:
        """
        Send one event to one connection, logging a failure instead of raising.

        Returns:
            True if the frame was queued
        """
        if connection.send(event, data):
            return True
        logger.warning(
            "Failed to send event to connection",
            connection_id=connection.connection_id,
            event_name=event,
            handler=connection.handler,
            route=connection.route,
            queued=connection.queue.qsize(),
        )
        return False

    def broadcast(self, key: str, event: str, data: dict[str, Any]) -> int:
        """
        Send one event to every subscriber of a key.

        Send failures are logged per connection and never abort the broadcast.

        Returns:
            Number of connections the frame was queued for
        """
        delivered = 0
        for connection_id in self.index.subscribers(key):
            connection = self.connections.get(connection_id)
            if connection is None:
                continue
            if self.send(connection, event, data):
                delivered += 1
        return delivered

    def get_stats(self, started_at: float) -> dict[str, Any]:
        """
        Connection statistics for the /stats endpoint.

        Args:
            started_at: Process start time, for the uptime figure
        """
        handlers: dict[str, int] = {}
        for connection in self.connections.values():
            handlers[connection.handler] = handlers.get(connection.handler, 0) + 1

        return {
            "total_connections": len(self.connections),
            "handlers": handlers,
            "subscriptions": self.index.counts(),
            "uptime": int(time.time() - started_at),
        }

    def shutdown(self, reason: str = "Server shutdown") -> int:
        """
        Stop admitting, tell every stream about the shutdown and close it.

        Returns:
            Number of connections closed
        """
        self.accepting = False
        closed = 0
        for connection in list(self.connections.values()):
            self.send(connection, EVENT_SHUTDOWN, shutdown_payload(reason))
            if self.close(connection.connection_id, reason="shutdown"):
                closed += 1

        logger.info("All SSE connections closed for shutdown", closed=closed)
        return closed
