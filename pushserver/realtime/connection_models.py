"""
Data models for connection management.

A Connection owns the outbound frame queue of one open event stream. The
streaming response drains that queue; everything else only enqueues.
"""

# pylint: disable=too-many-instance-attributes  # Reason: Connection tracks identity, channel, liveness and its transport queue

import asyncio
import time
import uuid
from dataclasses import dataclass, field

from .envelope import sse_frame

# Enqueued by close(); tells the stream generator to finish
CLOSE_SENTINEL = None


def make_subscription_key(handler: str, route: str) -> str:
    """Canonical "{handler}:{route}" channel key."""
    return f"{handler}:{route}"


def split_subscription_key(key: str) -> tuple[str, str]:
    """Split a channel key on the first ':' into (handler, route)."""
    handler, _, route = key.partition(":")
    return handler, route


@dataclass
class Connection:
    """
    One open event stream.

    Liveness (last_seen) is refreshed by the heartbeat scheduler after a
    successful ping and by inbound client messages.
    """

    handler: str
    route: str
    client_address: str
    queue_size: int = 256
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)
    closed: bool = False
    queue: asyncio.Queue = field(init=False, repr=False)

    def __post_init__(self) -> None:
        # One slot is reserved for the close sentinel
        self.queue = asyncio.Queue(maxsize=self.queue_size + 1)

    @property
    def subscription_key(self) -> str:
        return make_subscription_key(self.handler, self.route)

    def uptime(self, now: float | None = None) -> int:
        return int((now if now is not None else time.time()) - self.started_at)

    def touch(self, now: float | None = None) -> None:
        self.last_seen = now if now is not None else time.time()

    def send(self, event: str, data: dict) -> bool:
        """
        Enqueue one event frame without blocking.

        Returns:
            False if the connection is closed or its buffer is full
        """
        return self.send_raw(sse_frame(event, data))

    def send_raw(self, frame: str) -> bool:
        if self.closed or self.queue.qsize() >= self.queue_size:
            return False
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        """Ask the stream to finish once the frames already queued are flushed."""
        if self.closed:
            return
        self.closed = True
        self.queue.put_nowait(CLOSE_SENTINEL)
