"""
PushServer: per-worker owner of the connection table, handlers and timers.

Each worker process builds exactly one PushServer; nothing here is shared
between workers.
"""

import time

from .app.task_registry import TaskRegistry
from .config import AppConfig
from .handlers.loader import load_handlers
from .handlers.registry import HandlerRegistry
from .realtime.connection_manager import ConnectionManager
from .realtime.heartbeat import HeartbeatScheduler
from .realtime.poll_scheduler import PollScheduler
from .realtime.rate_limiter import RateLimiter
from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class PushServer:
    """
    Top-level component of one worker.

    Holds the handler registry, the connection manager, the rate limiter and
    both schedulers, and starts and stops the scheduler tasks.
    """

    def __init__(self, config: AppConfig, registry: HandlerRegistry | None = None) -> None:
        """
        Build a push server from configuration.

        Args:
            config: Application configuration
            registry: Pre-populated registry; when None, the configured handlers are loaded
        """
        self.config = config
        push = config.push

        if registry is None:
            registry = HandlerRegistry()
            load_handlers(registry, push.handlers, defaults={"content_root": push.content_root})
        self.registry = registry

        self.connection_manager = ConnectionManager(send_queue_size=push.send_queue_size)
        self.rate_limiter = RateLimiter(self.connection_manager, push.max_connections_per_ip)
        self.poll_scheduler = PollScheduler(self.registry, self.connection_manager, push.check_interval)
        self.heartbeat_scheduler = HeartbeatScheduler(
            self.connection_manager, push.heartbeat_interval, push.connection_timeout
        )
        self.task_registry = TaskRegistry()
        self.started_at = time.time()
        self.running = False
        self.shutting_down = False

    def uptime(self) -> int:
        return int(time.time() - self.started_at)

    @property
    def accepting(self) -> bool:
        return not self.shutting_down and self.connection_manager.accepting

    async def start(self) -> None:
        """Start the poll and heartbeat loops on the running event loop."""
        if self.running:
            return

        self.started_at = time.time()
        self.task_registry.register_task(self.poll_scheduler.run(), "push.poll_scheduler", "scheduler")
        self.task_registry.register_task(self.heartbeat_scheduler.run(), "push.heartbeat_scheduler", "scheduler")
        self.running = True

        logger.info(
            "Push server started",
            handlers=self.registry.names(),
            check_interval=self.poll_scheduler.check_interval,
            heartbeat_interval=self.heartbeat_scheduler.heartbeat_interval,
        )

    async def shutdown(self, reason: str = "Server shutdown") -> None:
        """
        Stop admitting streams, send a shutdown event to every stream, end
        every stream, then cancel the background loops.

        Safe to call more than once.
        """
        if self.shutting_down:
            return
        self.shutting_down = True

        logger.info("Push server shutting down", open_connections=len(self.connection_manager))
        self.connection_manager.shutdown(reason)
        await self.task_registry.shutdown_all(timeout=self.config.server.graceful_shutdown_timeout)
        self.running = False
        logger.info("Push server stopped")
