"""
Server-Sent Events stream generator and response.

The connection is registered before streaming starts; the generator only
drains its frame queue onto the wire, and the response removes the
connection when it ends, whether or not the generator ever ran.
"""

import asyncio
from collections.abc import AsyncGenerator

from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from ..structured_logging.enhanced_logging_config import get_logger
from .connection_manager import ConnectionManager
from .connection_models import CLOSE_SENTINEL, Connection
from .envelope import retry_frame

logger = get_logger(__name__)


async def event_stream(
    connection: Connection, connection_manager: ConnectionManager, retry_ms: int = 5000
) -> AsyncGenerator[str, None]:
    """
    Generate the frames of one event stream.

    Args:
        connection: The registered connection whose queue is drained
        connection_manager: Owner of the connection, used for cleanup
        retry_ms: Reconnect hint sent as the first frame

    Yields:
        str: SSE frames
    """
    reason = "completed"
    try:
        yield retry_frame(retry_ms)

        while True:
            frame = await connection.queue.get()
            if frame is CLOSE_SENTINEL:
                reason = "server_closed"
                break
            yield frame

    except asyncio.CancelledError:
        reason = "client_disconnected"
        logger.info("SSE stream cancelled", connection_id=connection.connection_id)
        raise

    except OSError as e:
        reason = "transport_error"
        logger.warning("SSE transport error", connection_id=connection.connection_id, error=str(e))

    finally:
        # Removes table and index entries together; no-op if already closed
        connection_manager.close(connection.connection_id, reason=reason)


class EventStreamResponse(StreamingResponse):
    """
    Streaming response for one registered connection.

    If the client goes away before the first body chunk is pulled, the
    generator never starts and its cleanup never runs, so the response
    closes the connection itself once it finishes for any reason.
    """

    media_type = "text/event-stream"

    def __init__(
        self,
        connection: Connection,
        connection_manager: ConnectionManager,
        retry_ms: int = 5000,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(
            event_stream(connection, connection_manager, retry_ms),
            media_type=self.media_type,
            headers=headers,
        )
        self.connection = connection
        self.connection_manager = connection_manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.connection_manager.close(self.connection.connection_id, reason="response_ended")
