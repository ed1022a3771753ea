"""
Event envelope utilities for server-sent event streams.

Every frame on the wire has the form ``event: {name}\\ndata: {json}\\n\\n``.
The first frame of a stream is a ``retry:`` reconnect hint.
"""

import json
import time
from typing import Any

EVENT_CONNECTED = "connected"
EVENT_HEARTBEAT = "heartbeat"
EVENT_UPDATE = "update"
EVENT_SHUTDOWN = "shutdown"


def unix_now() -> int:
    """Current time as integer seconds since the epoch."""
    return int(time.time())


def sse_frame(event: str, data: dict[str, Any]) -> str:
    """Encode a named event and its JSON payload as one SSE frame."""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def retry_frame(retry_ms: int) -> str:
    """Reconnect hint sent before any event."""
    return f"retry: {retry_ms}\n\n"


def connected_payload(handler: str, route: str) -> dict[str, Any]:
    return {"status": "connected", "timestamp": unix_now(), "handler": handler, "route": route}


def heartbeat_payload(uptime: int) -> dict[str, Any]:
    return {"timestamp": unix_now(), "uptime": uptime}


def shutdown_payload(reason: str = "Server shutdown") -> dict[str, Any]:
    return {"reason": reason, "timestamp": unix_now()}


def update_payload(payload: dict[str, Any], handler: str, route: str) -> dict[str, Any]:
    """
    Merge a handler payload with the channel it was produced for.

    The handler and route of the channel always win over same-named payload
    fields, and a timestamp is added when the handler did not provide one.
    """
    merged = {"timestamp": unix_now()}
    merged.update(payload)
    merged["handler"] = handler
    merged["route"] = route
    return merged
