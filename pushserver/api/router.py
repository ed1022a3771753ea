"""
Request router for the push server.

A single dispatch function receives every request and routes it by method
and path:

    OPTIONS *                   -> 200 with CORS headers
    POST /notify/{route}        -> direct push to the notify handler's subscribers
    POST /event/{connection_id} -> client message / liveness ping
    any other non-GET           -> 405
    GET /stats                  -> connection statistics
    GET /sse/{handler}/{route}  -> open an event stream
    anything else               -> 404
"""

import re
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from ..error_types import ErrorMessages, ErrorSeverity, ErrorType, create_standard_error_response
from ..exceptions import (
    ConnectionNotFoundError,
    ErrorContext,
    HandlerNotFoundError,
    MalformedNotifyBodyError,
    MethodNotAllowedError,
    PushServerError,
    RateLimitError,
    ResourceNotFoundError,
    ServerShuttingDownError,
    wrap_handler_exception,
)
from ..realtime.envelope import EVENT_CONNECTED, EVENT_UPDATE, connected_payload, unix_now, update_payload
from ..realtime.sse_handler import EventStreamResponse
from ..server import PushServer
from ..structured_logging.enhanced_logging_config import get_logger, log_exception_once

logger = get_logger(__name__)

NOTIFY_PATTERN = re.compile(r"^/notify/(.*)$")
EVENT_PATTERN = re.compile(r"^/event/([^/]+)$")
SSE_PATTERN = re.compile(r"^/sse/([^/]+)(.*)$")

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

# Rejection -> (status code, error type, message)
REJECTIONS: dict[type[PushServerError], tuple[int, ErrorType, str]] = {
    ConnectionNotFoundError: (404, ErrorType.CONNECTION_NOT_FOUND, ErrorMessages.CONNECTION_NOT_FOUND),
    HandlerNotFoundError: (404, ErrorType.HANDLER_NOT_FOUND, ErrorMessages.HANDLER_NOT_FOUND),
    ResourceNotFoundError: (404, ErrorType.RESOURCE_NOT_FOUND, ErrorMessages.NOT_FOUND),
    MethodNotAllowedError: (405, ErrorType.METHOD_NOT_ALLOWED, ErrorMessages.METHOD_NOT_ALLOWED),
    RateLimitError: (429, ErrorType.RATE_LIMIT_EXCEEDED, ErrorMessages.TOO_MANY_CONNECTIONS),
    ServerShuttingDownError: (503, ErrorType.SERVICE_UNAVAILABLE, ErrorMessages.SHUTTING_DOWN),
}

push_router = APIRouter(tags=["push"])


def _push_server(request: Request) -> PushServer:
    push_server = getattr(request.app.state, "push_server", None)
    if push_server is None:
        raise RuntimeError("Push server is not configured")
    return push_server


def _client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _rejection_response(error: PushServerError, cors: dict[str, str]) -> JSONResponse:
    status_code, error_type, message = REJECTIONS[type(error)]
    body = create_standard_error_response(
        error_type,
        message,
        user_friendly=error.user_friendly,
        details=error.details,
        severity=ErrorSeverity.LOW,
    )
    return JSONResponse(body, status_code=status_code, headers=cors)


async def _read_json_object(request: Request, context: ErrorContext) -> dict[str, Any]:
    """
    Parse the body as a JSON object. An empty body is an empty dict.

    Raises:
        MalformedNotifyBodyError: If the body is not valid JSON or not an object
    """
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = await request.json()
    except ValueError as e:
        raise MalformedNotifyBodyError("Request body is not valid JSON", context, details={"error": str(e)}) from e
    if not isinstance(body, dict):
        raise MalformedNotifyBodyError(
            "Request body is not a JSON object", context, details={"kind": type(body).__name__}
        )
    return body


def handle_stats(push_server: PushServer, cors: dict[str, str]) -> JSONResponse:
    """GET /stats: connection counts per handler and per subscription key."""
    return JSONResponse(push_server.connection_manager.get_stats(push_server.started_at), headers=cors)


async def handle_notify(
    request: Request, push_server: PushServer, route: str, cors: dict[str, str]
) -> JSONResponse:
    """
    POST /notify/{route}: push an update straight to the notify handler's subscribers.

    Does not touch any watermark, so the next poll tick may deliver the same
    change again. The notified count is the number of matching connections;
    a connection whose send queue is full is counted but misses this frame.
    """
    handler_name = push_server.config.push.notify_handler
    try:
        try:
            body = await _read_json_object(
                request, ErrorContext(handler=handler_name, route=route, operation="notify")
            )
        except MalformedNotifyBodyError:
            body = {}
        event_type = body.get("type", "update")
        if not isinstance(event_type, str):
            event_type = "update"

        data = {"type": event_type, "route": route, "timestamp": unix_now()}
        manager = push_server.connection_manager
        notified = 0
        queued = 0
        for connection in manager.matching(handler_name, f"/{route}"):
            notified += 1
            if manager.send(connection, EVENT_UPDATE, data):
                queued += 1

        logger.info(
            "Notify delivered", handler=handler_name, route=route, type=event_type, notified=notified, queued=queued
        )
        return JSONResponse({"success": True, "notified": notified, "route": route}, headers=cors)

    except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: notify answers 500 with the error instead of dropping the request
        log_exception_once(logger, "error", "Notify failed", exc=e, route=route)
        return JSONResponse({"success": False, "error": str(e)}, status_code=500, headers=cors)


async def handle_client_event(
    request: Request, push_server: PushServer, connection_id: str, cors: dict[str, str]
) -> JSONResponse:
    """
    POST /event/{connection_id}: client-initiated query on an open stream.

    Refreshes the connection's liveness. The "ping" event is answered here;
    every other event goes to the connection's handler.
    """
    connection = push_server.connection_manager.get(connection_id)
    if connection is None:
        raise ConnectionNotFoundError(
            connection_id, ErrorContext(connection_id=connection_id, operation="client_event")
        )

    connection.touch()
    context = ErrorContext(
        handler=connection.handler,
        route=connection.route,
        connection_id=connection_id,
        operation="handle_client_message",
    )
    try:
        body = await _read_json_object(request, context)
    except MalformedNotifyBodyError:
        body = {}
    event = body.get("event")
    data = body.get("data")
    if not isinstance(event, str):
        event = ""
    if not isinstance(data, dict):
        data = {}

    if event == "ping":
        return JSONResponse({"success": True, "response": {"type": "pong", "timestamp": unix_now()}}, headers=cors)

    response = None
    handler = push_server.registry.get(connection.handler)
    if handler is not None:
        try:
            response = handler.handle_client_message(event, data, connection.route)
        except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: a failing handler answers with no response
            wrap_handler_exception(e, context)
            response = None

    return JSONResponse({"success": True, "response": response}, headers=cors)


def handle_stream(
    request: Request, push_server: PushServer, handler_name: str, route: str, cors: dict[str, str]
) -> EventStreamResponse:
    """
    GET /sse/{handler}/{route}: admit and open an event stream.

    The connection is registered before the response starts, so it counts
    against the address limit immediately.

    Raises:
        ServerShuttingDownError: Shutdown has begun
        HandlerNotFoundError: No handler with that name
        RateLimitError: The address is at its connection cap
    """
    client_address = _client_address(request)
    context = ErrorContext(handler=handler_name, route=route, client_address=client_address, operation="open_stream")

    if not push_server.accepting:
        raise ServerShuttingDownError("Stream refused during shutdown", context)

    handler = push_server.registry.get(handler_name)
    if handler is None:
        raise HandlerNotFoundError(handler_name, context)

    if not push_server.rate_limiter.check_rate_limit(client_address):
        raise RateLimitError(
            f"Too many connections from {client_address}",
            context,
            limit=push_server.rate_limiter.max_connections_per_ip,
        )

    manager = push_server.connection_manager
    connection = manager.open(handler_name, route, client_address)
    manager.send(connection, EVENT_CONNECTED, connected_payload(handler_name, route))

    try:
        snapshot = handler.snapshot(route)
    except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: a failing snapshot leaves the stream open without initial state
        context.connection_id = connection.connection_id
        context.operation = "snapshot"
        wrap_handler_exception(e, context)
        snapshot = None
    if snapshot is not None:
        manager.send(connection, EVENT_UPDATE, update_payload(snapshot, handler_name, route))

    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
        **cors,
    }
    return EventStreamResponse(connection, manager, push_server.config.push.retry_ms, headers=headers)


async def dispatch(request: Request) -> Response:
    """Route one request; see the module docstring for the table."""
    push_server = _push_server(request)
    cors = push_server.config.cors.headers()
    method = request.method.upper()
    path = request.url.path

    try:
        if method == "OPTIONS":
            return Response(status_code=200, headers=cors)

        if method == "POST":
            notify_match = NOTIFY_PATTERN.match(path)
            if notify_match:
                return await handle_notify(request, push_server, notify_match.group(1), cors)
            event_match = EVENT_PATTERN.match(path)
            if event_match:
                return await handle_client_event(request, push_server, event_match.group(1), cors)

        if method != "GET":
            raise MethodNotAllowedError(method, ErrorContext(route=path, operation="dispatch"))

        if path == "/stats":
            return handle_stats(push_server, cors)

        sse_match = SSE_PATTERN.match(path)
        if sse_match:
            return handle_stream(request, push_server, sse_match.group(1), sse_match.group(2) or "/", cors)

        raise ResourceNotFoundError(f"No route for {path}", ErrorContext(route=path, operation="dispatch"))

    except PushServerError as e:
        if type(e) not in REJECTIONS:
            raise
        return _rejection_response(e, cors)


push_router.add_api_route("/{full_path:path}", dispatch, methods=ALL_METHODS, include_in_schema=False)
