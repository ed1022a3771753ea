"""
Integration tests for request dispatch.

Finite responses go through the ASGI app with TestClient / httpx. Streams
never end on their own, so they are opened by calling the dispatcher
directly and reading frames from the response's body iterator.
"""

import asyncio
import json

import httpx
import pytest
from fastapi.responses import StreamingResponse
from fastapi.testclient import TestClient
from starlette.requests import ClientDisconnect

from pushserver.api.router import dispatch
from pushserver.handlers.base import ChangeEvent

CORS_ORIGIN = "Access-Control-Allow-Origin"


def parse_frame(frame: str) -> tuple[str, dict]:
    event_line, data_line = frame.strip().split("\n")
    return event_line.removeprefix("event: "), json.loads(data_line.removeprefix("data: "))


async def open_stream(app, request_factory, path, client=("127.0.0.1", 50000)):
    """Dispatch a stream request and consume the retry hint."""
    response = await dispatch(request_factory(app, "GET", path, client=client))
    if isinstance(response, StreamingResponse):
        assert await anext(response.body_iterator) == "retry: 5000\n\n"
    return response


async def next_event(response) -> tuple[str, dict]:
    return parse_frame(await anext(response.body_iterator))


class TestFiniteRoutes:
    """Test OPTIONS, 405, 404 and stats."""

    @pytest.fixture
    def client(self, app):
        return TestClient(app)

    def test_options_returns_cors(self, client):
        response = client.options("/anything/at/all")

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers[CORS_ORIGIN] == "*"
        assert response.headers["Access-Control-Allow-Methods"] == "GET, POST, OPTIONS"

    @pytest.mark.parametrize("method", ["PUT", "DELETE", "PATCH"])
    def test_non_get_is_405(self, client, method):
        response = client.request(method, "/stats")

        assert response.status_code == 405
        assert response.json()["error"]["type"] == "method_not_allowed"
        assert response.headers[CORS_ORIGIN] == "*"

    def test_post_outside_notify_is_405(self, client):
        assert client.post("/stats").status_code == 405

    def test_unknown_path_is_404(self, client):
        response = client.get("/nothing-here")

        assert response.status_code == 404
        assert response.json()["error"]["type"] == "resource_not_found"

    def test_stats_when_empty(self, client):
        response = client.get("/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["total_connections"] == 0
        assert body["handlers"] == {}
        assert body["subscriptions"] == {}
        assert isinstance(body["uptime"], int)

    def test_stats_counts_open_connections(self, client, app):
        manager = app.state.push_server.connection_manager
        manager.open("comments", "/a", "10.0.0.1")
        manager.open("comments", "/a", "10.0.0.2")
        manager.open("h", "/b", "10.0.0.1")

        body = client.get("/stats").json()

        assert body["total_connections"] == 3
        assert body["handlers"] == {"comments": 2, "h": 1}
        assert sum(body["handlers"].values()) == body["total_connections"]
        assert body["subscriptions"] == {"comments:/a": 2, "h:/b": 1}

    def test_notify_without_subscribers(self, client):
        response = client.post("/notify/blog-post-1", json={"type": "new_comment"})

        assert response.json() == {"success": True, "notified": 0, "route": "blog-post-1"}

    def test_notify_malformed_body_uses_default_type(self, client, app):
        connection = app.state.push_server.connection_manager.open("comments", "/post", "10.0.0.1")

        response = client.post("/notify/post", content=b"{not json", headers={"content-type": "application/json"})

        assert response.status_code == 200
        assert response.json()["notified"] == 1
        event, data = parse_frame(connection.queue.get_nowait())
        assert event == "update"
        assert data["type"] == "update"

    def test_notify_non_object_body_uses_default_type(self, client, app):
        connection = app.state.push_server.connection_manager.open("comments", "/post", "10.0.0.1")

        response = client.post("/notify/post", json=["new_comment"])

        assert response.json()["notified"] == 1
        assert parse_frame(connection.queue.get_nowait())[1]["type"] == "update"

    def test_notify_counts_matches_even_when_a_queue_is_full(self, client, app):
        """Test that a subscriber with a full send queue still counts as notified."""
        manager = app.state.push_server.connection_manager
        backed_up = manager.open("comments", "/post", "10.0.0.1")
        healthy = manager.open("comments", "/post", "10.0.0.2")
        while backed_up.send_raw("data: filler\n\n"):
            pass

        response = client.post("/notify/post", json={"type": "new_comment"})

        assert response.json()["notified"] == 2
        assert parse_frame(healthy.queue.get_nowait())[1]["type"] == "new_comment"

    def test_notify_only_reaches_notify_handler_and_exact_route(self, client, app):
        manager = app.state.push_server.connection_manager
        target = manager.open("comments", "/post", "10.0.0.1")
        other_route = manager.open("comments", "/post/child", "10.0.0.1")
        other_handler = manager.open("h", "/post", "10.0.0.1")

        response = client.post("/notify/post", json={})

        assert response.json()["notified"] == 1
        assert not target.queue.empty()
        assert other_route.queue.empty()
        assert other_handler.queue.empty()


class TestStreams:
    """Test stream admission and the event sequence."""

    @pytest.mark.asyncio
    async def test_connect_then_notify(self, app, request_factory):
        """Test the connected event followed by a notify-driven update."""
        # Setup
        response = await open_stream(app, request_factory, "/sse/comments/blog-post-1")

        # Verify connected event
        assert response.media_type == "text/event-stream"
        assert response.headers["Cache-Control"] == "no-cache"
        assert response.headers["Connection"] == "keep-alive"
        assert response.headers["X-Accel-Buffering"] == "no"
        assert response.headers[CORS_ORIGIN] == "*"
        event, data = await next_event(response)
        assert event == "connected"
        assert data["status"] == "connected"
        assert data["handler"] == "comments"
        assert data["route"] == "/blog-post-1"

        # Execute notify
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            notify = await client.post("/notify/blog-post-1", json={"type": "new_comment"})

        # Verify
        assert notify.json() == {"success": True, "notified": 1, "route": "blog-post-1"}
        event, data = await next_event(response)
        assert event == "update"
        assert data["type"] == "new_comment"
        assert data["route"] == "blog-post-1"

        await response.body_iterator.aclose()
        assert len(app.state.push_server.connection_manager) == 0

    @pytest.mark.asyncio
    async def test_unknown_handler_is_404_without_entry(self, app, request_factory):
        response = await open_stream(app, request_factory, "/sse/missing/x")

        assert response.status_code == 404
        assert json.loads(response.body)["error"]["type"] == "handler_not_found"
        assert len(app.state.push_server.connection_manager) == 0

    @pytest.mark.asyncio
    async def test_route_defaults_to_root(self, app, request_factory):
        response = await open_stream(app, request_factory, "/sse/comments")

        event, data = await next_event(response)

        assert data["route"] == "/"
        await response.body_iterator.aclose()

    @pytest.mark.asyncio
    async def test_rate_limit(self, app, request_factory):
        """Test the address cap: third stream refused, a close frees a slot."""
        manager = app.state.push_server.connection_manager
        first = await open_stream(app, request_factory, "/sse/h/a")
        second = await open_stream(app, request_factory, "/sse/h/a")

        rejected = await open_stream(app, request_factory, "/sse/h/a")
        other_address = await open_stream(app, request_factory, "/sse/h/a", client=("10.9.9.9", 1))

        assert isinstance(first, StreamingResponse)
        assert isinstance(second, StreamingResponse)
        assert rejected.status_code == 429
        assert json.loads(rejected.body)["error"]["type"] == "rate_limit_exceeded"
        assert isinstance(other_address, StreamingResponse)

        await first.body_iterator.aclose()
        retry = await open_stream(app, request_factory, "/sse/h/a")

        assert isinstance(retry, StreamingResponse)
        assert manager.count_for_address("127.0.0.1") == 2
        for response in (second, other_address, retry):
            await response.body_iterator.aclose()

    @pytest.mark.asyncio
    async def test_snapshot_follows_connected(self, app, request_factory, comments_handler):
        comments_handler.snapshots["/post"] = {"type": "initial", "count": 7}

        response = await open_stream(app, request_factory, "/sse/comments/post")
        await next_event(response)
        event, data = await next_event(response)

        assert event == "update"
        assert data["type"] == "initial"
        assert data["count"] == 7
        assert data["handler"] == "comments"
        assert data["route"] == "/post"
        await response.body_iterator.aclose()

    @pytest.mark.asyncio
    async def test_poll_update_reaches_stream(self, app, request_factory, comments_handler):
        response = await open_stream(app, request_factory, "/sse/comments/post")
        await next_event(response)
        comments_handler.changes["/post"] = ChangeEvent(watermark=42, payload={"type": "update", "count": 1})

        app.state.push_server.poll_scheduler.tick()
        event, data = await next_event(response)

        assert event == "update"
        assert data["count"] == 1
        await response.body_iterator.aclose()

    @pytest.mark.asyncio
    async def test_client_gone_before_first_frame_frees_connection(self, app, request_factory):
        """Test that a stream whose response never starts still removes its connection."""
        # Setup
        manager = app.state.push_server.connection_manager
        request = request_factory(app, "GET", "/sse/comments/post")
        response = await dispatch(request)
        assert len(manager) == 1

        async def receive():
            await asyncio.Event().wait()

        async def send(message):
            raise OSError("connection reset")

        # Execute
        with pytest.raises((OSError, ClientDisconnect, ExceptionGroup)):
            await response(request.scope, receive, send)

        # Verify
        assert len(manager) == 0
        assert manager.index.keys() == []
        assert manager.count_for_address("127.0.0.1") == 0

    @pytest.mark.asyncio
    async def test_immediate_disconnect_frees_connection(self, app, request_factory):
        manager = app.state.push_server.connection_manager
        request = request_factory(app, "GET", "/sse/comments/post")
        response = await dispatch(request)

        async def receive():
            return {"type": "http.disconnect"}

        async def send(message):
            return None

        await response(request.scope, receive, send)

        assert len(manager) == 0

    @pytest.mark.asyncio
    async def test_refused_during_shutdown(self, app, request_factory):
        await app.state.push_server.shutdown()

        response = await open_stream(app, request_factory, "/sse/comments/post")

        assert response.status_code == 503


class TestClientEvents:
    """Test POST /event/{connection_id}."""

    @pytest.mark.asyncio
    async def test_ping_refreshes_liveness(self, app, request_factory):
        manager = app.state.push_server.connection_manager
        connection = manager.open("comments", "/post", "127.0.0.1")
        connection.last_seen = 0

        request = request_factory(
            app, "POST", f"/event/{connection.connection_id}", body=json.dumps({"event": "ping"}).encode()
        )
        response = await dispatch(request)

        body = json.loads(response.body)
        assert body["success"] is True
        assert body["response"]["type"] == "pong"
        assert connection.last_seen > 0

    @pytest.mark.asyncio
    async def test_handler_answers_client_event(self, app, request_factory):
        connection = app.state.push_server.connection_manager.open("comments", "/post", "127.0.0.1")
        payload = {"event": "echo", "data": {"n": 1}}

        response = await dispatch(
            request_factory(app, "POST", f"/event/{connection.connection_id}", body=json.dumps(payload).encode())
        )

        assert json.loads(response.body) == {
            "success": True,
            "response": {"type": "echo", "route": "/post", "data": {"n": 1}},
        }

    @pytest.mark.asyncio
    async def test_failing_handler_answers_null(self, app, request_factory, comments_handler):
        connection = app.state.push_server.connection_manager.open("comments", "/post", "127.0.0.1")
        comments_handler.fail_with = ValueError("broken")

        response = await dispatch(
            request_factory(app, "POST", f"/event/{connection.connection_id}", body=b'{"event": "echo"}')
        )

        assert json.loads(response.body) == {"success": True, "response": None}

    @pytest.mark.asyncio
    async def test_malformed_body_is_treated_as_empty(self, app, request_factory):
        connection = app.state.push_server.connection_manager.open("comments", "/post", "127.0.0.1")
        connection.last_seen = 0

        response = await dispatch(request_factory(app, "POST", f"/event/{connection.connection_id}", body=b"{oops"))

        assert json.loads(response.body) == {"success": True, "response": None}
        assert connection.last_seen > 0

    def test_unknown_connection_is_404(self, app):
        response = TestClient(app).post("/event/does-not-exist", json={"event": "ping"})

        assert response.status_code == 404
        assert response.json()["error"]["type"] == "connection_not_found"
        assert response.json()["error"]["details"]["connection_id"] == "does-not-exist"
