"""
Test configuration and fixtures for the push server test suite.
"""

import os

# Set environment before any configuration is loaded
os.environ.setdefault("LOGGING_ENVIRONMENT", "unit_test")
os.environ.setdefault("LOGGING_DISABLE_LOGGING", "true")
os.environ.setdefault("SERVER_HOST", "127.0.0.1")
os.environ.setdefault("SERVER_PORT", "8080")

from collections.abc import Generator  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from starlette.requests import Request  # noqa: E402

from pushserver.app.factory import create_app  # noqa: E402
from pushserver.config import AppConfig, PushConfig, reset_config  # noqa: E402
from pushserver.handlers.base import ChangeEvent, HandlerProvider  # noqa: E402
from pushserver.handlers.registry import HandlerRegistry  # noqa: E402
from pushserver.server import PushServer  # noqa: E402


class FakeHandler(HandlerProvider):
    """
    In-memory handler provider.

    Tests set ``changes[route]`` to the ChangeEvent detect_change should
    return; every call is recorded in ``calls``.
    """

    def __init__(self, config: dict[str, Any] | None = None, event_type: str = "fake"):
        super().__init__(config)
        self.event_type = event_type
        self.changes: dict[str, ChangeEvent] = {}
        self.calls: list[tuple[str, int]] = []
        self.snapshots: dict[str, dict[str, Any]] = {}
        self.fail_with: Exception | None = None

    def watch_targets(self, route: str) -> list[str]:
        return [route] if route in self.changes else []

    def detect_change(self, route: str, since: int) -> ChangeEvent | None:
        self.calls.append((route, since))
        if self.fail_with is not None:
            raise self.fail_with
        change = self.changes.get(route)
        if change is None or change.watermark <= since:
            return None
        return change

    def event_type_name(self) -> str:
        return self.event_type

    def handle_client_message(self, event: str, data: dict[str, Any], route: str) -> dict[str, Any] | None:
        if self.fail_with is not None:
            raise self.fail_with
        if event == "echo":
            return {"type": "echo", "route": route, "data": data}
        return None

    def configuration(self) -> dict[str, Any]:
        return dict(self._config)

    def snapshot(self, route: str) -> dict[str, Any] | None:
        return self.snapshots.get(route)


def make_request(
    app: Any,
    method: str,
    path: str,
    body: bytes = b"",
    client: tuple[str, int] = ("127.0.0.1", 50000),
) -> Request:
    """Build a Starlette request bound to an app, for calling the dispatcher directly."""
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"testserver"), (b"content-type", b"application/json")],
        "client": client,
        "server": ("testserver", 80),
        "app": app,
    }

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset config singleton before and after each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def push_config() -> AppConfig:
    """Configuration with short timers and a two-connection address cap."""
    return AppConfig(
        push=PushConfig(
            max_connections_per_ip=2,
            heartbeat_interval=1.0,
            connection_timeout=3.0,
            check_interval=0.5,
            send_queue_size=8,
        )
    )


@pytest.fixture
def comments_handler() -> FakeHandler:
    return FakeHandler(event_type="comments")


@pytest.fixture
def registry(comments_handler: FakeHandler) -> HandlerRegistry:
    """Registry with a fake "comments" handler instance and a lazily built "h" handler."""
    handler_registry = HandlerRegistry()
    handler_registry.register("comments", comments_handler)
    handler_registry.register("h", FakeHandler)
    return handler_registry


@pytest.fixture
def push_server(push_config: AppConfig, registry: HandlerRegistry) -> PushServer:
    return PushServer(push_config, registry)


@pytest.fixture
def app(push_config: AppConfig, registry: HandlerRegistry):
    """FastAPI app wired to the fake registry; lifespan is not started."""
    return create_app(push_config, registry)


@pytest.fixture
def request_factory():
    """Expose make_request to tests."""
    return make_request


def pytest_collection_modifyitems(config: Any, items: list[Any]) -> None:
    """
    Auto-mark tests based on their file path.

    Tests in unit/ get @pytest.mark.unit
    Tests in integration/ get @pytest.mark.integration
    """
    for item in items:
        file_path = str(item.fspath)

        if "/unit/" in file_path or "\\unit\\" in file_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in file_path or "\\integration\\" in file_path:
            item.add_marker(pytest.mark.integration)
