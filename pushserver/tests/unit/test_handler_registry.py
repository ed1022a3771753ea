"""
Tests for the handler registry.
"""

from typing import Any

import pytest

from pushserver.exceptions import DuplicateHandlerNameError, HandlerCapabilityError, InvalidHandlerNameError
from pushserver.handlers.base import ChangeEvent, HandlerProvider
from pushserver.handlers.registry import HandlerRegistry


class CountingHandler(HandlerProvider):
    """Handler that counts how often it was constructed."""

    instances = 0

    def __init__(self, config: dict[str, Any] | None = None):
        super().__init__(config)
        CountingHandler.instances += 1

    def watch_targets(self, route: str) -> list[str]:
        return []

    def detect_change(self, route: str, since: int) -> ChangeEvent | None:
        return None

    def event_type_name(self) -> str:
        return "counting"

    def handle_client_message(self, event: str, data: dict[str, Any], route: str) -> dict[str, Any] | None:
        return None

    def configuration(self) -> dict[str, Any]:
        return dict(self._config)


class IncompleteHandler(HandlerProvider):
    """Handler missing most capabilities."""

    def event_type_name(self) -> str:
        return "incomplete"


class NotAHandler:
    """Duck-typed object with the right method names but no contract."""

    def detect_change(self, route, since):
        return None


@pytest.fixture(autouse=True)
def reset_instance_counter():
    CountingHandler.instances = 0
    yield


class TestRegister:
    """Test handler registration."""

    def test_register_stores_record_without_instantiating(self):
        """Test that class registration is lazy."""
        registry = HandlerRegistry()

        record = registry.register("counting", CountingHandler, {"limit": 3})

        assert record.name == "counting"
        assert record.config == {"limit": 3}
        assert registry.has("counting")
        assert CountingHandler.instances == 0

    @pytest.mark.parametrize("name", ["", "ns:comments", "blog/comments"])
    def test_unroutable_name_rejected(self, name):
        """Test that names which would break channel keys or /sse/ URLs are refused."""
        registry = HandlerRegistry()

        with pytest.raises(InvalidHandlerNameError):
            registry.register(name, CountingHandler)

        assert not registry.has(name)
        assert len(registry) == 0

    def test_duplicate_name_rejected_without_mutation(self):
        """Test that a second registration under the same name fails and keeps the first."""
        registry = HandlerRegistry()
        registry.register("counting", CountingHandler, {"first": True})

        with pytest.raises(DuplicateHandlerNameError):
            registry.register("counting", CountingHandler, {"first": False})

        assert len(registry) == 1
        assert registry.get("counting").configuration() == {"first": True}

    def test_class_without_contract_rejected(self):
        """Test that duck-typed classes are refused."""
        registry = HandlerRegistry()

        with pytest.raises(HandlerCapabilityError):
            registry.register("bad", NotAHandler)

        assert not registry.has("bad")

    def test_instance_without_contract_rejected(self):
        registry = HandlerRegistry()

        with pytest.raises(HandlerCapabilityError):
            registry.register("bad", NotAHandler())

    def test_abstract_subclass_rejected(self):
        """Test that a subclass leaving capabilities unimplemented is refused."""
        registry = HandlerRegistry()

        with pytest.raises(HandlerCapabilityError) as exc_info:
            registry.register("incomplete", IncompleteHandler)

        assert "detect_change" in exc_info.value.details["missing"]

    def test_register_instance_is_returned_as_is(self):
        registry = HandlerRegistry()
        handler = CountingHandler({"x": 1})

        registry.register("counting", handler)

        assert registry.get("counting") is handler


class TestLookup:
    """Test get, unregister and list."""

    def test_get_builds_instance_once(self):
        """Test that get() caches the constructed instance."""
        registry = HandlerRegistry()
        registry.register("counting", CountingHandler, {"a": 1})

        first = registry.get("counting")
        second = registry.get("counting")

        assert first is second
        assert CountingHandler.instances == 1
        assert first.configuration() == {"a": 1}

    def test_get_unknown_returns_none(self):
        assert HandlerRegistry().get("missing") is None

    def test_unregister_removes_record_and_instance(self):
        registry = HandlerRegistry()
        registry.register("counting", CountingHandler)
        registry.get("counting")

        assert registry.unregister("counting") is True
        assert registry.get("counting") is None
        assert registry.unregister("counting") is False

    def test_name_can_be_reused_after_unregister(self):
        registry = HandlerRegistry()
        registry.register("counting", CountingHandler)
        registry.unregister("counting")

        registry.register("counting", CountingHandler, {"second": True})

        assert registry.get("counting").configuration() == {"second": True}

    def test_list_is_restartable_and_in_registration_order(self):
        """Test that list() can be iterated more than once."""
        registry = HandlerRegistry()
        registry.register("b", CountingHandler)
        registry.register("a", CountingHandler)

        first = [name for name, _ in registry.list()]
        second = [name for name, _ in registry.list()]

        assert first == ["b", "a"]
        assert second == first

    def test_list_does_not_instantiate(self):
        registry = HandlerRegistry()
        registry.register("counting", CountingHandler)

        records = dict(registry.list())

        assert records["counting"].provider is CountingHandler
        assert CountingHandler.instances == 0
