"""
Handler registry.

Maps handler names to provider records and lazily constructs exactly one
provider instance per name.
"""

import inspect
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from ..exceptions import DuplicateHandlerNameError, ErrorContext, HandlerCapabilityError, InvalidHandlerNameError
from ..structured_logging.enhanced_logging_config import get_logger
from .base import HandlerProvider

logger = get_logger(__name__)


@dataclass
class HandlerRecord:
    """Registration record: name, provider class or instance, static config."""

    name: str
    provider: type[HandlerProvider] | HandlerProvider
    config: dict[str, Any] = field(default_factory=dict)


class HandlerRegistry:
    """
    Registry of handler providers keyed by name.

    Records are immutable once registered. Instances are created on first
    get() and reused for the rest of the process lifetime.
    """

    def __init__(self) -> None:
        self._records: dict[str, HandlerRecord] = {}
        self._instances: dict[str, HandlerProvider] = {}

    def register(
        self,
        name: str,
        provider: type[HandlerProvider] | HandlerProvider,
        config: dict[str, Any] | None = None,
    ) -> HandlerRecord:
        """
        Register a handler provider under a name.

        Args:
            name: Unique handler name (first path segment of /sse/{handler}/...)
            provider: HandlerProvider subclass, or an already-built instance
            config: Static configuration passed to the constructor

        Returns:
            The stored HandlerRecord

        Raises:
            InvalidHandlerNameError: If the name is empty or contains ':' or '/'
            DuplicateHandlerNameError: If the name is already registered
            HandlerCapabilityError: If the provider does not implement HandlerProvider
        """
        if not name or ":" in name or "/" in name:
            raise InvalidHandlerNameError(name, ErrorContext(handler=name, operation="register"))
        if name in self._records:
            raise DuplicateHandlerNameError(name, ErrorContext(handler=name, operation="register"))

        is_class = inspect.isclass(provider)
        if is_class and not issubclass(provider, HandlerProvider):
            raise HandlerCapabilityError(
                f"Handler '{name}' class {provider.__name__} does not implement HandlerProvider",
                ErrorContext(handler=name, operation="register"),
                provider=provider,
            )
        if is_class and inspect.isabstract(provider):
            raise HandlerCapabilityError(
                f"Handler '{name}' class {provider.__name__} leaves capabilities unimplemented",
                ErrorContext(handler=name, operation="register"),
                provider=provider,
                details={"missing": sorted(getattr(provider, "__abstractmethods__", ()))},
            )
        if not is_class and not isinstance(provider, HandlerProvider):
            raise HandlerCapabilityError(
                f"Handler '{name}' instance of {type(provider).__name__} does not implement HandlerProvider",
                ErrorContext(handler=name, operation="register"),
                provider=provider,
            )

        record = HandlerRecord(name=name, provider=provider, config=dict(config or {}))
        self._records[name] = record
        if not is_class:
            self._instances[name] = provider

        logger.info("Handler registered", handler=name, provider=getattr(provider, "__name__", type(provider).__name__))
        return record

    def unregister(self, name: str) -> bool:
        """
        Remove a handler record and its instance.

        Existing connections on this handler stay open but are no longer polled.

        Returns:
            True if something was removed
        """
        removed = self._records.pop(name, None) is not None
        self._instances.pop(name, None)
        if removed:
            logger.info("Handler unregistered", handler=name)
        return removed

    def has(self, name: str) -> bool:
        return name in self._records

    def get(self, name: str) -> HandlerProvider | None:
        """
        Get the provider instance for a name, constructing it on first use.

        Returns:
            The provider instance, or None if no handler has that name
        """
        instance = self._instances.get(name)
        if instance is not None:
            return instance

        record = self._records.get(name)
        if record is None:
            return None

        instance = record.provider(record.config)
        self._instances[name] = instance
        logger.debug("Handler instance created", handler=name)
        return instance

    def names(self) -> list[str]:
        return list(self._records)

    def list(self) -> Iterator[tuple[str, HandlerRecord]]:
        """Iterate (name, record) pairs in registration order."""
        for name, record in list(self._records.items()):
            yield name, record

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, name: object) -> bool:
        return name in self._records
