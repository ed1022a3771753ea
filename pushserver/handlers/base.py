"""
Handler provider contract.

A handler provider is the pluggable data source behind one event type. The
poll scheduler asks it whether anything changed for a route, the router
forwards client queries to it, and the registry keeps exactly one instance
of it per registered name.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ChangeEvent:
    """
    A handler's report that something changed for a route.

    Attributes:
        watermark: New last-seen-change marker; never lower than the one passed in
        payload: Handler-specific event fields, sent to subscribers as-is
    """

    watermark: int
    payload: dict[str, Any] = field(default_factory=dict)


class HandlerProvider(ABC):
    """
    Abstract base class for handler providers.

    Subclasses are constructed once per registered name with the static
    configuration given at registration time. Every method is called from the
    worker's event loop, so implementations must keep their I/O bounded.
    """

    def __init__(self, config: dict[str, Any] | None = None):
        self._config = dict(config or {})

    @abstractmethod
    def watch_targets(self, route: str) -> list[str]:
        """
        Return the identifiers watched for this route.

        Args:
            route: Route string, always starting with "/"

        Returns:
            Watchable identifiers (e.g. file paths); empty if the route resolves to nothing
        """

    @abstractmethod
    def detect_change(self, route: str, since: int) -> ChangeEvent | None:
        """
        Report a change made after the given watermark.

        Args:
            route: Route string
            since: Last watermark already broadcast for this route

        Returns:
            ChangeEvent with a watermark >= since, or None if nothing changed
        """

    @abstractmethod
    def event_type_name(self) -> str:
        """Stable label clients use to tell handler streams apart."""

    @abstractmethod
    def handle_client_message(self, event: str, data: dict[str, Any], route: str) -> dict[str, Any] | None:
        """
        Answer a client-initiated query.

        Args:
            event: Client event name
            data: Event payload sent by the client
            route: Route the client's stream is subscribed to

        Returns:
            Response payload, or None when the event is not understood
        """

    @abstractmethod
    def configuration(self) -> dict[str, Any]:
        """Static configuration given at registration."""

    def snapshot(self, route: str) -> dict[str, Any] | None:
        """Optional initial state sent right after a stream connects."""
        return None
