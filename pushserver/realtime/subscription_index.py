"""
Subscription index: channel key -> subscribed connection ids.

This is the fan-out structure used for broadcasts. A key with no members is
deleted immediately so the poll scheduler never visits dead channels.
"""

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class SubscriptionIndex:
    """
    Maps subscription keys to the set of connection ids subscribed to them.

    Only the connection manager mutates this index, always together with
    its connection table.
    """

    def __init__(self) -> None:
        # subscription key -> set of connection_ids
        self._subscriptions: dict[str, set[str]] = {}

    def subscribe(self, key: str, connection_id: str) -> None:
        self._subscriptions.setdefault(key, set()).add(connection_id)
        logger.debug("Connection subscribed", subscription_key=key, connection_id=connection_id)

    def unsubscribe(self, key: str, connection_id: str) -> bool:
        """
        Remove a connection id from a key, deleting the key once it is empty.

        Returns:
            True if the connection id was subscribed to the key
        """
        members = self._subscriptions.get(key)
        if members is None or connection_id not in members:
            return False

        members.discard(connection_id)
        if not members:
            del self._subscriptions[key]
            logger.debug("Subscription key emptied and removed", subscription_key=key)
        return True

    def subscribers(self, key: str) -> set[str]:
        """Copy of the subscriber set, safe to iterate while the index changes."""
        return set(self._subscriptions.get(key, ()))

    def keys(self) -> list[str]:
        """Snapshot of the non-empty keys."""
        return list(self._subscriptions)

    def counts(self) -> dict[str, int]:
        return {key: len(members) for key, members in self._subscriptions.items()}

    def __contains__(self, key: object) -> bool:
        return key in self._subscriptions

    def __len__(self) -> int:
        return len(self._subscriptions)
