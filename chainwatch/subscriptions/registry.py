"""Registry of watched addresses."""

import threading
from typing import FrozenSet, Iterable

import structlog

logger = structlog.get_logger()


class SubscriptionRegistry:
    """
    Set of watched addresses with insert-once semantics.

    Membership test and insert happen under one lock, so concurrent
    subscribers of the same address see exactly one successful insert.
    Addresses are stored as given; syntax is checked by the chain client
    when the address is first looked up.
    """

    def __init__(self, addresses: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._addresses: set[str] = set(addresses)

    def subscribe(self, address: str) -> bool:
        """
        Record ``address``.

        Returns:
            True if the address was new, False if it was already watched
        """
        with self._lock:
            if address in self._addresses:
                return False
            self._addresses.add(address)
            total = len(self._addresses)

        logger.info("subscription.added", address=address, total=total)
        return True

    def snapshot(self) -> FrozenSet[str]:
        """Copy of the current membership; later subscribes are not visible in it."""
        with self._lock:
            return frozenset(self._addresses)

    def __len__(self) -> int:
        with self._lock:
            return len(self._addresses)
