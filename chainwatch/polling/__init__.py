"""
Block polling module.

Discovers new blocks, matches their transactions against the watched
addresses, stores the matches and triggers notifications.
"""

from chainwatch.polling.poller import BlockPoller, PollerState
from chainwatch.polling.config import PollerConfig, RetryConfig
from chainwatch.polling.metrics import PollerMetrics

__all__ = [
    "BlockPoller",
    "PollerState",
    "PollerConfig",
    "RetryConfig",
    "PollerMetrics",
]
