import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path so `import chainwatch` works when running pytest from root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from chainwatch.chain.clients.mock_client import MockChainClient  # noqa: E402
from chainwatch.polling.config import PollerConfig  # noqa: E402
from chainwatch.storage.memory import TransactionStore  # noqa: E402
from chainwatch.subscriptions.registry import SubscriptionRegistry  # noqa: E402
from tests.fixtures.chain_data import RecordingNotifier  # noqa: E402


@pytest.fixture
def registry():
    return SubscriptionRegistry()


@pytest.fixture
def store():
    return TransactionStore()


@pytest.fixture
def chain():
    """Mock chain at height 100 with no latency."""
    return MockChainClient(height=100, genesis_timestamp=1_700_000_000)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def poller_config():
    return PollerConfig(
        poll_interval_seconds=0.05,
        cycle_timeout_seconds=5,
        webhook_url="https://sink.example/notify",
    )
