"""
Tests for the block poller.

Covers cursor initialization, range scanning, per-lookup failure
isolation, notification failures, overlapping cycles, deadlines and the
background loop lifecycle.
"""

import asyncio

import httpx
import pytest

from chainwatch.chain.clients.mock_client import MockChainClient
from chainwatch.notifications.webhook import WebhookNotifier
from chainwatch.polling.config import PollerConfig
from chainwatch.polling.metrics import CycleStatus
from chainwatch.polling.poller import BlockPoller, PollerState
from tests.fixtures.chain_data import ALICE, BOB, CAROL, RecordingNotifier


def make_poller(chain, registry, store, notifier, config) -> BlockPoller:
    return BlockPoller(chain, registry, store, notifier=notifier, config=config)


async def initialized_poller(chain, registry, store, notifier, config) -> BlockPoller:
    """Poller whose cursor has been set to the chain's current height."""
    poller = make_poller(chain, registry, store, notifier, config)
    result = await poller.poll_once()
    assert result["status"] == CycleStatus.INITIALIZED.value
    return poller


class SubscribingChain(MockChainClient):
    """Mock chain that subscribes an address while a given block is fetched."""

    def __init__(self, registry, trigger_block: int, address: str, **kwargs):
        super().__init__(**kwargs)
        self.registry = registry
        self.trigger_block = trigger_block
        self.address = address

    async def get_block(self, block_number: int):
        if block_number == self.trigger_block:
            self.registry.subscribe(self.address)
        return await super().get_block(block_number)


class BrokenLookupChain(MockChainClient):
    """Mock chain whose lookups for one address raise a non-chain error."""

    def __init__(self, broken_address: str, **kwargs):
        super().__init__(**kwargs)
        self.broken_address = broken_address

    async def transactions_for_address(self, address: str, block_number: int):
        if address == self.broken_address:
            raise RuntimeError("unexpected client bug")
        return await super().transactions_for_address(address, block_number)


class CrashingNotifier(RecordingNotifier):
    """Notifier that fails with an error outside DeliveryError."""

    async def notify(self, transaction, address, sink_url):
        raise ValueError("sink misconfigured")


@pytest.mark.asyncio
class TestCycle:
    """Tests for single polling cycles."""

    async def test_first_cycle_only_initializes_cursor(
        self, chain, registry, store, notifier, poller_config
    ):
        """The first cycle records the height without fetching any block."""
        registry.subscribe(ALICE)
        chain.add_transaction(100, sender=ALICE, recipient=BOB, value=1)
        poller = make_poller(chain, registry, store, notifier, poller_config)

        result = await poller.poll_once()

        assert result["status"] == "initialized"
        assert poller.cursor == 100
        assert chain.block_requests == []
        assert store.count() == 0
        assert notifier.sent == []

    async def test_scans_new_blocks_and_advances(
        self, chain, registry, store, notifier, poller_config
    ):
        """Blocks cursor+1..height are scanned once and matches stored."""
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)

        chain.set_height(103)
        chain.add_transaction(101, sender=ALICE, recipient=BOB, value=5, tx_hash="0xa1")
        chain.add_transaction(102, sender=BOB, recipient=CAROL, value=6, tx_hash="0xb2")
        chain.add_transaction(103, sender=CAROL, recipient=ALICE, value=7, tx_hash="0xc3")

        result = await poller.poll_once()

        assert result["status"] == "success"
        assert result["cursor_before"] == 100
        assert result["chain_height"] == 103
        assert result["blocks_processed"] == 3
        assert result["transactions_matched"] == 2
        assert poller.cursor == 103
        assert chain.block_requests == [101, 102, 103]
        assert [tx.hash for tx in store.list(ALICE)] == ["0xa1", "0xc3"]
        assert [tx.block_number for tx in store.list(ALICE)] == [101, 103]

    async def test_one_notification_per_match(
        self, chain, registry, store, notifier, poller_config
    ):
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(101)
        chain.add_transaction(101, sender=ALICE, recipient=BOB, tx_hash="0xa1")
        chain.add_transaction(101, sender=BOB, recipient=ALICE, tx_hash="0xa2")

        result = await poller.poll_once()

        assert result["notifications_sent"] == 2
        assert [(tx.hash, address, url) for tx, address, url in notifier.sent] == [
            ("0xa1", ALICE, poller_config.webhook_url),
            ("0xa2", ALICE, poller_config.webhook_url),
        ]

    async def test_transaction_between_two_watched_addresses(
        self, chain, registry, store, notifier, poller_config
    ):
        """A transfer between two watched addresses is recorded for each."""
        registry.subscribe(ALICE)
        registry.subscribe(BOB)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(101)
        chain.add_transaction(101, sender=ALICE, recipient=BOB, tx_hash="0xab")

        await poller.poll_once()

        assert [tx.hash for tx in store.list(ALICE)] == ["0xab"]
        assert [tx.hash for tx in store.list(BOB)] == ["0xab"]
        assert sorted(address for _, address, _ in notifier.sent) == sorted([ALICE, BOB])

    async def test_no_new_blocks(self, chain, registry, store, notifier, poller_config):
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)

        result = await poller.poll_once()

        assert result["status"] == "success"
        assert result["blocks_processed"] == 0
        assert poller.cursor == 100
        assert chain.block_requests == []

    async def test_no_subscriptions_still_advances(
        self, chain, registry, store, notifier, poller_config
    ):
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(105)

        result = await poller.poll_once()

        assert result["blocks_processed"] == 5
        assert poller.cursor == 105
        assert chain.block_requests == []

    async def test_height_behind_cursor_leaves_cursor(
        self, chain, registry, store, notifier, poller_config
    ):
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(90)

        result = await poller.poll_once()

        assert result["status"] == "success"
        assert poller.cursor == 100
        assert chain.block_requests == []

    async def test_height_failure_skips_cycle(
        self, chain, registry, store, notifier, poller_config
    ):
        """A failed height query changes nothing; the next cycle catches up."""
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(102)
        chain.add_transaction(101, sender=ALICE, recipient=BOB, tx_hash="0xa1")
        chain.fail_height()

        failed = await poller.poll_once()

        assert failed["status"] == "failed"
        assert poller.cursor == 100
        assert chain.block_requests == []

        recovered = await poller.poll_once()

        assert recovered["status"] == "success"
        assert poller.cursor == 102
        assert [tx.hash for tx in store.list(ALICE)] == ["0xa1"]

    async def test_height_failure_before_initialization(
        self, chain, registry, store, notifier, poller_config
    ):
        chain.fail_height()
        poller = make_poller(chain, registry, store, notifier, poller_config)

        result = await poller.poll_once()

        assert result["status"] == "failed"
        assert poller.cursor is None


@pytest.mark.asyncio
class TestLookupFailures:
    """Tests for failed per-address lookups."""

    async def test_transient_failure_is_retried(
        self, chain, registry, store, notifier, poller_config
    ):
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(101)
        chain.add_transaction(101, sender=ALICE, recipient=BOB, tx_hash="0xa1")
        chain.fail_block(101, times=2)

        result = await poller.poll_once()

        assert result["status"] == "success"
        assert chain.block_requests == [101, 101, 101]
        assert [tx.hash for tx in store.list(ALICE)] == ["0xa1"]

    async def test_exhausted_lookup_is_skipped_for_good(
        self, chain, registry, store, notifier, poller_config
    ):
        """After three failed attempts the block is abandoned for that address."""
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(102)
        chain.add_transaction(101, sender=ALICE, recipient=BOB, tx_hash="0xlost")
        chain.add_transaction(102, sender=ALICE, recipient=BOB, tx_hash="0xkept")
        chain.fail_block(101, times=3)

        result = await poller.poll_once()

        assert result["status"] == "partial"
        assert result["lookup_failures"] == 1
        assert poller.cursor == 102
        assert chain.block_requests == [101, 101, 101, 102]
        assert [tx.hash for tx in store.list(ALICE)] == ["0xkept"]

        chain.block_requests.clear()
        await poller.poll_once()

        assert chain.block_requests == []
        assert [tx.hash for tx in store.list(ALICE)] == ["0xkept"]

    async def test_failure_is_isolated_per_address(
        self, chain, registry, store, notifier, poller_config
    ):
        registry.subscribe(ALICE)
        registry.subscribe("0x1234")
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(101)
        chain.add_transaction(101, sender=ALICE, recipient=BOB, tx_hash="0xa1")

        result = await poller.poll_once()

        assert result["status"] == "partial"
        assert result["lookup_failures"] == 1
        assert [tx.hash for tx in store.list(ALICE)] == ["0xa1"]
        assert store.list("0x1234") == []

    async def test_invalid_address_is_not_retried(
        self, chain, registry, store, notifier, poller_config
    ):
        registry.subscribe("not-an-address")
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(103)

        result = await poller.poll_once()

        assert result["lookup_failures"] == 3
        assert chain.block_requests == []
        assert poller.cursor == 103

    async def test_malformed_block_is_lookup_failure(
        self, chain, registry, store, notifier, poller_config
    ):
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(101)
        chain.put_raw_block(101, {"number": "0x65", "transactions": ["0xdeadbeef"]})

        result = await poller.poll_once()

        assert result["status"] == "partial"
        assert poller.cursor == 101
        assert store.count() == 0

    async def test_unexpected_error_is_isolated_per_address(
        self, registry, store, notifier, poller_config
    ):
        """A non-chain error fails only that address's lookups; the cursor still moves."""
        chain = BrokenLookupChain(CAROL, height=100)
        registry.subscribe(ALICE)
        registry.subscribe(CAROL)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(102)
        chain.add_transaction(101, sender=ALICE, recipient=CAROL, tx_hash="0xa1")
        chain.add_transaction(102, sender=CAROL, recipient=ALICE, tx_hash="0xb2")

        result = await poller.poll_once()

        assert result["status"] == "partial"
        assert result["lookup_failures"] == 2
        assert poller.cursor == 102
        assert [tx.hash for tx in store.list(ALICE)] == ["0xa1", "0xb2"]
        assert store.list(CAROL) == []

        await poller.poll_once()

        assert [tx.hash for tx in store.list(ALICE)] == ["0xa1", "0xb2"]
        assert len(notifier.sent) == 2

    async def test_deadline_stops_retries_but_cursor_advances(
        self, registry, store, notifier
    ):
        chain = MockChainClient(height=100, latency_ms=30)
        config = PollerConfig(cycle_timeout_seconds=0.01, webhook_url="https://sink.example/notify")
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, config)
        chain.set_height(102)
        chain.fail_block(101, times=3)

        result = await poller.poll_once()

        assert chain.block_requests == [101, 102]
        assert poller.cursor == 102
        assert result["status"] == "partial"
        assert poller.metrics.get_last_run().deadline_exceeded is True


@pytest.mark.asyncio
class TestNotificationFailures:
    """Tests for failed webhook deliveries."""

    async def test_delivery_failure_keeps_stored_match(
        self, chain, registry, store, poller_config
    ):
        notifier = RecordingNotifier(fail=True)
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(101)
        chain.add_transaction(101, sender=ALICE, recipient=BOB, tx_hash="0xa1")

        result = await poller.poll_once()

        assert result["status"] == "partial"
        assert result["notification_failures"] == 1
        assert result["notifications_sent"] == 0
        assert poller.cursor == 101
        assert [tx.hash for tx in store.list(ALICE)] == ["0xa1"]

    async def test_malformed_sink_url_counts_as_failed_delivery(
        self, chain, registry, store, poller_config
    ):
        """A sink URL httpx cannot parse fails delivery without stalling the cursor."""
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return httpx.Response(200)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = WebhookNotifier(http_client=http)
        config = poller_config.model_copy(
            update={"webhook_url": "http://sink.example:notaport/notify"}
        )
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, config)
        chain.set_height(102)
        chain.add_transaction(101, sender=ALICE, recipient=BOB, tx_hash="0xa1")

        results = [await poller.poll_once() for _ in range(3)]

        assert [r["status"] for r in results] == ["partial", "success", "success"]
        assert results[0]["notification_failures"] == 1
        assert poller.cursor == 102
        assert [tx.hash for tx in store.list(ALICE)] == ["0xa1"]
        assert sent == []
        await http.aclose()

    async def test_unexpected_notifier_error_keeps_cycle_going(
        self, chain, registry, store, poller_config
    ):
        registry.subscribe(ALICE)
        poller = await initialized_poller(
            chain, registry, store, CrashingNotifier(), poller_config
        )
        chain.set_height(102)
        chain.add_transaction(101, sender=ALICE, recipient=BOB, tx_hash="0xa1")
        chain.add_transaction(102, sender=BOB, recipient=ALICE, tx_hash="0xb2")

        result = await poller.poll_once()

        assert result["status"] == "partial"
        assert result["notification_failures"] == 2
        assert poller.cursor == 102
        assert [tx.hash for tx in store.list(ALICE)] == ["0xa1", "0xb2"]

    async def test_notifications_can_be_disabled(
        self, chain, registry, store, notifier, poller_config
    ):
        config = poller_config.model_copy(update={"notify_enabled": False})
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, config)
        chain.set_height(101)
        chain.add_transaction(101, sender=ALICE, recipient=BOB)

        await poller.poll_once()

        assert store.count(ALICE) == 1
        assert notifier.sent == []


@pytest.mark.asyncio
class TestConcurrency:
    """Tests for subscriptions and cycles that overlap."""

    async def test_subscription_during_cycle_applies_to_later_blocks(
        self, registry, store, notifier, poller_config
    ):
        chain = SubscribingChain(registry, trigger_block=101, address=BOB, height=100)
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(102)
        chain.add_transaction(101, sender=ALICE, recipient=BOB, tx_hash="0xa1")
        chain.add_transaction(102, sender=CAROL, recipient=BOB, tx_hash="0xb2")

        await poller.poll_once()

        assert [tx.hash for tx in store.list(ALICE)] == ["0xa1"]
        assert [tx.hash for tx in store.list(BOB)] == ["0xb2"]

    async def test_overlapping_cycle_is_skipped(
        self, registry, store, notifier, poller_config
    ):
        chain = MockChainClient(height=100, latency_ms=50)
        poller = make_poller(chain, registry, store, notifier, poller_config)

        first, second = await asyncio.gather(poller.poll_once(), poller.poll_once())

        assert first["status"] == "initialized"
        assert second["status"] == "skipped"
        assert chain.height_requests == 1


@pytest.mark.asyncio
class TestLifecycle:
    """Tests for the background polling loop."""

    async def test_start_and_stop(self, chain, registry, store, notifier, poller_config):
        registry.subscribe(ALICE)
        poller = make_poller(chain, registry, store, notifier, poller_config)

        await poller.start()
        assert poller.running
        await asyncio.sleep(0.2)
        chain.set_height(101)
        chain.add_transaction(101, sender=BOB, recipient=ALICE, tx_hash="0xa1")
        await asyncio.sleep(0.2)
        await poller.stop()

        assert not poller.running
        assert poller.state == PollerState.IDLE
        assert poller.cursor == 101
        assert [tx.hash for tx in store.list(ALICE)] == ["0xa1"]

        requests = chain.height_requests
        await asyncio.sleep(0.15)
        assert chain.height_requests == requests

    async def test_run_on_startup(self, chain, registry, store, notifier, poller_config):
        config = poller_config.model_copy(
            update={"run_on_startup": True, "poll_interval_seconds": 60}
        )
        poller = make_poller(chain, registry, store, notifier, config)

        await poller.start()
        try:
            assert poller.cursor == 100
        finally:
            await poller.stop()

    async def test_start_twice_is_noop(self, chain, registry, store, notifier, poller_config):
        poller = make_poller(chain, registry, store, notifier, poller_config)
        await poller.start()
        task = poller._task
        await poller.start()
        assert poller._task is task
        await poller.stop()

    async def test_stop_when_not_running(self, chain, registry, store, notifier, poller_config):
        poller = make_poller(chain, registry, store, notifier, poller_config)
        await poller.stop()
        assert not poller.running

    async def test_disabled_poller_does_not_poll(
        self, chain, registry, store, notifier, poller_config
    ):
        config = poller_config.model_copy(update={"enabled": False})
        poller = make_poller(chain, registry, store, notifier, config)

        await poller.start()
        await asyncio.sleep(0.15)
        await poller.stop()

        assert chain.height_requests == 0
        assert poller.cursor is None


@pytest.mark.asyncio
class TestStatus:
    """Tests for status and metrics reporting."""

    async def test_status(self, chain, registry, store, notifier, poller_config):
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(101)
        chain.add_transaction(101, sender=ALICE, recipient=BOB)
        await poller.poll_once()

        status = poller.get_status()

        assert status["running"] is False
        assert status["state"] == "idle"
        assert status["cursor"] == 101
        assert status["subscriptions"] == 1
        assert status["stored_transactions"] == 1
        assert status["addresses_with_transactions"] == 1
        assert status["last_run"]["status"] == "success"
        assert status["config"]["source"] == "mock"
        assert status["config"]["max_attempts"] == 3
        assert status["last_poll_time"] is not None

    async def test_metrics(self, chain, registry, store, notifier, poller_config):
        registry.subscribe(ALICE)
        poller = await initialized_poller(chain, registry, store, notifier, poller_config)
        chain.set_height(102)
        chain.add_transaction(102, sender=ALICE, recipient=BOB)
        await poller.poll_once()

        metrics = poller.get_metrics()

        assert metrics["aggregate"]["total_runs"] == 2
        assert metrics["aggregate"]["total_blocks"] == 2
        assert metrics["aggregate"]["total_matches"] == 1
        assert len(metrics["recent_runs"]) == 2
