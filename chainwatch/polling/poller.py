"""
Block poller service.

Periodically discovers new blocks, checks every watched address against
each of them, stores the matches and sends one notification per match.
"""

import asyncio
import time
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import structlog

from chainwatch.chain.clients.base import BaseChainClient, ChainError, InvalidAddress
from chainwatch.chain.models import Transaction
from chainwatch.notifications.webhook import DeliveryError, WebhookNotifier
from chainwatch.polling.config import PollerConfig, get_poller_config
from chainwatch.polling.metrics import CycleMetrics, CycleStatus, PollerMetrics
from chainwatch.polling.retry import retry_with_policy
from chainwatch.storage.memory import TransactionStore
from chainwatch.subscriptions.registry import SubscriptionRegistry

logger = structlog.get_logger()

T = TypeVar("T")


class PollerState(str, Enum):
    """Where the poller is within a cycle."""

    IDLE = "idle"
    POLLING = "polling"  # Height queried, blocks being processed
    ADVANCING = "advancing"  # Range done, cursor moving to the new height


class BlockPoller:
    """
    Main block polling service.

    Owns the poll cursor, the height through which every watched address
    has been checked. The cursor only moves at the end of a cycle and only
    to the height read at the start of that cycle, so every block is
    attempted exactly once even when single lookups fail.
    """

    def __init__(
        self,
        client: BaseChainClient,
        registry: SubscriptionRegistry,
        store: TransactionStore,
        notifier: Optional[WebhookNotifier] = None,
        config: Optional[PollerConfig] = None,
    ):
        """
        Initialize the poller.

        Args:
            client: Chain client used for heights and block lookups
            registry: Watched addresses
            store: Ledger receiving matched transactions
            notifier: Notification sink (defaults to a WebhookNotifier)
            config: Poller configuration (defaults to loaded config)
        """
        self.config = config or get_poller_config()
        self.client = client
        self.registry = registry
        self.store = store
        self.notifier = notifier or WebhookNotifier(timeout=self.config.webhook_timeout)
        self.metrics = PollerMetrics(history_size=self.config.metrics_history_size)

        self.cursor: Optional[int] = None
        self.state = PollerState.IDLE

        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._cycle_lock = asyncio.Lock()

        logger.info(
            "poller.initialized",
            client_type=self.client.get_source_name(),
            poll_interval_seconds=self.config.poll_interval_seconds,
            max_attempts=self.config.retry.max_attempts,
            enabled=self.config.enabled,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        """
        Launch the background loop.

        With ``run_on_startup`` one cycle runs before this returns, which
        sets the cursor right away.
        """
        if self.running:
            logger.warning("poller.start_ignored", reason="already_running")
            return

        self._stop_event.clear()
        logger.info(
            "poller.starting",
            interval_seconds=self.config.poll_interval_seconds,
            run_on_startup=self.config.run_on_startup,
        )
        if self.config.run_on_startup:
            await self.poll_once()

        self._task = asyncio.create_task(self._run_forever(), name="block-poller")

    async def stop(self):
        """
        Ask the loop to exit and wait for it.

        The loop only exits between cycles. A cycle that outlives its
        deadline plus one request timeout is cancelled.
        """
        task, self._task = self._task, None
        if task is None or task.done():
            logger.debug("poller.stop_ignored", reason="not_running")
            return

        self._stop_event.set()
        grace = self.config.cycle_timeout_seconds + self.config.rpc_timeout
        try:
            await asyncio.wait_for(task, timeout=grace)
        except asyncio.TimeoutError:
            logger.warning("poller.stop_timeout", grace_seconds=grace)

        logger.info("poller.stopped", cursor=self.cursor)

    async def _run_forever(self):
        """Sleep one period, run one cycle; repeat until stopped."""
        period = self.config.poll_interval_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=period)
                return
            except asyncio.TimeoutError:
                pass

            if not self.config.enabled:
                logger.debug("poller.disabled")
                continue

            try:
                await self.poll_once()
            except Exception as e:
                logger.error(
                    "poller.cycle_crashed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

    async def poll_once(self) -> Dict[str, Any]:
        """
        Execute a single polling cycle.

        Returns:
            Dictionary with cycle results and metrics
        """
        if self._cycle_lock.locked():
            logger.warning("poll.skipped.cycle_in_progress")
            return {"status": CycleStatus.SKIPPED.value, "reason": "cycle_in_progress"}

        async with self._cycle_lock:
            try:
                return await self._run_cycle()
            finally:
                self.state = PollerState.IDLE

    async def _run_cycle(self) -> Dict[str, Any]:
        run_id = self.metrics.start_run(
            source=self.client.get_source_name(), cursor=self.cursor
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.cycle_timeout_seconds
        self.state = PollerState.POLLING

        logger.info("poll.started", run_id=run_id, cursor=self.cursor)

        try:
            height = await self._timed(self.client.current_height)
        except ChainError as e:
            logger.error(
                "poll.height_failed",
                run_id=run_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self.metrics.record_error(f"Height query failed: {e}")
            return self._finish(CycleStatus.FAILED)

        self.metrics.record_height(height)

        if self.cursor is None:
            self.cursor = height
            logger.info("poll.cursor_initialized", run_id=run_id, cursor=height)
            return self._finish(CycleStatus.INITIALIZED)

        if height < self.cursor:
            logger.warning(
                "poll.height_behind_cursor",
                run_id=run_id,
                height=height,
                cursor=self.cursor,
            )
            return self._finish(CycleStatus.SUCCESS)

        for block_number in range(self.cursor + 1, height + 1):
            await self._process_block(block_number, deadline)

        self.state = PollerState.ADVANCING
        previous = self.cursor
        self.cursor = height

        if loop.time() > deadline:
            self.metrics.record_deadline_exceeded()
            logger.warning(
                "poll.deadline_exceeded",
                run_id=run_id,
                timeout_seconds=self.config.cycle_timeout_seconds,
            )

        current = self.metrics.get_current_run()
        failures = current.failures if current else 0
        status = CycleStatus.PARTIAL if failures else CycleStatus.SUCCESS

        logger.info(
            "poll.cursor_advanced",
            run_id=run_id,
            from_block=previous,
            to_block=height,
        )
        return self._finish(status)

    async def _process_block(self, block_number: int, deadline: float) -> None:
        """Check every watched address against one block."""
        addresses = self.registry.snapshot()
        self.metrics.record_block()

        logger.debug(
            "block.processing", block_number=block_number, addresses=len(addresses)
        )

        for address in addresses:
            lookup = partial(self.client.transactions_for_address, address, block_number)
            try:
                transactions: List[Transaction] = await retry_with_policy(
                    partial(self._timed, lookup),
                    self.config.retry,
                    operation_name="transactions_for_address",
                    deadline=deadline,
                    give_up_on=(InvalidAddress,),
                )
            except Exception as e:
                # Anything outside the chain error types is a client bug; log the trace
                logger.error(
                    "block.lookup_failed",
                    block_number=block_number,
                    address=address,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=not isinstance(e, ChainError),
                )
                self.metrics.record_lookup(failed=True)
                self.metrics.record_error(
                    f"Lookup failed for {address} in block {block_number}: {e}"
                )
                continue

            self.metrics.record_lookup(matched=len(transactions))

            for tx in transactions:
                self.store.append(address, tx)
                logger.info(
                    "block.transaction_matched",
                    block_number=block_number,
                    address=address,
                    tx_hash=tx.hash,
                    contract_creation=tx.is_contract_creation(),
                )
                await self._notify(tx, address)

    async def _notify(self, tx: Transaction, address: str) -> None:
        """Deliver one notification; failures never undo the stored match."""
        if not self.config.notify_enabled:
            return

        try:
            await self.notifier.notify(tx, address, self.config.webhook_url)
        except DeliveryError as e:
            logger.warning(
                "notify.failed",
                tx_hash=tx.hash,
                address=address,
                error=str(e),
            )
            self.metrics.record_notification(delivered=False)
            return
        except Exception as e:
            logger.error(
                "notify.crashed",
                tx_hash=tx.hash,
                address=address,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            self.metrics.record_notification(delivered=False)
            return

        self.metrics.record_notification(delivered=True)

    async def _timed(self, func: Callable[[], Awaitable[T]]) -> T:
        """Await a node call and record its latency."""
        started = time.perf_counter()
        try:
            return await func()
        finally:
            self.metrics.record_rpc_call(time.perf_counter() - started)

    def _finish(self, status: CycleStatus) -> Dict[str, Any]:
        run = self.metrics.end_run(status)
        result = self._cycle_result(run) if run else {"status": status.value}

        logger.info(
            "poll.completed",
            run_id=result.get("run_id"),
            status=status.value,
            blocks=result.get("blocks_processed", 0),
            matched=result.get("transactions_matched", 0),
            lookup_failures=result.get("lookup_failures", 0),
            duration_seconds=result.get("duration_seconds", 0),
        )
        return result

    def _cycle_result(self, run: CycleMetrics) -> Dict[str, Any]:
        return {
            "run_id": run.run_id,
            "status": run.status.value,
            "cursor_before": run.cursor_before,
            "chain_height": run.chain_height,
            "cursor": self.cursor,
            "blocks_processed": run.blocks_processed,
            "transactions_matched": run.transactions_matched,
            "lookup_failures": run.lookup_failures,
            "notifications_sent": run.notifications_sent,
            "notification_failures": run.notification_failures,
            "duration_seconds": run.duration_seconds,
        }

    def get_status(self) -> Dict[str, Any]:
        """Loop state, cursor, ledger size and the last 24 hours of cycles."""
        current = self.metrics.get_current_run()
        last = self.metrics.get_last_run()
        config = self.config

        return {
            "running": self.running,
            "enabled": config.enabled,
            "state": self.state.value,
            "cursor": self.cursor,
            "subscriptions": len(self.registry),
            "stored_transactions": self.store.count(),
            "addresses_with_transactions": len(self.store.addresses()),
            "last_poll_time": last.ended_at.isoformat() if last and last.ended_at else None,
            "current_run": current.to_dict() if current else None,
            "last_run": last.to_dict() if last else None,
            "metrics_24h": self.metrics.get_aggregate_metrics(hours=24).to_dict(),
            "success_rate_24h": self.metrics.get_success_rate(hours=24),
            "config": {
                "poll_interval_seconds": config.poll_interval_seconds,
                "cycle_timeout_seconds": config.cycle_timeout_seconds,
                "max_attempts": config.retry.max_attempts,
                "backoff": config.retry.strategy.value,
                "source": self.client.get_source_name(),
            },
        }

    def get_metrics(self, hours: Optional[int] = None) -> Dict[str, Any]:
        """
        Aggregate cycle metrics.

        Args:
            hours: Only count cycles started in the last N hours (None = all)
        """
        return {
            "enabled": self.config.enabled,
            "aggregate": self.metrics.get_aggregate_metrics(hours).to_dict(),
            "success_rate": self.metrics.get_success_rate(hours),
            "recent_runs": [run.to_dict() for run in self.metrics.get_history(limit=10)],
        }
