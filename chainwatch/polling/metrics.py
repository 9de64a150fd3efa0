"""
Block poller metrics.

One CycleMetrics record per polling cycle: heights seen, blocks walked,
lookups and their failures, deliveries, node latency. Finished records
go into a bounded history that the status endpoint and the CLI read.
"""

from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CycleStatus(str, Enum):
    """Outcome of a polling cycle."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Cursor advanced, but some lookups or deliveries failed
    FAILED = "failed"  # Cursor unchanged
    SKIPPED = "skipped"  # Another cycle was in progress
    INITIALIZED = "initialized"  # First cycle, cursor set without scanning


@dataclass
class CycleMetrics:
    """Counters for one polling cycle."""

    run_id: str
    started_at: datetime
    source: str = "unknown"
    ended_at: Optional[datetime] = None
    status: CycleStatus = CycleStatus.SUCCESS

    cursor_before: Optional[int] = None
    chain_height: Optional[int] = None

    blocks_processed: int = 0
    lookups: int = 0
    lookup_failures: int = 0
    transactions_matched: int = 0
    notifications_sent: int = 0
    notification_failures: int = 0

    rpc_calls: int = 0
    rpc_latency_seconds: float = 0.0
    duration_seconds: float = 0.0
    deadline_exceeded: bool = False

    errors: List[str] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def failures(self) -> int:
        return self.lookup_failures + self.notification_failures

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.update(
            started_at=self.started_at.isoformat(),
            ended_at=self.ended_at.isoformat() if self.ended_at else None,
            status=self.status.value,
            error_count=self.error_count,
        )
        return data


@dataclass
class AggregateMetrics:
    """Totals and averages over a window of finished cycles."""

    total_runs: int = 0
    successful_runs: int = 0
    partial_runs: int = 0
    failed_runs: int = 0
    skipped_runs: int = 0

    total_blocks: int = 0
    total_matches: int = 0
    total_lookup_failures: int = 0
    total_notification_failures: int = 0
    total_errors: int = 0

    avg_duration_seconds: float = 0.0
    avg_rpc_latency_seconds: float = 0.0

    first_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None

    @classmethod
    def from_runs(cls, runs: List[CycleMetrics]) -> "AggregateMetrics":
        """Aggregate ``runs``, given oldest first."""
        if not runs:
            return cls()

        statuses = Counter(run.status for run in runs)
        count = len(runs)
        successes = [r.started_at for r in runs if r.status == CycleStatus.SUCCESS]
        failures = [r.started_at for r in runs if r.status == CycleStatus.FAILED]

        return cls(
            total_runs=count,
            # Initializing the cursor is a successful cycle that scanned nothing
            successful_runs=statuses[CycleStatus.SUCCESS] + statuses[CycleStatus.INITIALIZED],
            partial_runs=statuses[CycleStatus.PARTIAL],
            failed_runs=statuses[CycleStatus.FAILED],
            skipped_runs=statuses[CycleStatus.SKIPPED],
            total_blocks=sum(r.blocks_processed for r in runs),
            total_matches=sum(r.transactions_matched for r in runs),
            total_lookup_failures=sum(r.lookup_failures for r in runs),
            total_notification_failures=sum(r.notification_failures for r in runs),
            total_errors=sum(r.error_count for r in runs),
            avg_duration_seconds=sum(r.duration_seconds for r in runs) / count,
            avg_rpc_latency_seconds=sum(r.rpc_latency_seconds for r in runs) / count,
            first_run=runs[0].started_at,
            last_run=runs[-1].started_at,
            last_success=successes[-1] if successes else None,
            last_failure=failures[-1] if failures else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("first_run", "last_run", "last_success", "last_failure"):
            value = getattr(self, key)
            data[key] = value.isoformat() if value else None
        return data


class PollerMetrics:
    """
    In-memory metrics for the block poller.

    Holds the cycle in progress, if any, and the most recent
    ``history_size`` finished cycles. Recording calls made while no cycle
    is open are ignored.
    """

    def __init__(self, history_size: int = 100):
        self.history_size = history_size
        self._current: Optional[CycleMetrics] = None
        self._history: Deque[CycleMetrics] = deque(maxlen=history_size)
        self._sequence = 0

    def start_run(self, source: str, cursor: Optional[int]) -> str:
        """Open a cycle record and return its id."""
        self._sequence += 1
        started = _utcnow()
        self._current = CycleMetrics(
            run_id=f"cycle-{started:%Y%m%d-%H%M%S}-{self._sequence}",
            started_at=started,
            source=source,
            cursor_before=cursor,
        )
        return self._current.run_id

    def end_run(self, status: CycleStatus = CycleStatus.SUCCESS) -> Optional[CycleMetrics]:
        """Close the open cycle with ``status`` and move it into the history."""
        run, self._current = self._current, None
        if run is None:
            return None

        run.ended_at = _utcnow()
        run.status = status
        run.duration_seconds = (run.ended_at - run.started_at).total_seconds()
        self._history.append(run)
        return run

    def record_rpc_call(self, latency_seconds: float):
        if self._current:
            self._current.rpc_calls += 1
            self._current.rpc_latency_seconds += latency_seconds

    def record_height(self, height: int):
        if self._current:
            self._current.chain_height = height

    def record_block(self):
        if self._current:
            self._current.blocks_processed += 1

    def record_lookup(self, matched: int = 0, failed: bool = False):
        """Count one per-address block lookup and what it matched."""
        if self._current:
            self._current.lookups += 1
            self._current.transactions_matched += matched
            self._current.lookup_failures += int(failed)

    def record_notification(self, delivered: bool):
        if not self._current:
            return
        if delivered:
            self._current.notifications_sent += 1
        else:
            self._current.notification_failures += 1

    def record_deadline_exceeded(self):
        if self._current:
            self._current.deadline_exceeded = True

    def record_error(self, error: str):
        if self._current:
            self._current.errors.append(error)

    def get_current_run(self) -> Optional[CycleMetrics]:
        return self._current

    def get_last_run(self) -> Optional[CycleMetrics]:
        return self._history[-1] if self._history else None

    def get_history(self, limit: Optional[int] = None) -> List[CycleMetrics]:
        """Finished cycles, newest first, at most ``limit`` of them."""
        newest_first = list(reversed(self._history))
        return newest_first[:limit] if limit else newest_first

    def _window(self, hours: Optional[int]) -> List[CycleMetrics]:
        if not hours:
            return list(self._history)
        cutoff = _utcnow() - timedelta(hours=hours)
        return [run for run in self._history if run.started_at >= cutoff]

    def get_aggregate_metrics(self, hours: Optional[int] = None) -> AggregateMetrics:
        """Aggregate the cycles of the last ``hours`` hours (all when None)."""
        return AggregateMetrics.from_runs(self._window(hours))

    def get_success_rate(self, hours: Optional[int] = None) -> float:
        """Share of successful cycles in the window, 0.0 when there are none."""
        aggregate = self.get_aggregate_metrics(hours)
        if not aggregate.total_runs:
            return 0.0
        return aggregate.successful_runs / aggregate.total_runs
