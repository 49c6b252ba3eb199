"""In-memory usage ledger with budget enforcement.

Every provider attempt (successful or not) becomes one immutable
:class:`UsageRecord`. The ledger keeps the most recent ``history_size``
records for aggregation and export; long-horizon analytics belong to the
external store. Each record also:

- adds its cost to the provider's in-memory month-to-date total and runs
  :meth:`UsageLedger.enforce_budget` against it before returning, so the
  next selection already sees a provider that went over its limit;
- pushes the same cost to the persistent counter, through the persistence
  worker while it is running and synchronously otherwise;
- updates the provider's health record, so real traffic moves health as well
  as synthetic probes.
"""

from __future__ import annotations

import csv
import io
import json
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from switchyard.constants import (
    DEFAULT_HISTORY_SIZE,
    DEFAULT_STATS_WINDOW_DAYS,
    HIGH_COST_LOG_THRESHOLD_USD,
)
from switchyard.logging import get_logger
from switchyard.usage.store import UsageStore

if TYPE_CHECKING:
    from switchyard.health.monitor import HealthMonitor
    from switchyard.usage.persistence import UsagePersistenceWorker

log = get_logger("switchyard.usage.ledger")

EXPORT_COLUMNS = (
    "timestamp",
    "provider",
    "task_type",
    "model",
    "tokens_used",
    "cost",
    "duration_ms",
    "success",
    "error_message",
)


@dataclass(frozen=True)
class UsageRecord:
    """One provider attempt."""

    provider: str
    task_type: str
    tokens_used: int
    cost: float
    duration_ms: float
    success: bool
    timestamp: datetime
    model: str
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serialisable dictionary."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class ProviderStats:
    """Aggregates for one provider within a stats window."""

    tokens: int = 0
    cost: float = 0.0
    calls: int = 0
    avg_latency: float = 0.0
    success_rate: float = 0.0
    last_used: datetime | None = None


@dataclass
class TaskStats:
    """Aggregates for one task type within a stats window."""

    tokens: int = 0
    cost: float = 0.0
    calls: int = 0
    avg_latency: float = 0.0


@dataclass
class UsageStats:
    """Aggregated usage over a time window."""

    total_tokens: int
    total_cost: float
    average_latency: float
    success_rate: float
    request_count: int
    by_provider: dict[str, ProviderStats] = field(default_factory=dict)
    by_task: dict[str, TaskStats] = field(default_factory=dict)
    time_from: datetime | None = None
    time_to: datetime | None = None

    @classmethod
    def empty(cls, time_from: datetime, time_to: datetime) -> UsageStats:
        """Well-defined result for a window with no records."""
        return cls(
            total_tokens=0,
            total_cost=0.0,
            average_latency=0.0,
            success_rate=0.0,
            request_count=0,
            time_from=time_from,
            time_to=time_to,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serialisable dictionary."""
        return {
            "total_tokens": self.total_tokens,
            "total_cost": round(self.total_cost, 6),
            "average_latency": round(self.average_latency, 2),
            "success_rate": round(self.success_rate, 4),
            "request_count": self.request_count,
            "by_provider": {
                name: {
                    "tokens": s.tokens,
                    "cost": round(s.cost, 6),
                    "calls": s.calls,
                    "avg_latency": round(s.avg_latency, 2),
                    "success_rate": round(s.success_rate, 4),
                    "last_used": s.last_used.isoformat() if s.last_used else None,
                }
                for name, s in self.by_provider.items()
            },
            "by_task": {
                name: {
                    "tokens": s.tokens,
                    "cost": round(s.cost, 6),
                    "calls": s.calls,
                    "avg_latency": round(s.avg_latency, 2),
                }
                for name, s in self.by_task.items()
            },
            "time_range": {
                "from": self.time_from.isoformat() if self.time_from else None,
                "to": self.time_to.isoformat() if self.time_to else None,
            },
        }


class BudgetStatus(Enum):
    """Outcome of a budget check."""

    UNLIMITED = "unlimited"
    OK = "ok"
    WARNING = "warning"
    EXCEEDED = "exceeded"


class UsageLedger:
    """Bounded record of provider attempts plus budget enforcement."""

    def __init__(
        self,
        store: UsageStore,
        health_monitor: HealthMonitor | None = None,
        persistence: UsagePersistenceWorker | None = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
        warning_pct: float = 90.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the ledger.

        Args:
            store: External usage counter store (budget source of truth).
            health_monitor: Monitor that receives every attempt's outcome.
            persistence: Worker that writes cost deltas to ``store``. When
                omitted or not running, deltas are written synchronously.
            history_size: Maximum records kept in memory (oldest evicted).
            warning_pct: Percentage of the monthly limit that logs a warning.
            clock: Optional time source (defaults to ``datetime.now(UTC)``).
        """
        self._store = store
        self._health = health_monitor
        self._persistence = persistence
        self._warning_pct = warning_pct
        self._clock = clock or (lambda: datetime.now(UTC))
        self._history: deque[UsageRecord] = deque(maxlen=history_size)
        self._disabled: set[str] = set()
        # Month-to-date spend per provider, ahead of the store by any queued deltas
        self._spend: dict[str, float] = {}
        self._lock = threading.Lock()

        if persistence is not None:
            persistence.set_on_persisted(self.enforce_budget)

    @property
    def record_count(self) -> int:
        """Number of records currently held in memory."""
        with self._lock:
            return len(self._history)

    @property
    def history_size(self) -> int:
        """Maximum number of records held in memory."""
        return self._history.maxlen or 0

    def now(self) -> datetime:
        """Current time according to the ledger's clock."""
        return self._clock()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self, record: UsageRecord) -> None:
        """Record one provider attempt.

        Never raises: counter and health side effects are best-effort.
        """
        with self._lock:
            self._history.append(record)

        self._track_spend(record)
        self._push_cost(record)
        self.enforce_budget(record.provider)

        if self._health is not None:
            try:
                self._health.record_observation(record.provider, record.success, record.duration_ms)
            except Exception:
                log.exception("health_update_failed", provider=record.provider)

        if not record.success or record.cost > HIGH_COST_LOG_THRESHOLD_USD:
            log.info(
                "usage_recorded",
                provider=record.provider,
                task_type=record.task_type,
                model=record.model,
                tokens=record.tokens_used,
                cost_usd=round(record.cost, 6),
                duration_ms=round(record.duration_ms, 2),
                success=record.success,
                error=record.error_message,
            )

    def _track_spend(self, record: UsageRecord) -> None:
        with self._lock:
            known = record.provider in self._spend
        # First sighting: start from what the store already holds for the month
        baseline = 0.0 if known else self._persisted_usage(record.provider)
        with self._lock:
            self._spend[record.provider] = self._spend.get(record.provider, baseline) + record.cost

    def _persisted_usage(self, provider: str) -> float:
        try:
            usage = self._store.get_usage(provider)
        except Exception as e:
            log.error("usage_read_failed", provider=provider, error=str(e))
            return 0.0
        return usage.current_usage if usage is not None else 0.0

    def _push_cost(self, record: UsageRecord) -> None:
        if self._persistence is not None and self._persistence.is_running:
            self._persistence.submit(record.provider, record.cost)
            return

        try:
            self._store.increment_usage(record.provider, record.cost)
        except Exception as e:
            log.error("usage_persist_failed", provider=record.provider, error=str(e))

    def spend(self, provider: str) -> float:
        """Month-to-date spend seen by this ledger, including unpersisted deltas."""
        with self._lock:
            return self._spend.get(provider, 0.0)

    # ------------------------------------------------------------------
    # Budget enforcement
    # ------------------------------------------------------------------

    def enforce_budget(self, provider: str) -> BudgetStatus:
        """Compare a provider's month-to-date spend with its monthly limit.

        Spend is the larger of the stored counter and the ledger's running
        total, so deltas still queued for the store count immediately. At
        100% the provider is deactivated until the next monthly reset; at
        ``warning_pct`` a warning is logged. Errors reading the store are
        logged and reported as ``UNLIMITED``.
        """
        try:
            usage = self._store.get_usage(provider)
        except Exception as e:
            log.error("budget_check_failed", provider=provider, error=str(e))
            return BudgetStatus.UNLIMITED

        if usage is None or not usage.monthly_limit or usage.monthly_limit <= 0:
            return BudgetStatus.UNLIMITED

        with self._lock:
            current = max(usage.current_usage, self._spend.get(provider, 0.0))
        limit = usage.monthly_limit
        pct = current / limit * 100

        if current >= limit:
            with self._lock:
                newly_disabled = provider not in self._disabled
                self._disabled.add(provider)
            if usage.active:
                try:
                    self._store.set_active(provider, False)
                except Exception as e:
                    log.error("provider_deactivate_failed", provider=provider, error=str(e))
            if newly_disabled:
                log.warning(
                    "provider_disabled_budget_exceeded",
                    provider=provider,
                    usage_usd=round(current, 2),
                    limit_usd=round(limit, 2),
                )
            return BudgetStatus.EXCEEDED

        if pct >= self._warning_pct:
            log.warning(
                "provider_approaching_budget",
                provider=provider,
                usage_usd=round(current, 2),
                limit_usd=round(limit, 2),
                percentage=round(pct, 1),
            )
            return BudgetStatus.WARNING

        return BudgetStatus.OK

    def is_provider_active(self, provider: str) -> bool:
        """Whether a provider may still be offered this billing period."""
        with self._lock:
            return provider not in self._disabled

    def disabled_providers(self) -> set[str]:
        """Providers deactivated for the current billing period."""
        with self._lock:
            return set(self._disabled)

    def load_state(self) -> None:
        """Rebuild the deactivated set and running totals from the external store."""
        try:
            rows = self._store.list_usage()
        except Exception as e:
            log.error("usage_state_load_failed", error=str(e))
            return

        with self._lock:
            self._disabled = {row.provider for row in rows if not row.active}
            for row in rows:
                self._spend[row.provider] = max(
                    row.current_usage, self._spend.get(row.provider, 0.0)
                )
        log.info("usage_state_loaded", providers=len(rows), disabled=sorted(self._disabled))

    def reset_monthly_counters(self) -> None:
        """Zero persistent counters and re-enable budget-disabled providers."""
        self._store.reset_monthly_counters()
        with self._lock:
            self._disabled.clear()
            self._spend.clear()
        log.info("ledger_monthly_reset")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def records(
        self,
        provider: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[UsageRecord]:
        """Snapshot of held records, optionally filtered."""
        with self._lock:
            snapshot = list(self._history)
        return [
            r
            for r in snapshot
            if (provider is None or r.provider == provider)
            and (since is None or r.timestamp >= since)
            and (until is None or r.timestamp <= until)
        ]

    def stats_for(
        self,
        provider: str | None = None,
        days: int = DEFAULT_STATS_WINDOW_DAYS,
    ) -> UsageStats:
        """Aggregate usage for the last ``days`` days.

        Args:
            provider: Optional provider filter.
            days: Window size in days.

        Returns:
            UsageStats; all zeros when nothing matches.
        """
        now = self._clock()
        cutoff = now - timedelta(days=days)
        relevant = self.records(provider=provider, since=cutoff)
        if not relevant:
            return UsageStats.empty(cutoff, now)

        by_provider: dict[str, ProviderStats] = {}
        by_task: dict[str, TaskStats] = {}
        provider_duration: dict[str, float] = {}
        provider_successes: dict[str, int] = {}
        task_duration: dict[str, float] = {}

        for r in relevant:
            ps = by_provider.setdefault(r.provider, ProviderStats(last_used=r.timestamp))
            ps.tokens += r.tokens_used
            ps.cost += r.cost
            ps.calls += 1
            provider_duration[r.provider] = provider_duration.get(r.provider, 0.0) + r.duration_ms
            if r.success:
                provider_successes[r.provider] = provider_successes.get(r.provider, 0) + 1
            if ps.last_used is None or r.timestamp > ps.last_used:
                ps.last_used = r.timestamp

            ts = by_task.setdefault(r.task_type, TaskStats())
            ts.tokens += r.tokens_used
            ts.cost += r.cost
            ts.calls += 1
            task_duration[r.task_type] = task_duration.get(r.task_type, 0.0) + r.duration_ms

        for name, ps in by_provider.items():
            ps.avg_latency = provider_duration[name] / ps.calls
            ps.success_rate = provider_successes.get(name, 0) / ps.calls
        for name, ts in by_task.items():
            ts.avg_latency = task_duration[name] / ts.calls

        count = len(relevant)
        return UsageStats(
            total_tokens=sum(r.tokens_used for r in relevant),
            total_cost=sum(r.cost for r in relevant),
            average_latency=sum(r.duration_ms for r in relevant) / count,
            success_rate=sum(1 for r in relevant if r.success) / count,
            request_count=count,
            by_provider=by_provider,
            by_task=by_task,
            time_from=cutoff,
            time_to=now,
        )

    def export(self, start: datetime, end: datetime, fmt: str = "json") -> str:
        """Dump every record in ``[start, end]`` for offline analysis.

        Args:
            start: Inclusive lower bound.
            end: Inclusive upper bound.
            fmt: ``"json"`` or ``"csv"``.

        Returns:
            The serialised records.

        Raises:
            ValueError: If ``fmt`` is not supported.
        """
        relevant = self.records(since=start, until=end)

        if fmt == "json":
            return json.dumps([r.to_dict() for r in relevant], indent=2)

        if fmt == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(EXPORT_COLUMNS)
            for r in relevant:
                row = r.to_dict()
                row["error_message"] = row["error_message"] or ""
                writer.writerow([row[col] for col in EXPORT_COLUMNS])
            return buffer.getvalue()

        raise ValueError(f"Unsupported export format: {fmt}")
