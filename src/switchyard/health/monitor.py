"""Background health monitoring for generation providers.

The monitor keeps one :class:`HealthRecord` per provider. Records are fed
from two directions:

1. A periodic probe loop that issues a lightweight connection test to every
   provider, independent of real traffic, so outages are noticed while idle.
2. The usage ledger, which reports the outcome of every real attempt via
   :meth:`HealthMonitor.record_observation`.

``is_healthy`` flips on a single observation and is what the selector uses
to skip providers. ``success_rate`` and ``average_latency_ms`` only ever move
through the exponentially weighted update, so one success cannot erase a
long failure history.
"""

import asyncio
import contextlib
import threading
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from switchyard.constants import (
    DEFAULT_EWMA_ALPHA,
    DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS,
    DEFAULT_PROBE_TIMEOUT_SECONDS,
)
from switchyard.logging import get_logger

log = get_logger("switchyard.health.monitor")

Prober = Callable[[str], Awaitable[bool]]


@dataclass
class HealthConfig:
    """Configuration for the health monitor."""

    # How often to probe every provider (in seconds)
    interval_seconds: float = DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS

    # Delay before the first probe after start()
    initial_delay_seconds: float = 1.0

    # Per-probe timeout; a timeout counts as a failed probe
    probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS

    # Weight of the newest sample in the moving averages
    ewma_alpha: float = DEFAULT_EWMA_ALPHA


@dataclass
class HealthRecord:
    """Rolling health state of one provider."""

    provider: str
    is_healthy: bool = True
    last_checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    consecutive_failures: int = 0
    average_latency_ms: float = 0.0
    success_rate: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["last_checked_at"] = self.last_checked_at.isoformat()
        return data


@dataclass
class HealthStats:
    """Statistics about probe execution."""

    total_rounds: int = 0
    total_probes: int = 0
    failed_probes: int = 0
    timed_out_probes: int = 0
    last_round: datetime | None = None


class HealthMonitor:
    """Tracks provider health from periodic probes and real traffic."""

    def __init__(
        self,
        prober: Prober | None,
        providers: Iterable[str] = (),
        config: HealthConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the health monitor.

        Args:
            prober: Async callable returning True when a provider answers a
                connection test. Without a prober only real traffic updates
                health.
            providers: Providers to probe.
            config: Monitor configuration.
            clock: Optional time source (defaults to ``datetime.now(UTC)``).
        """
        self._prober = prober
        self._providers = list(dict.fromkeys(providers))
        self._config = config or HealthConfig()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._records: dict[str, HealthRecord] = {}
        self._lock = threading.Lock()
        self._stats = HealthStats()
        self._running = False
        self._task: asyncio.Task[None] | None = None

        log.info(
            "health_monitor_initialized",
            providers=self._providers,
            interval=self._config.interval_seconds,
        )

    @property
    def config(self) -> HealthConfig:
        """Get the monitor configuration."""
        return self._config

    @property
    def stats(self) -> HealthStats:
        """Get probe statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if the probe loop is running."""
        return self._running

    @property
    def providers(self) -> list[str]:
        """Get the providers being probed."""
        return list(self._providers)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background probe loop."""
        if self._running:
            log.warning("health_monitor_already_running")
            return
        if self._prober is None:
            log.info("health_monitor_no_prober")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        log.info("health_monitor_started")

    async def stop(self) -> None:
        """Stop the background probe loop."""
        self._running = False
        task = self._task
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            self._task = None
        log.info("health_monitor_stopped")

    async def _run_loop(self) -> None:
        """Probe once shortly after start-up, then on every interval."""
        await asyncio.sleep(self._config.initial_delay_seconds)
        while self._running:
            try:
                await self.check_all()
            except Exception as e:
                log.error("health_round_error", error=str(e))
            await asyncio.sleep(self._config.interval_seconds)

    # ------------------------------------------------------------------
    # Probing
    # ------------------------------------------------------------------

    async def check_all(self) -> dict[str, HealthRecord]:
        """Probe every provider concurrently.

        Each probe carries its own timeout, so a hung provider never delays
        the others.

        Returns:
            Updated records keyed by provider.
        """
        self._stats.total_rounds += 1
        self._stats.last_round = self._clock()
        records = await asyncio.gather(*(self.check_provider(p) for p in self._providers))
        return {record.provider: record for record in records}

    async def check_provider(self, provider: str) -> HealthRecord:
        """Probe a single provider and fold the outcome into its record.

        Never raises: exceptions and timeouts count as failed probes.
        """
        if self._prober is None:
            log.debug("health_probe_skipped", provider=provider)
            return self.get_record(provider)

        self._stats.total_probes += 1
        start = time.perf_counter()
        ok = False
        try:
            ok = bool(
                await asyncio.wait_for(
                    self._prober(provider), timeout=self._config.probe_timeout_seconds
                )
            )
        except TimeoutError:
            self._stats.timed_out_probes += 1
            log.warning(
                "health_probe_timeout",
                provider=provider,
                timeout=self._config.probe_timeout_seconds,
            )
        except Exception as e:
            log.warning("health_probe_failed", provider=provider, error=str(e))

        latency_ms = (time.perf_counter() - start) * 1000
        if not ok:
            self._stats.failed_probes += 1

        record = self._apply(provider, ok, latency_ms, from_probe=True)
        log.debug(
            "health_probe_complete",
            provider=provider,
            healthy=ok,
            latency_ms=round(latency_ms, 2),
            success_rate=round(record.success_rate, 4),
        )
        return record

    def record_observation(self, provider: str, success: bool, latency_ms: float) -> HealthRecord:
        """Fold the outcome of a real provider call into its health record.

        Unlike a probe, a successful call only decrements the consecutive
        failure count by one.
        """
        return self._apply(provider, success, latency_ms, from_probe=False)

    def _apply(
        self,
        provider: str,
        success: bool,
        latency_ms: float,
        from_probe: bool,
    ) -> HealthRecord:
        alpha = self._config.ewma_alpha
        with self._lock:
            existing = self._records.get(provider) or HealthRecord(
                provider=provider, last_checked_at=self._clock()
            )
            if success:
                failures = 0 if from_probe else max(0, existing.consecutive_failures - 1)
            else:
                failures = existing.consecutive_failures + 1

            updated = HealthRecord(
                provider=provider,
                is_healthy=success,
                last_checked_at=self._clock(),
                consecutive_failures=failures,
                average_latency_ms=(1 - alpha) * existing.average_latency_ms + alpha * latency_ms,
                success_rate=(1 - alpha) * existing.success_rate + alpha * float(success),
            )
            self._records[provider] = updated
            return replace(updated)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def is_healthy(self, provider: str) -> bool | None:
        """Get the fast health signal for a provider.

        Returns:
            None if the provider has never been observed.
        """
        with self._lock:
            record = self._records.get(provider)
            return None if record is None else record.is_healthy

    def get_record(self, provider: str) -> HealthRecord:
        """Get a copy of a provider's record (optimistic defaults if unseen)."""
        with self._lock:
            record = self._records.get(provider)
            if record is None:
                return HealthRecord(provider=provider, last_checked_at=self._clock())
            return replace(record)

    def get_health_status(self) -> dict[str, HealthRecord]:
        """Get copies of all observed health records."""
        with self._lock:
            return {name: replace(record) for name, record in self._records.items()}
