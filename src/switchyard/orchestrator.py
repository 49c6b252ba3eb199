"""Caller-facing orchestration surface.

The :class:`Orchestrator` owns every collaborator explicitly: capability
registry, health monitor, usage store, ledger, persistence worker, selector
and dispatch pipeline. Nothing is a module-level singleton, so tests and
embedding applications build exactly the graph they need.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from types import TracebackType

from switchyard.config import Settings, get_settings
from switchyard.dispatch.artifacts import ArtifactStore
from switchyard.dispatch.models import DispatchResult, WorkUnit
from switchyard.dispatch.pipeline import BatchDispatchPipeline, PipelineConfig, ProgressCallback
from switchyard.health.monitor import HealthConfig, HealthMonitor, HealthRecord
from switchyard.logging import get_logger
from switchyard.providers.base import ProviderClient
from switchyard.providers.factory import build_clients
from switchyard.routing.capabilities import Capability, CapabilityRegistry, TaskType, task_key
from switchyard.routing.selector import ProviderSelector, TaskRequirements
from switchyard.usage.ledger import UsageLedger, UsageStats
from switchyard.usage.persistence import UsagePersistenceWorker
from switchyard.usage.reports import (
    CostBreakdown,
    MonthlyUsage,
    ProviderComparison,
    cost_breakdown,
    get_monthly_usage,
    provider_comparison,
)
from switchyard.usage.store import SQLiteUsageStore, UsageStore

log = get_logger("switchyard.orchestrator")

# Capability required by each task type when the caller gives none
_TASK_CAPABILITIES: dict[str, Capability] = {
    TaskType.IMAGE.value: Capability.IMAGE,
    TaskType.RESEARCH.value: Capability.RESEARCH,
    TaskType.MULTIMODAL.value: Capability.MULTIMODAL,
}


def requirements_for(task_type: str | TaskType) -> TaskRequirements:
    """Default requirements for a task type."""
    return TaskRequirements(capability=_TASK_CAPABILITIES.get(task_key(task_type), Capability.TEXT))


class Orchestrator:
    """Routes generative work across providers and tracks its cost."""

    def __init__(
        self,
        clients: Mapping[str, ProviderClient],
        store: UsageStore,
        registry: CapabilityRegistry | None = None,
        health_config: HealthConfig | None = None,
        pipeline_config: PipelineConfig | None = None,
        history_size: int = 10_000,
        warning_pct: float = 90.0,
        persistence_queue_size: int = 1000,
        artifact_store: ArtifactStore | None = None,
    ) -> None:
        """Wire up the orchestration graph.

        Args:
            clients: Provider clients by name; providers without a client are
                never selected.
            store: Persistent usage counter store.
            registry: Capability registry (defaults to the built-in profiles).
            health_config: Health monitor configuration.
            pipeline_config: Default configuration for dispatch batches.
            history_size: Usage records kept in memory.
            warning_pct: Budget warning threshold (percent of limit).
            persistence_queue_size: Pending counter updates before dropping.
            artifact_store: Optional store for generated artifacts.
        """
        self.clients = dict(clients)
        self.store = store
        self.registry = registry or CapabilityRegistry()

        probed = [name for name in self.registry.providers() if name in self.clients]
        self.health = HealthMonitor(
            prober=self._probe if probed else None,
            providers=probed,
            config=health_config,
        )
        self.persistence = UsagePersistenceWorker(store, max_queue_size=persistence_queue_size)
        self.ledger = UsageLedger(
            store,
            health_monitor=self.health,
            persistence=self.persistence,
            history_size=history_size,
            warning_pct=warning_pct,
        )
        self.selector = ProviderSelector(self.registry, self.health, self._is_available)
        self.pipeline_config = pipeline_config or PipelineConfig()
        self.artifact_store = artifact_store
        self.pipeline = self._pipeline_for(self.pipeline_config)
        self._started = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        clients: Mapping[str, ProviderClient] | None = None,
        store: UsageStore | None = None,
        artifact_store: ArtifactStore | None = None,
    ) -> Orchestrator:
        """Build an orchestrator from application settings.

        Args:
            settings: Settings (defaults to :func:`get_settings`).
            clients: Override provider clients (defaults to those with keys).
            store: Override usage store (defaults to SQLite at
                ``usage_db_path``).
            artifact_store: Optional artifact store.
        """
        settings = settings or get_settings()
        return cls(
            clients=clients if clients is not None else build_clients(settings),
            store=store if store is not None else SQLiteUsageStore(settings.usage_db_path),
            health_config=HealthConfig(
                interval_seconds=settings.health_check_interval_seconds,
                initial_delay_seconds=settings.health_check_initial_delay_seconds,
                probe_timeout_seconds=settings.health_probe_timeout_seconds,
                ewma_alpha=settings.health_ewma_alpha,
            ),
            pipeline_config=PipelineConfig(
                preferred_provider=settings.preferred_image_provider,
                concurrency_limit=settings.dispatch_concurrency,
                retry_delay_seconds=settings.dispatch_retry_delay_seconds,
                call_timeout_seconds=settings.provider_call_timeout_seconds,
                quality=settings.image_quality,
            ),
            history_size=settings.usage_history_size,
            warning_pct=settings.budget_warning_pct,
            persistence_queue_size=settings.usage_persistence_queue_size,
            artifact_store=artifact_store,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        """Whether background tasks are running."""
        return self._started

    async def start(self) -> None:
        """Load budget state and start background tasks."""
        if self._started:
            return
        self.ledger.load_state()
        await self.persistence.start()
        await self.health.start()
        self._started = True
        log.info(
            "orchestrator_started",
            providers=sorted(self.clients),
            disabled=sorted(self.ledger.disabled_providers()),
        )

    async def stop(self) -> None:
        """Stop background tasks, flush pending counters and close clients."""
        if not self._started:
            return
        await self.health.stop()
        await self.persistence.stop()
        for name, client in self.clients.items():
            try:
                await client.close()
            except Exception as e:
                log.warning("client_close_failed", provider=name, error=str(e))
        self._started = False
        log.info("orchestrator_stopped")

    async def __aenter__(self) -> Orchestrator:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def select_providers(
        self,
        task_type: str | TaskType,
        requirements: TaskRequirements | None = None,
        preferred_provider: str | None = None,
    ) -> list[str]:
        """Get the ordered candidate providers for a task.

        Raises:
            NoSuitableProviderError: If no provider can serve the task.
        """
        return self.selector.select(
            task_type, requirements or requirements_for(task_type), preferred_provider
        )

    async def process_all(
        self,
        units: Sequence[WorkUnit],
        on_progress: ProgressCallback | None = None,
        task_type: str | TaskType | None = None,
        requirements: TaskRequirements | None = None,
        preferred_provider: str | None = None,
        concurrency_limit: int | None = None,
    ) -> list[DispatchResult]:
        """Process a batch of work units.

        Without overrides the default pipeline configuration is used (image
        generation unless configured otherwise).
        """
        pipeline = self._pipeline_with(task_type, requirements, preferred_provider)
        return await pipeline.process_all(units, on_progress, concurrency_limit)

    async def retry_failed(
        self,
        prior_results: Sequence[DispatchResult],
        task_type: str | TaskType | None = None,
        requirements: TaskRequirements | None = None,
        preferred_provider: str | None = None,
    ) -> list[DispatchResult]:
        """Re-run the failed units of a previous batch once."""
        pipeline = self._pipeline_with(task_type, requirements, preferred_provider)
        return await pipeline.retry_failed(prior_results)

    # ------------------------------------------------------------------
    # Health and usage
    # ------------------------------------------------------------------

    def get_health_status(self) -> dict[str, HealthRecord]:
        """Get a snapshot of every observed provider's health."""
        return self.health.get_health_status()

    def get_usage_stats(self, provider: str | None = None, days: int = 30) -> UsageStats:
        """Aggregate recent usage, optionally for one provider."""
        return self.ledger.stats_for(provider, days)

    def get_monthly_usage(self) -> list[MonthlyUsage]:
        """Get month-to-date budget standing per limited provider."""
        return get_monthly_usage(self.store, self.ledger.now())

    def get_cost_breakdown(self, days: int = 30) -> CostBreakdown:
        """Get cost by day and by hour of day."""
        return cost_breakdown(self.ledger.records(), days, self.ledger.now())

    def get_provider_comparison(self, days: int = 7) -> ProviderComparison:
        """Compare providers over the last ``days`` days."""
        return provider_comparison(self.ledger.stats_for(days=days))

    def export_usage_data(self, start: datetime, end: datetime, fmt: str = "json") -> str:
        """Export usage records in ``[start, end]`` as JSON or CSV."""
        return self.ledger.export(start, end, fmt)

    def set_monthly_limit(self, provider: str, limit: float | None) -> None:
        """Set a provider's monthly spend ceiling and re-check its budget."""
        self.store.set_monthly_limit(provider, limit)
        self.ledger.enforce_budget(provider)
        log.info("monthly_limit_set", provider=provider, limit=limit)

    def reset_monthly_counters(self) -> None:
        """Zero month-to-date spend and re-enable budget-disabled providers."""
        self.ledger.reset_monthly_counters()

    async def flush_usage(self) -> None:
        """Wait until every pending counter update has been written."""
        await self.persistence.flush()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_available(self, provider: str) -> bool:
        return provider in self.clients and self.ledger.is_provider_active(provider)

    async def _probe(self, provider: str) -> bool:
        client = self.clients.get(provider)
        if client is None:
            return False
        return await client.test_connection()

    def _pipeline_for(self, config: PipelineConfig) -> BatchDispatchPipeline:
        return BatchDispatchPipeline(
            self.selector,
            self.clients,
            self.ledger,
            config=config,
            artifact_store=self.artifact_store,
        )

    def _pipeline_with(
        self,
        task_type: str | TaskType | None,
        requirements: TaskRequirements | None,
        preferred_provider: str | None,
    ) -> BatchDispatchPipeline:
        if task_type is None and requirements is None and preferred_provider is None:
            return self.pipeline

        base = self.pipeline_config
        key = task_key(task_type) if task_type is not None else base.task_type
        same_task = key == base.task_type
        if preferred_provider is None and same_task:
            preferred_provider = base.preferred_provider
        if requirements is None:
            requirements = base.requirements if same_task else requirements_for(key)
        config = PipelineConfig(
            task_type=key,
            requirements=requirements,
            preferred_provider=preferred_provider,
            concurrency_limit=base.concurrency_limit,
            retry_delay_seconds=base.retry_delay_seconds,
            call_timeout_seconds=base.call_timeout_seconds,
            quality=base.quality,
        )
        return self._pipeline_for(config)
