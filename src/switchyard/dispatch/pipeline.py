"""Batch dispatch pipeline.

Runs many independent work units against the provider pool with bounded
concurrency. Units are processed in sequential batches of
``concurrency_limit``; each unit walks its ordered candidate list until one
provider succeeds. A failing unit never affects its siblings and
``process_all`` never raises: every unit gets exactly one
:class:`DispatchResult`, in input order.
"""

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field

from switchyard.constants import (
    DEFAULT_CALL_TIMEOUT_SECONDS,
    DEFAULT_CONCURRENCY,
    DEFAULT_RETRY_DELAY_SECONDS,
)
from switchyard.dispatch.artifacts import ArtifactStore, generate_alt_text
from switchyard.dispatch.models import DispatchResult, WorkUnit
from switchyard.logging import get_logger
from switchyard.providers.base import GenerationOptions, GenerationOutcome, ProviderClient
from switchyard.routing.capabilities import (
    Capability,
    TaskType,
    parameters_for_task,
    task_key,
)
from switchyard.routing.errors import ExhaustedFallbackError, OrchestrationError
from switchyard.routing.selector import ProviderSelector, TaskRequirements
from switchyard.usage.ledger import UsageLedger, UsageRecord

log = get_logger("switchyard.dispatch.pipeline")

ProgressCallback = Callable[[int, int], Awaitable[None] | None]


@dataclass
class PipelineConfig:
    """Configuration for a dispatch pipeline."""

    task_type: str = TaskType.IMAGE.value
    requirements: TaskRequirements = field(
        default_factory=lambda: TaskRequirements(capability=Capability.IMAGE)
    )
    preferred_provider: str | None = None

    # Maximum units in flight at once (one batch)
    concurrency_limit: int = DEFAULT_CONCURRENCY

    # Backoff before a retry pass
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS

    # Timeout for a single provider call; a timeout is a failed attempt
    call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS

    quality: str = "high"


class BatchDispatchPipeline:
    """Dispatches work units to providers with fallback and bounded concurrency."""

    def __init__(
        self,
        selector: ProviderSelector,
        clients: Mapping[str, ProviderClient],
        ledger: UsageLedger,
        config: PipelineConfig | None = None,
        artifact_store: ArtifactStore | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the pipeline.

        Args:
            selector: Produces ordered candidates per unit.
            clients: Provider clients by name.
            ledger: Receives one usage record per attempt.
            config: Pipeline configuration.
            artifact_store: Optional store for the first artifact of each
                successful unit.
            sleep: Awaitable sleep used for the retry backoff.
        """
        self._selector = selector
        self._clients = clients
        self._ledger = ledger
        self._config = config or PipelineConfig()
        self._artifact_store = artifact_store
        self._sleep = sleep

        if self._config.concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")

    @property
    def config(self) -> PipelineConfig:
        """Get the pipeline configuration."""
        return self._config

    async def process_all(
        self,
        units: Sequence[WorkUnit],
        on_progress: ProgressCallback | None = None,
        concurrency_limit: int | None = None,
    ) -> list[DispatchResult]:
        """Process every unit, batch by batch.

        Args:
            units: Work units to process.
            on_progress: Called with ``(completed, total)`` after each batch.
            concurrency_limit: Override of the configured batch size.

        Returns:
            One result per unit, in input order.
        """
        limit = concurrency_limit or self._config.concurrency_limit
        if limit < 1:
            raise ValueError("concurrency_limit must be at least 1")

        total = len(units)
        results: list[DispatchResult] = []
        log.info("batch_started", units=total, concurrency=limit, task_type=self._config.task_type)

        for start in range(0, total, limit):
            batch = units[start : start + limit]
            outcomes = await asyncio.gather(
                *(self.process_unit(unit) for unit in batch), return_exceptions=True
            )
            for unit, outcome in zip(batch, outcomes, strict=True):
                if isinstance(outcome, DispatchResult):
                    results.append(outcome)
                    continue
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                log.error("unit_processing_crashed", unit_id=unit.id, error=str(outcome))
                results.append(
                    DispatchResult(unit_id=unit.id, success=False, error=str(outcome), unit=unit)
                )

            await self._report_progress(on_progress, len(results), total)

        succeeded = sum(1 for r in results if r.success)
        log.info(
            "batch_completed",
            units=total,
            succeeded=succeeded,
            failed=total - succeeded,
            cost_usd=round(sum(r.cost for r in results), 6),
        )
        return results

    async def process_unit(self, unit: WorkUnit) -> DispatchResult:
        """Process one unit, walking its candidates until one succeeds."""
        started = time.perf_counter()
        cfg = self._config
        task = task_key(cfg.task_type)

        try:
            candidates = self._selector.select(task, cfg.requirements, cfg.preferred_provider)
        except OrchestrationError as e:
            log.warning("unit_selection_failed", unit_id=unit.id, error=str(e))
            return DispatchResult(
                unit_id=unit.id,
                success=False,
                error=str(e),
                elapsed_ms=self._elapsed_ms(started),
                unit=unit,
            )

        options = self._build_options(unit)
        attempted: list[str] = []
        total_cost = 0.0
        last_error: str | None = None

        for provider in candidates:
            client = self._clients.get(provider)
            if client is None:
                log.debug("candidate_without_client", provider=provider, unit_id=unit.id)
                continue

            attempted.append(provider)
            outcome, error, duration_ms = await self._attempt(client, unit, options)
            model = outcome.model if outcome else client.resolve_model(options)
            cost = outcome.cost if outcome else 0.0
            total_cost += cost

            self._ledger.record(
                UsageRecord(
                    provider=provider,
                    task_type=task,
                    tokens_used=outcome.tokens_used if outcome else 0,
                    cost=cost,
                    duration_ms=duration_ms,
                    success=error is None,
                    timestamp=self._ledger.now(),
                    model=model,
                    error_message=error,
                )
            )

            if error is not None or outcome is None:
                last_error = error
                log.warning(
                    "provider_attempt_failed",
                    unit_id=unit.id,
                    provider=provider,
                    error=error,
                    remaining=len(candidates) - len(attempted),
                )
                continue

            return await self._success(unit, provider, outcome, attempted, total_cost, started)

        exhausted = ExhaustedFallbackError(task, attempted, last_error)
        log.error("unit_failed", unit_id=unit.id, attempted=attempted, error=last_error)
        return DispatchResult(
            unit_id=unit.id,
            success=False,
            error=str(exhausted),
            elapsed_ms=self._elapsed_ms(started),
            cost=total_cost,
            attempted=attempted,
            unit=unit,
        )

    async def retry_failed(self, prior_results: Sequence[DispatchResult]) -> list[DispatchResult]:
        """Re-run failed units once and splice in any new successes.

        Successful results are never replaced; a unit that fails again keeps
        its original result.
        """
        failed_units = [r.unit for r in prior_results if not r.success and r.unit is not None]
        if not failed_units:
            return list(prior_results)

        log.info("retrying_failed_units", count=len(failed_units))
        await self._sleep(self._config.retry_delay_seconds)

        retried = await self.process_all(failed_units)
        recovered = {r.unit_id: r for r in retried if r.success}
        log.info("retry_completed", retried=len(failed_units), recovered=len(recovered))

        return [r if r.success else recovered.get(r.unit_id, r) for r in prior_results]

    async def _attempt(
        self,
        client: ProviderClient,
        unit: WorkUnit,
        options: GenerationOptions,
    ) -> tuple[GenerationOutcome | None, str | None, float]:
        started = time.perf_counter()
        try:
            outcome = await asyncio.wait_for(
                client.generate(unit.effective_prompt, options),
                timeout=self._config.call_timeout_seconds,
            )
        except TimeoutError:
            return (
                None,
                f"timed out after {self._config.call_timeout_seconds}s",
                self._elapsed_ms(started),
            )
        except Exception as e:
            return None, str(e) or type(e).__name__, self._elapsed_ms(started)

        duration_ms = self._elapsed_ms(started)
        if not outcome.success:
            return outcome, outcome.error or "provider reported failure", duration_ms
        return outcome, None, duration_ms

    async def _success(
        self,
        unit: WorkUnit,
        provider: str,
        outcome: GenerationOutcome,
        attempted: list[str],
        total_cost: float,
        started: float,
    ) -> DispatchResult:
        refs = list(outcome.artifact_refs)
        if refs and self._artifact_store is not None:
            try:
                refs[0] = await self._artifact_store.store(unit, refs[0])
            except Exception as e:
                log.error("artifact_store_failed", unit_id=unit.id, provider=provider, error=str(e))
                return DispatchResult(
                    unit_id=unit.id,
                    success=False,
                    provider=provider,
                    model=outcome.model,
                    error=f"artifact storage failed: {e}",
                    elapsed_ms=self._elapsed_ms(started),
                    cost=total_cost,
                    attempted=attempted,
                    unit=unit,
                )

        is_image = self._config.requirements.capability == Capability.IMAGE
        return DispatchResult(
            unit_id=unit.id,
            success=True,
            provider=provider,
            model=outcome.model,
            artifact_refs=refs,
            content=outcome.content,
            elapsed_ms=self._elapsed_ms(started),
            cost=total_cost,
            attempted=attempted,
            alt_text=generate_alt_text(unit.prompt) if is_image else None,
            unit=unit,
        )

    def _build_options(self, unit: WorkUnit) -> GenerationOptions:
        cfg = self._config
        params = parameters_for_task(cfg.task_type)
        return GenerationOptions(
            task_type=task_key(cfg.task_type),
            capability=cfg.requirements.capability,
            temperature=params.temperature,
            max_tokens=params.max_tokens,
            size=unit.suggested_size,
            style=unit.suggested_style,
            quality=cfg.quality,
        )

    async def _report_progress(
        self, on_progress: ProgressCallback | None, completed: int, total: int
    ) -> None:
        if on_progress is None:
            return
        try:
            result = on_progress(completed, total)
            if inspect.isawaitable(result):
                await result
        except Exception:
            log.exception("progress_callback_failed", completed=completed, total=total)

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.perf_counter() - started) * 1000
