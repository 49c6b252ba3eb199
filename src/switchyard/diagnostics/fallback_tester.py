"""Exercise fallback chains end to end.

Walks the configured chain for a task type with a short test prompt,
optionally forcing named providers to fail, and reports which provider
finally answered. Useful to verify credentials and chain order after a
configuration change. The same walk backs a sweep over every text chain,
a concurrent load test, and a sequential reliability run against one
provider.
"""

import asyncio
import math
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from switchyard.logging import get_logger
from switchyard.providers.base import GenerationOptions, ProviderClient
from switchyard.routing.capabilities import (
    Capability,
    CapabilityRegistry,
    TaskType,
    parameters_for_task,
    task_key,
)
from switchyard.usage.ledger import UsageLedger, UsageRecord

log = get_logger("switchyard.diagnostics.fallback_tester")

SIMULATED_FAILURE_LATENCY_MS = 50.0

TEST_PROMPTS: dict[str, str] = {
    TaskType.WRITING.value: "Write a brief introduction about artificial intelligence.",
    TaskType.RESEARCH.value: "What are the latest developments in renewable energy?",
    TaskType.CREATIVE.value: "Create a short story about a robot learning to paint.",
    TaskType.ANALYSIS.value: "Analyze the pros and cons of remote work.",
    TaskType.IDEATION.value: "Generate 3 innovative app ideas for productivity.",
    TaskType.IMAGE.value: "A serene mountain landscape at sunset",
}

# Chains covered by a full sweep (image is exercised on its own)
SWEEP_TASK_TYPES: tuple[str, ...] = (
    TaskType.WRITING.value,
    TaskType.RESEARCH.value,
    TaskType.CREATIVE.value,
    TaskType.ANALYSIS.value,
    TaskType.IDEATION.value,
)

# Reliability runs rotate through these task types
RELIABILITY_TASK_TYPES: tuple[str, ...] = (
    TaskType.WRITING.value,
    TaskType.RESEARCH.value,
    TaskType.CREATIVE.value,
)


@dataclass
class FallbackAttempt:
    """One provider tried during a chain test."""

    provider: str
    success: bool
    latency_ms: float
    error: str | None = None
    model: str | None = None
    tokens_used: int = 0
    cost: float = 0.0


@dataclass
class FallbackChainTestResult:
    """Outcome of walking one fallback chain."""

    task_type: str
    chain: list[str]
    attempts: list[FallbackAttempt] = field(default_factory=list)
    final_provider: str | None = None
    total_time_ms: float = 0.0

    @property
    def success(self) -> bool:
        """Whether any provider answered."""
        return self.final_provider is not None

    @property
    def fallbacks_triggered(self) -> int:
        """Number of failed attempts before the answer (or in total)."""
        return sum(1 for a in self.attempts if not a.success)

    @property
    def first_success_attempt(self) -> int:
        """1-based index of the successful attempt, -1 if none."""
        for index, attempt in enumerate(self.attempts, start=1):
            if attempt.success:
                return index
        return -1

    @property
    def average_latency_ms(self) -> float:
        """Mean latency over all attempts."""
        if not self.attempts:
            return 0.0
        return sum(a.latency_ms for a in self.attempts) / len(self.attempts)

    @property
    def total_cost(self) -> float:
        """Spend across all attempts."""
        return sum(a.cost for a in self.attempts)

    def summary(self) -> dict[str, Any]:
        """Headline numbers for the test."""
        return {
            "attempts": len(self.attempts),
            "average_latency": round(self.average_latency_ms, 2),
            "total_cost": round(self.total_cost, 6),
            "first_success_attempt": self.first_success_attempt,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "task_type": self.task_type,
            "chain": list(self.chain),
            "attempts": [
                {
                    "provider": a.provider,
                    "success": a.success,
                    "latency_ms": round(a.latency_ms, 2),
                    "error": a.error,
                    "model": a.model,
                    "tokens_used": a.tokens_used,
                    "cost": round(a.cost, 6),
                }
                for a in self.attempts
            ],
            "final_provider": self.final_provider,
            "success": self.success,
            "fallbacks_triggered": self.fallbacks_triggered,
            "total_time_ms": round(self.total_time_ms, 2),
            "summary": self.summary(),
        }


@dataclass
class ChainSweepResult:
    """Outcome of testing several fallback chains one after another."""

    results: list[FallbackChainTestResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether every chain produced an answer."""
        return bool(self.results) and all(r.success for r in self.results)

    @property
    def success_rate(self) -> float:
        """Percentage of chains that produced an answer."""
        if not self.results:
            return 0.0
        return sum(1 for r in self.results if r.success) / len(self.results) * 100

    @property
    def total_time_ms(self) -> float:
        return sum(r.total_time_ms for r in self.results)

    @property
    def total_cost(self) -> float:
        return sum(r.total_cost for r in self.results)

    @property
    def average_fallbacks(self) -> float:
        """Mean failed attempts per chain."""
        if not self.results:
            return 0.0
        return sum(r.fallbacks_triggered for r in self.results) / len(self.results)

    def summary(self) -> dict[str, Any]:
        """Aggregate numbers across all chains."""
        return {
            "chains": len(self.results),
            "success_rate": round(self.success_rate, 1),
            "total_time_ms": round(self.total_time_ms, 2),
            "total_cost": round(self.total_cost, 6),
            "average_fallbacks": round(self.average_fallbacks, 2),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary(),
        }


@dataclass
class LoadTestResult:
    """Outcome of running many chain walks concurrently."""

    task_type: str
    concurrent_requests: int
    total_requests: int
    success_rate: float
    average_latency_ms: float
    p95_latency_ms: float
    p99_latency_ms: float
    total_time_ms: float
    total_cost: float
    errors_per_provider: dict[str, int] = field(default_factory=dict)
    fallbacks_triggered: dict[str, int] = field(default_factory=dict)

    @property
    def throughput(self) -> float:
        """Completed requests per second."""
        if self.total_time_ms <= 0:
            return 0.0
        return self.total_requests / (self.total_time_ms / 1000)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "task_type": self.task_type,
            "concurrent_requests": self.concurrent_requests,
            "total_requests": self.total_requests,
            "success_rate": round(self.success_rate, 1),
            "average_latency_ms": round(self.average_latency_ms, 2),
            "p95_latency_ms": round(self.p95_latency_ms, 2),
            "p99_latency_ms": round(self.p99_latency_ms, 2),
            "throughput_rps": round(self.throughput, 2),
            "total_time_ms": round(self.total_time_ms, 2),
            "total_cost": round(self.total_cost, 6),
            "errors_per_provider": dict(self.errors_per_provider),
            "fallbacks_triggered": dict(self.fallbacks_triggered),
        }


@dataclass
class ReliabilityError:
    """One failed call during a reliability run."""

    timestamp: datetime
    error: str
    task_type: str


@dataclass
class ReliabilityTestResult:
    """Outcome of calling one provider repeatedly."""

    provider: str
    requests: int
    success_count: int = 0
    failure_count: int = 0
    average_latency_ms: float = 0.0
    errors: list[ReliabilityError] = field(default_factory=list)

    @property
    def reliability(self) -> float:
        """Share of calls that succeeded, 0.0 to 1.0."""
        if self.requests <= 0:
            return 0.0
        return self.success_count / self.requests

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "provider": self.provider,
            "requests": self.requests,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "average_latency_ms": round(self.average_latency_ms, 2),
            "reliability": round(self.reliability, 4),
            "errors": [
                {"timestamp": e.timestamp.isoformat(), "error": e.error, "task_type": e.task_type}
                for e in self.errors
            ],
        }


def percentile(sorted_values: Sequence[float], fraction: float) -> float:
    """Nearest-rank percentile of already sorted values (0.0 when empty)."""
    if not sorted_values:
        return 0.0
    index = min(math.floor(len(sorted_values) * fraction), len(sorted_values) - 1)
    return sorted_values[index]


class FallbackTester:
    """Walks fallback chains against real clients."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        clients: Mapping[str, ProviderClient],
        ledger: UsageLedger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the tester.

        Args:
            registry: Source of fallback chains.
            clients: Provider clients by name.
            ledger: When given, successful test calls are recorded as usage.
            sleep: Coroutine used for pauses between sequential tests.
        """
        self._registry = registry
        self._clients = clients
        self._ledger = ledger
        self._sleep = sleep

    def _now(self) -> datetime:
        return self._ledger.now() if self._ledger is not None else datetime.now(UTC)

    async def test_fallback_chain(
        self,
        task_type: str | TaskType,
        simulate_failures: Iterable[str] = (),
        timeout_seconds: float = 30.0,
    ) -> FallbackChainTestResult:
        """Walk the chain for ``task_type`` until a provider succeeds.

        Args:
            task_type: Task whose chain is tested.
            simulate_failures: Providers forced to fail without being called.
            timeout_seconds: Timeout per provider call.

        Returns:
            FallbackChainTestResult describing every attempt.
        """
        key = task_key(task_type)
        forced = set(simulate_failures)
        chain = self._registry.chain_for(key)
        result = FallbackChainTestResult(task_type=key, chain=chain)
        started = time.perf_counter()

        log.info("fallback_test_started", task_type=key, chain=chain, simulated=sorted(forced))

        for provider in chain:
            if provider in forced:
                result.attempts.append(
                    FallbackAttempt(
                        provider=provider,
                        success=False,
                        latency_ms=SIMULATED_FAILURE_LATENCY_MS,
                        error="Simulated failure for testing",
                    )
                )
                continue

            attempt = await self._test_provider(provider, key, timeout_seconds)
            result.attempts.append(attempt)
            if attempt.success:
                result.final_provider = provider
                break

        result.total_time_ms = (time.perf_counter() - started) * 1000
        log.info(
            "fallback_test_completed",
            task_type=key,
            success=result.success,
            final_provider=result.final_provider,
            fallbacks=result.fallbacks_triggered,
            cost_usd=round(result.total_cost, 6),
        )
        return result

    async def test_all_fallback_chains(
        self,
        simulate_failures: Iterable[str] = (),
        timeout_seconds: float = 30.0,
        task_types: Sequence[str] = SWEEP_TASK_TYPES,
        pause_seconds: float = 1.0,
    ) -> ChainSweepResult:
        """Walk the chain of every task type in turn.

        Args:
            simulate_failures: Providers forced to fail in every chain.
            timeout_seconds: Timeout per provider call.
            task_types: Chains to test, in order.
            pause_seconds: Pause between two chain tests.

        Returns:
            ChainSweepResult with one entry per task type and an aggregate summary.
        """
        forced = list(simulate_failures)
        sweep = ChainSweepResult()

        for index, task_type in enumerate(task_types):
            if index and pause_seconds > 0:
                await self._sleep(pause_seconds)
            sweep.results.append(
                await self.test_fallback_chain(
                    task_type, simulate_failures=forced, timeout_seconds=timeout_seconds
                )
            )

        log.info("fallback_sweep_completed", **sweep.summary())
        return sweep

    async def run_load_test(
        self,
        task_type: str | TaskType,
        concurrent_requests: int,
        total_requests: int,
        simulate_failures: Iterable[str] = (),
        timeout_seconds: float = 30.0,
    ) -> LoadTestResult:
        """Walk one chain ``total_requests`` times, ``concurrent_requests`` at a time.

        A request that ends without an answer is counted against provider
        ``"none"``. A request answered by anything but the head of the chain
        counts as a fallback for the provider that answered.

        Raises:
            ValueError: If either count is below one.
        """
        if concurrent_requests < 1 or total_requests < 1:
            raise ValueError("concurrent_requests and total_requests must be at least 1")

        key = task_key(task_type)
        forced = list(simulate_failures)
        chain = self._registry.chain_for(key)
        head = chain[0] if chain else None

        async def one_request() -> tuple[FallbackChainTestResult, float]:
            started = time.perf_counter()
            walk = await self.test_fallback_chain(
                key, simulate_failures=forced, timeout_seconds=timeout_seconds
            )
            return walk, (time.perf_counter() - started) * 1000

        log.info(
            "load_test_started",
            task_type=key,
            concurrent_requests=concurrent_requests,
            total_requests=total_requests,
        )
        started = time.perf_counter()
        outcomes: list[tuple[FallbackChainTestResult, float]] = []
        errors_per_provider: dict[str, int] = {}
        fallbacks: dict[str, int] = {}

        for offset in range(0, total_requests, concurrent_requests):
            size = min(concurrent_requests, total_requests - offset)
            batch = await asyncio.gather(*(one_request() for _ in range(size)))
            for walk, _ in batch:
                provider = walk.final_provider or "none"
                if not walk.success:
                    errors_per_provider[provider] = errors_per_provider.get(provider, 0) + 1
                if provider != head:
                    fallbacks[provider] = fallbacks.get(provider, 0) + 1
            outcomes.extend(batch)
            log.debug("load_test_batch_completed", completed=len(outcomes), total=total_requests)

        latencies = sorted(latency for _, latency in outcomes)
        result = LoadTestResult(
            task_type=key,
            concurrent_requests=concurrent_requests,
            total_requests=total_requests,
            success_rate=sum(1 for walk, _ in outcomes if walk.success) / len(outcomes) * 100,
            average_latency_ms=sum(latencies) / len(latencies),
            p95_latency_ms=percentile(latencies, 0.95),
            p99_latency_ms=percentile(latencies, 0.99),
            total_time_ms=(time.perf_counter() - started) * 1000,
            total_cost=sum(walk.total_cost for walk, _ in outcomes),
            errors_per_provider=errors_per_provider,
            fallbacks_triggered=fallbacks,
        )
        log.info(
            "load_test_completed",
            task_type=key,
            success_rate=round(result.success_rate, 1),
            p95_latency_ms=round(result.p95_latency_ms, 2),
            throughput_rps=round(result.throughput, 2),
            cost_usd=round(result.total_cost, 6),
        )
        return result

    async def test_provider_reliability(
        self,
        provider: str,
        requests: int = 50,
        interval_seconds: float = 1.0,
        timeout_seconds: float = 10.0,
    ) -> ReliabilityTestResult:
        """Call one provider ``requests`` times in sequence.

        Task types rotate through writing, research and creative prompts.
        Every failed call is kept in the error log with its task type.

        Args:
            provider: Provider to exercise.
            requests: Number of sequential calls.
            interval_seconds: Pause between two calls.
            timeout_seconds: Timeout per call.

        Returns:
            ReliabilityTestResult with the reliability ratio and error log.
        """
        result = ReliabilityTestResult(provider=provider, requests=requests)
        latencies: list[float] = []

        for index in range(requests):
            if index and interval_seconds > 0:
                await self._sleep(interval_seconds)

            task_type = RELIABILITY_TASK_TYPES[index % len(RELIABILITY_TASK_TYPES)]
            attempt = await self._test_provider(provider, task_type, timeout_seconds)
            latencies.append(attempt.latency_ms)
            if attempt.success:
                result.success_count += 1
            else:
                result.failure_count += 1
                result.errors.append(
                    ReliabilityError(
                        timestamp=self._now(),
                        error=attempt.error or "Unknown error",
                        task_type=task_type,
                    )
                )

            if (index + 1) % 10 == 0:
                log.debug(
                    "reliability_progress",
                    provider=provider,
                    completed=index + 1,
                    succeeded=result.success_count,
                )

        if latencies:
            result.average_latency_ms = sum(latencies) / len(latencies)
        log.info(
            "reliability_test_completed",
            provider=provider,
            requests=requests,
            reliability=round(result.reliability, 4),
            failures=result.failure_count,
        )
        return result

    async def _test_provider(
        self, provider: str, task_type: str, timeout_seconds: float
    ) -> FallbackAttempt:
        client = self._clients.get(provider)
        if client is None:
            return FallbackAttempt(
                provider=provider, success=False, latency_ms=0.0, error="Provider not configured"
            )

        params = parameters_for_task(task_type)
        profile = self._registry.capabilities_of(provider)
        capability = Capability.IMAGE if task_type == TaskType.IMAGE.value else Capability.TEXT
        if profile is not None and not profile.supports(capability):
            return FallbackAttempt(
                provider=provider,
                success=False,
                latency_ms=0.0,
                error=f"Provider does not support {capability.value}",
            )

        options = GenerationOptions(
            task_type=task_type,
            capability=capability,
            temperature=params.temperature,
            max_tokens=min(params.max_tokens, 200),
        )
        prompt = TEST_PROMPTS.get(task_type, TEST_PROMPTS[TaskType.WRITING.value])

        started = time.perf_counter()
        try:
            outcome = await asyncio.wait_for(
                client.generate(prompt, options), timeout=timeout_seconds
            )
        except TimeoutError:
            return FallbackAttempt(
                provider=provider,
                success=False,
                latency_ms=(time.perf_counter() - started) * 1000,
                error=f"Timed out after {timeout_seconds}s",
            )
        except Exception as e:
            return FallbackAttempt(
                provider=provider,
                success=False,
                latency_ms=(time.perf_counter() - started) * 1000,
                error=str(e),
            )

        latency_ms = (time.perf_counter() - started) * 1000
        if outcome.success and self._ledger is not None:
            self._ledger.record(
                UsageRecord(
                    provider=provider,
                    task_type=task_type,
                    tokens_used=outcome.tokens_used,
                    cost=outcome.cost,
                    duration_ms=latency_ms,
                    success=True,
                    timestamp=self._ledger.now(),
                    model=outcome.model,
                )
            )

        return FallbackAttempt(
            provider=provider,
            success=outcome.success,
            latency_ms=latency_ms,
            error=outcome.error,
            model=outcome.model,
            tokens_used=outcome.tokens_used,
            cost=outcome.cost,
        )
