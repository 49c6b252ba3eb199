"""Unit tests for the fallback chain tester."""

from unittest.mock import AsyncMock, call

import pytest

from conftest import FakeProvider
from switchyard.diagnostics.fallback_tester import (
    SIMULATED_FAILURE_LATENCY_MS,
    SWEEP_TASK_TYPES,
    TEST_PROMPTS,
    FallbackTester,
    LoadTestResult,
    percentile,
)
from switchyard.providers.base import GenerationOutcome
from switchyard.routing.capabilities import Capability, CapabilityRegistry


class TestFallbackChain:
    """Tests for walking a fallback chain."""

    @pytest.mark.asyncio
    async def test_first_provider_answers(self, registry):
        """Test that the walk stops at the first success."""
        google = FakeProvider("google")
        openai = FakeProvider("openai")
        tester = FallbackTester(registry, {"google": google, "openai": openai})

        result = await tester.test_fallback_chain("image")

        assert result.success
        assert result.final_provider == "google"
        assert result.fallbacks_triggered == 0
        assert result.first_success_attempt == 1
        assert openai.calls == []

    @pytest.mark.asyncio
    async def test_simulated_failure(self, registry):
        """Test that simulated failures are skipped without calling the provider."""
        google = FakeProvider("google")
        tester = FallbackTester(registry, {"google": google, "openai": FakeProvider("openai")})

        result = await tester.test_fallback_chain("image", simulate_failures=["google"])

        assert google.calls == []
        assert result.final_provider == "openai"
        assert result.attempts[0].latency_ms == SIMULATED_FAILURE_LATENCY_MS
        assert result.attempts[0].error == "Simulated failure for testing"
        assert result.fallbacks_triggered == 1
        assert result.first_success_attempt == 2

    @pytest.mark.asyncio
    async def test_unconfigured_provider(self, registry):
        """Test that providers without a client count as failed attempts."""
        tester = FallbackTester(registry, {"openai": FakeProvider("openai")})

        result = await tester.test_fallback_chain("writing")

        assert result.attempts[0].provider == "anthropic"
        assert result.attempts[0].error == "Provider not configured"
        assert result.final_provider == "openai"

    @pytest.mark.asyncio
    async def test_unsupported_capability(self):
        """Test that a text-only provider in an image chain is skipped."""
        registry = CapabilityRegistry(
            chains={"image": ["anthropic", "openai"], "default": ["openai"]}
        )
        anthropic = FakeProvider("anthropic")
        tester = FallbackTester(
            registry, {"anthropic": anthropic, "openai": FakeProvider("openai")}
        )

        result = await tester.test_fallback_chain("image")

        assert anthropic.calls == []
        assert result.attempts[0].error == f"Provider does not support {Capability.IMAGE.value}"
        assert result.final_provider == "openai"

    @pytest.mark.asyncio
    async def test_errors_and_reported_failures(self, registry):
        """Test that raised errors and failed outcomes both fall through."""
        clients = {
            "anthropic": FakeProvider("anthropic", behaviour=[RuntimeError("invalid key")]),
            "openai": FakeProvider(
                "openai",
                behaviour=[GenerationOutcome(success=False, model="gpt-4o", error="refused")],
            ),
            "google": FakeProvider("google"),
        }
        tester = FallbackTester(registry, clients)

        result = await tester.test_fallback_chain("writing")

        assert [a.error for a in result.attempts] == ["invalid key", "refused", None]
        assert result.final_provider == "google"
        assert result.fallbacks_triggered == 2

    @pytest.mark.asyncio
    async def test_timeout(self, registry):
        """Test that a slow provider times out and the chain continues."""
        tester = FallbackTester(
            registry,
            {"google": FakeProvider("google", delay=1.0), "openai": FakeProvider("openai")},
        )

        result = await tester.test_fallback_chain("image", timeout_seconds=0.01)

        assert result.attempts[0].error.startswith("Timed out")
        assert result.final_provider == "openai"

    @pytest.mark.asyncio
    async def test_everything_fails(self, registry):
        """Test the result when no provider answers."""
        tester = FallbackTester(registry, {})

        result = await tester.test_fallback_chain("image", simulate_failures=["google"])

        assert not result.success
        assert result.final_provider is None
        assert result.first_success_attempt == -1
        assert result.fallbacks_triggered == 2
        assert result.total_cost == 0.0

    @pytest.mark.asyncio
    async def test_test_call_parameters(self, registry):
        """Test that a canned prompt and a small token budget are used."""
        anthropic = FakeProvider("anthropic")
        tester = FallbackTester(registry, {"anthropic": anthropic})

        await tester.test_fallback_chain("writing")

        prompt, options = anthropic.calls[0]
        assert prompt == TEST_PROMPTS["writing"]
        assert options.max_tokens == 200
        assert options.capability == Capability.TEXT

    @pytest.mark.asyncio
    async def test_success_recorded_in_ledger(self, registry, ledger):
        """Test that successful test calls count as usage."""
        tester = FallbackTester(
            registry,
            {"google": FakeProvider("google", cost=0.02), "openai": FakeProvider("openai")},
            ledger=ledger,
        )

        await tester.test_fallback_chain("image", simulate_failures=["google"])

        records = ledger.records()
        assert len(records) == 1
        assert records[0].provider == "openai"
        assert records[0].task_type == "image"


class TestFallbackChainTestResult:
    """Tests for result serialisation."""

    @pytest.mark.asyncio
    async def test_to_dict(self, registry):
        """Test the dictionary form includes the summary."""
        tester = FallbackTester(
            registry,
            {"google": FakeProvider("google"), "openai": FakeProvider("openai", cost=0.04)},
        )
        result = await tester.test_fallback_chain("image", simulate_failures=["google"])

        data = result.to_dict()

        assert data["chain"] == ["google", "openai"]
        assert data["final_provider"] == "openai"
        assert data["fallbacks_triggered"] == 1
        assert data["summary"]["attempts"] == 2
        assert data["summary"]["first_success_attempt"] == 2
        assert data["summary"]["total_cost"] == pytest.approx(0.04)


def all_providers(**overrides):
    clients = {name: FakeProvider(name) for name in ("anthropic", "openai", "google", "perplexity")}
    clients.update(overrides)
    return clients


class TestAllFallbackChains:
    """Tests for sweeping every text chain."""

    @pytest.mark.asyncio
    async def test_sweep_covers_text_chains(self, registry):
        """Test that each text task type is walked once with pauses in between."""
        sleep = AsyncMock()
        tester = FallbackTester(registry, all_providers(), sleep=sleep)

        sweep = await tester.test_all_fallback_chains()

        assert [r.task_type for r in sweep.results] == list(SWEEP_TASK_TYPES)
        assert sweep.success
        assert sweep.success_rate == 100.0
        assert sweep.average_fallbacks == 0.0
        assert sleep.await_args_list == [call(1.0)] * (len(SWEEP_TASK_TYPES) - 1)

    @pytest.mark.asyncio
    async def test_sweep_summary_with_failures(self, registry):
        """Test the aggregate numbers when only the research chain can answer."""
        sleep = AsyncMock()
        tester = FallbackTester(
            registry, {"perplexity": FakeProvider("perplexity", cost=0.05)}, sleep=sleep
        )

        sweep = await tester.test_all_fallback_chains(pause_seconds=0)

        assert not sweep.success
        assert [r.success for r in sweep.results] == [False, True, False, False, False]
        summary = sweep.summary()
        assert summary["chains"] == 5
        assert summary["success_rate"] == 20.0
        assert summary["average_fallbacks"] == 2.4
        assert summary["total_cost"] == pytest.approx(0.05)
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sweep_applies_simulated_failures(self, registry):
        """Test that forced failures apply to every chain in the sweep."""
        anthropic = FakeProvider("anthropic")
        tester = FallbackTester(registry, all_providers(anthropic=anthropic), sleep=AsyncMock())

        sweep = await tester.test_all_fallback_chains(simulate_failures=["anthropic"])

        assert anthropic.calls == []
        assert sweep.to_dict()["success"] is True
        assert "anthropic" not in {r.final_provider for r in sweep.results}


class TestLoadTest:
    """Tests for the concurrent load test."""

    @pytest.mark.asyncio
    async def test_all_requests_answered_by_head(self, registry):
        """Test counts, cost and latency figures when the first provider always answers."""
        google = FakeProvider("google", cost=0.02)
        tester = FallbackTester(registry, {"google": google, "openai": FakeProvider("openai")})

        result = await tester.run_load_test("image", concurrent_requests=3, total_requests=7)

        assert len(google.calls) == 7
        assert result.success_rate == 100.0
        assert result.errors_per_provider == {}
        assert result.fallbacks_triggered == {}
        assert result.total_cost == pytest.approx(0.14)
        assert result.p99_latency_ms >= result.p95_latency_ms >= 0.0
        assert result.p95_latency_ms >= result.average_latency_ms
        assert result.throughput > 0

    @pytest.mark.asyncio
    async def test_requests_run_concurrently(self, registry):
        """Test that requests in one batch overlap rather than run in sequence."""
        google = FakeProvider("google", delay=0.05)
        tester = FallbackTester(registry, {"google": google})

        result = await tester.run_load_test("image", concurrent_requests=4, total_requests=4)

        assert result.success_rate == 100.0
        assert result.total_time_ms < 4 * 50

    @pytest.mark.asyncio
    async def test_fallbacks_counted_per_provider(self, registry):
        """Test that answers from a later provider count as fallbacks."""
        tester = FallbackTester(
            registry, {"google": FakeProvider("google"), "openai": FakeProvider("openai")}
        )

        result = await tester.run_load_test(
            "image", concurrent_requests=2, total_requests=5, simulate_failures=["google"]
        )

        assert result.fallbacks_triggered == {"openai": 5}
        assert result.errors_per_provider == {}

    @pytest.mark.asyncio
    async def test_unanswered_requests(self, registry):
        """Test that requests with no answer are counted against 'none'."""
        tester = FallbackTester(registry, {})

        result = await tester.run_load_test("image", concurrent_requests=2, total_requests=4)

        assert result.success_rate == 0.0
        assert result.errors_per_provider == {"none": 4}
        assert result.fallbacks_triggered == {"none": 4}
        assert result.to_dict()["total_requests"] == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrent, total", [(0, 5), (2, 0)])
    async def test_invalid_counts(self, registry, concurrent, total):
        """Test that empty or non-concurrent runs are rejected."""
        tester = FallbackTester(registry, {})
        with pytest.raises(ValueError):
            await tester.run_load_test("image", concurrent, total)

    def test_throughput(self):
        """Test requests per second from the wall-clock time."""
        result = LoadTestResult(
            task_type="image",
            concurrent_requests=5,
            total_requests=10,
            success_rate=100.0,
            average_latency_ms=100.0,
            p95_latency_ms=150.0,
            p99_latency_ms=180.0,
            total_time_ms=2000.0,
            total_cost=0.1,
        )
        assert result.throughput == 5.0
        assert result.to_dict()["throughput_rps"] == 5.0


class TestPercentile:
    """Tests for the nearest-rank percentile."""

    def test_values(self):
        """Test picks from a sorted list."""
        values = [float(v) for v in range(1, 21)]
        assert percentile(values, 0.95) == 20.0
        assert percentile(values, 0.5) == 11.0
        assert percentile([5.0], 0.99) == 5.0

    def test_empty(self):
        """Test that no samples give zero."""
        assert percentile([], 0.95) == 0.0


class TestProviderReliability:
    """Tests for repeated calls against one provider."""

    @pytest.mark.asyncio
    async def test_reliability_and_error_log(self, registry, ledger, clock):
        """Test the success ratio and the logged failures."""
        ok = GenerationOutcome(success=True, model="claude", tokens_used=10, cost=0.01)
        anthropic = FakeProvider(
            "anthropic",
            behaviour=[
                ok,
                RuntimeError("overloaded"),
                ok,
                GenerationOutcome(success=False, model="claude", error="refused"),
            ],
        )
        sleep = AsyncMock()
        tester = FallbackTester(registry, {"anthropic": anthropic}, ledger=ledger, sleep=sleep)

        result = await tester.test_provider_reliability(
            "anthropic", requests=4, interval_seconds=0.5
        )

        assert result.success_count == 2
        assert result.failure_count == 2
        assert result.reliability == 0.5
        assert [(e.error, e.task_type) for e in result.errors] == [
            ("overloaded", "research"),
            ("refused", "writing"),
        ]
        assert result.errors[0].timestamp == clock.now
        assert [p for p, _ in anthropic.calls] == [
            TEST_PROMPTS["writing"],
            TEST_PROMPTS["research"],
            TEST_PROMPTS["creative"],
            TEST_PROMPTS["writing"],
        ]
        assert sleep.await_args_list == [call(0.5)] * 3

    @pytest.mark.asyncio
    async def test_unconfigured_provider(self, registry):
        """Test that a provider without a client is fully unreliable."""
        tester = FallbackTester(registry, {}, sleep=AsyncMock())

        result = await tester.test_provider_reliability("openai", requests=2, interval_seconds=0)

        assert result.reliability == 0.0
        data = result.to_dict()
        assert data["failure_count"] == 2
        assert data["errors"][0]["error"] == "Provider not configured"
