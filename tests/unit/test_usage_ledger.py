"""Unit tests for the usage ledger and budget enforcement."""

import csv
import io
import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from switchyard.usage.ledger import EXPORT_COLUMNS, BudgetStatus, UsageLedger, UsageRecord


def make_record(clock, provider="openai", **overrides) -> UsageRecord:
    values = {
        "provider": provider,
        "task_type": "image",
        "tokens_used": 100,
        "cost": 0.04,
        "duration_ms": 200.0,
        "success": True,
        "timestamp": clock.now,
        "model": "dall-e-3",
    }
    values.update(overrides)
    return UsageRecord(**values)


class TestRecord:
    """Tests for recording attempts."""

    def test_record_appends(self, ledger, clock):
        """Test that a record is held in memory."""
        ledger.record(make_record(clock))
        assert ledger.record_count == 1
        assert ledger.records()[0].provider == "openai"

    def test_record_updates_counter(self, ledger, store, clock):
        """Test that the cost reaches the persistent counter."""
        ledger.record(make_record(clock, cost=0.5))
        ledger.record(make_record(clock, cost=0.25))
        assert store.get_usage("openai").current_usage == pytest.approx(0.75)

    def test_record_updates_health(self, ledger, health_monitor, clock):
        """Test that attempts feed the health monitor."""
        ledger.record(make_record(clock, success=False, error_message="boom"))
        assert health_monitor.is_healthy("openai") is False
        ledger.record(make_record(clock))
        assert health_monitor.is_healthy("openai") is True

    def test_history_is_bounded(self, store, clock):
        """Test that the oldest records are evicted."""
        ledger = UsageLedger(store, history_size=3, clock=clock)
        for i in range(5):
            ledger.record(make_record(clock, tokens_used=i))
        assert ledger.record_count == 3
        assert [r.tokens_used for r in ledger.records()] == [2, 3, 4]

    def test_store_failure_is_swallowed(self, clock):
        """Test that a broken store never fails the caller."""
        store = MagicMock()
        store.increment_usage.side_effect = RuntimeError("disk full")
        store.get_usage.return_value = None
        ledger = UsageLedger(store, clock=clock)
        ledger.record(make_record(clock))
        assert ledger.record_count == 1

    def test_health_failure_is_swallowed(self, store, clock):
        """Test that a broken health monitor never fails the caller."""
        health = MagicMock()
        health.record_observation.side_effect = RuntimeError("boom")
        ledger = UsageLedger(store, health_monitor=health, clock=clock)
        ledger.record(make_record(clock))
        assert ledger.record_count == 1

    def test_record_submits_to_persistence(self, store, clock):
        """Test that a running persistence worker receives the delta instead of the store."""
        persistence = MagicMock(is_running=True)
        ledger = UsageLedger(store, persistence=persistence, clock=clock)
        ledger.record(make_record(clock, cost=0.3))
        persistence.submit.assert_called_once_with("openai", 0.3)
        persistence.set_on_persisted.assert_called_once_with(ledger.enforce_budget)
        assert store.get_usage("openai") is None
        assert ledger.spend("openai") == pytest.approx(0.3)

    def test_stopped_worker_writes_synchronously(self, store, clock):
        """Test that deltas bypass a worker that is not draining its queue."""
        persistence = MagicMock(is_running=False)
        ledger = UsageLedger(store, persistence=persistence, clock=clock)
        ledger.record(make_record(clock, cost=0.3))
        persistence.submit.assert_not_called()
        assert store.get_usage("openai").current_usage == pytest.approx(0.3)

    def test_spend_starts_from_stored_usage(self, store, clock):
        """Test that the running total continues from the month's stored counter."""
        store.increment_usage("openai", 2.0)
        ledger = UsageLedger(store, clock=clock)
        ledger.record(make_record(clock, cost=0.5))
        assert ledger.spend("openai") == pytest.approx(2.5)


class TestBudget:
    """Tests for budget enforcement."""

    def test_no_limit_is_unlimited(self, ledger, store):
        """Test that providers without a limit are never disabled."""
        store.increment_usage("openai", 1000.0)
        assert ledger.enforce_budget("openai") == BudgetStatus.UNLIMITED
        assert ledger.is_provider_active("openai")

    def test_under_warning_is_ok(self, ledger, store):
        """Test spend below the warning threshold."""
        store.set_monthly_limit("openai", 10.0)
        store.increment_usage("openai", 5.0)
        assert ledger.enforce_budget("openai") == BudgetStatus.OK

    def test_warning_threshold(self, ledger, store):
        """Test that 90% of the limit warns without disabling."""
        store.set_monthly_limit("openai", 10.0)
        store.increment_usage("openai", 9.0)
        assert ledger.enforce_budget("openai") == BudgetStatus.WARNING
        assert ledger.is_provider_active("openai")

    def test_exceeded_disables(self, ledger, store, clock):
        """Test that reaching the limit deactivates the provider."""
        store.set_monthly_limit("openai", 1.0)
        ledger.record(make_record(clock, cost=1.0))
        assert not ledger.is_provider_active("openai")
        assert store.get_usage("openai").active is False
        assert ledger.disabled_providers() == {"openai"}

    def test_queued_spend_counts_immediately(self, store, clock):
        """Test that a provider is disabled before its queued deltas reach the store."""
        persistence = MagicMock(is_running=True)
        ledger = UsageLedger(store, persistence=persistence, clock=clock)
        store.set_monthly_limit("openai", 1.0)

        ledger.record(make_record(clock, cost=0.6))
        assert ledger.is_provider_active("openai")
        ledger.record(make_record(clock, cost=0.6))

        assert not ledger.is_provider_active("openai")
        assert store.get_usage("openai").current_usage == 0.0
        assert store.get_usage("openai").active is False

    def test_ratchet_holds_until_reset(self, ledger, store, clock):
        """Test that a disabled provider stays disabled until reset."""
        store.set_monthly_limit("openai", 1.0)
        ledger.record(make_record(clock, cost=2.0))
        store.set_monthly_limit("openai", 100.0)
        ledger.enforce_budget("openai")
        assert not ledger.is_provider_active("openai")

        ledger.reset_monthly_counters()
        assert ledger.is_provider_active("openai")
        assert ledger.spend("openai") == 0.0
        assert store.get_usage("openai").current_usage == 0.0
        assert store.get_usage("openai").active is True

    def test_load_state(self, store, clock):
        """Test that a restarted ledger rebuilds the disabled set."""
        store.set_active("google", False)
        store.increment_usage("openai", 1.0)
        ledger = UsageLedger(store, clock=clock)
        ledger.load_state()
        assert not ledger.is_provider_active("google")
        assert ledger.is_provider_active("openai")
        assert ledger.spend("openai") == 1.0

    def test_store_read_failure(self, clock):
        """Test that a failing store read is reported as unlimited."""
        store = MagicMock()
        store.get_usage.side_effect = RuntimeError("locked")
        ledger = UsageLedger(store, clock=clock)
        assert ledger.enforce_budget("openai") == BudgetStatus.UNLIMITED


class TestStats:
    """Tests for aggregation."""

    def test_empty_window(self, ledger):
        """Test the well-defined empty result."""
        stats = ledger.stats_for()
        assert stats.request_count == 0
        assert stats.total_cost == 0.0
        assert stats.success_rate == 0.0
        assert stats.by_provider == {}

    def test_aggregates(self, ledger, clock):
        """Test totals and per-provider/per-task breakdowns."""
        ledger.record(make_record(clock, provider="openai", cost=0.04, duration_ms=100.0))
        ledger.record(
            make_record(
                clock,
                provider="openai",
                cost=0.0,
                duration_ms=300.0,
                success=False,
                error_message="timeout",
            )
        )
        ledger.record(
            make_record(
                clock,
                provider="anthropic",
                task_type="writing",
                tokens_used=1000,
                cost=0.02,
                duration_ms=500.0,
            )
        )

        stats = ledger.stats_for()
        assert stats.request_count == 3
        assert stats.total_tokens == 1200
        assert stats.total_cost == pytest.approx(0.06)
        assert stats.average_latency == pytest.approx(300.0)
        assert stats.success_rate == pytest.approx(2 / 3)

        openai = stats.by_provider["openai"]
        assert openai.calls == 2
        assert openai.success_rate == pytest.approx(0.5)
        assert openai.avg_latency == pytest.approx(200.0)
        assert stats.by_task["writing"].tokens == 1000
        assert stats.by_task["image"].calls == 2

    def test_window_excludes_old_records(self, ledger, clock):
        """Test that records older than the window are ignored."""
        ledger.record(make_record(clock, timestamp=clock.now - timedelta(days=40)))
        ledger.record(make_record(clock))
        assert ledger.stats_for(days=30).request_count == 1
        assert ledger.stats_for(days=60).request_count == 2

    def test_provider_filter(self, ledger, clock):
        """Test filtering by provider."""
        ledger.record(make_record(clock, provider="openai"))
        ledger.record(make_record(clock, provider="google"))
        stats = ledger.stats_for(provider="google")
        assert stats.request_count == 1
        assert list(stats.by_provider) == ["google"]

    def test_idempotent(self, ledger, clock):
        """Test that repeated queries return identical aggregates."""
        ledger.record(make_record(clock))
        assert ledger.stats_for().to_dict() == ledger.stats_for().to_dict()


class TestExport:
    """Tests for export."""

    def test_json(self, ledger, clock):
        """Test JSON export within a range."""
        ledger.record(make_record(clock))
        ledger.record(make_record(clock, timestamp=clock.now - timedelta(days=10)))
        data = json.loads(
            ledger.export(clock.now - timedelta(days=1), clock.now + timedelta(days=1))
        )
        assert len(data) == 1
        assert data[0]["provider"] == "openai"
        assert data[0]["timestamp"] == clock.now.isoformat()

    def test_csv(self, ledger, clock):
        """Test CSV export with a header row."""
        ledger.record(make_record(clock, error_message="bad, request", success=False))
        text = ledger.export(clock.now - timedelta(days=1), clock.now, fmt="csv")
        rows = list(csv.reader(io.StringIO(text)))
        assert tuple(rows[0]) == EXPORT_COLUMNS
        assert rows[1][EXPORT_COLUMNS.index("error_message")] == "bad, request"
        assert rows[1][EXPORT_COLUMNS.index("success")] == "False"

    def test_unknown_format(self, ledger, clock):
        """Test that unsupported formats are rejected."""
        with pytest.raises(ValueError, match="xml"):
            ledger.export(clock.now, clock.now, fmt="xml")
