"""Pytest fixtures for Switchyard tests."""

import asyncio
import os
import tempfile
from datetime import UTC, datetime

import pytest

from switchyard.health.monitor import HealthConfig, HealthMonitor
from switchyard.providers.base import GenerationOptions, GenerationOutcome, ProviderClient
from switchyard.routing.capabilities import CapabilityRegistry
from switchyard.usage.ledger import UsageLedger
from switchyard.usage.store import SQLiteUsageStore


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Keep real credentials out of unit tests.

    Settings read provider keys from the environment; clearing them means
    no test accidentally builds a live SDK client.
    """
    for key in (
        "ANTHROPIC_API_KEY",
        "OPENAI_API_KEY",
        "GOOGLE_API_KEY",
        "PERPLEXITY_API_KEY",
    ):
        os.environ.pop(key, None)

    from switchyard.config import get_settings

    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


class FakeClock:
    """Manually advanced clock for deterministic timestamps."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 6, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


class FakeProvider(ProviderClient):
    """Scripted provider client.

    ``behaviour`` is consumed one entry per call: a GenerationOutcome is
    returned, an Exception is raised. When exhausted, the last entry repeats.
    """

    def __init__(self, name: str, behaviour=None, cost: float = 0.01, delay: float = 0.0):
        super().__init__(default_model=f"{name}-model", image_model=f"{name}-image")
        self.name = name
        self._behaviour = list(behaviour or [])
        self._cost = cost
        self._delay = delay
        self.calls: list[tuple[str, GenerationOptions]] = []
        self.healthy = True
        self.closed = False

    async def generate(self, prompt: str, options: GenerationOptions) -> GenerationOutcome:
        self.calls.append((prompt, options))
        if self._delay:
            await asyncio.sleep(self._delay)

        if self._behaviour:
            step = self._behaviour.pop(0) if len(self._behaviour) > 1 else self._behaviour[0]
            if isinstance(step, BaseException):
                raise step
            return step

        return GenerationOutcome(
            success=True,
            model=self.resolve_model(options),
            artifact_refs=[f"https://{self.name}.example/{len(self.calls)}.png"],
            content=f"{self.name} output",
            tokens_used=100,
            cost=self._cost,
        )

    async def test_connection(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def temp_db():
    """Create a temporary database path for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield db_path
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def store(temp_db):
    """Create a SQLiteUsageStore with a temporary database."""
    return SQLiteUsageStore(temp_db)


@pytest.fixture
def clock():
    """Create a fixed clock."""
    return FakeClock()


@pytest.fixture
def registry():
    """Create a registry with the built-in profiles and chains."""
    return CapabilityRegistry()


@pytest.fixture
def health_monitor(clock):
    """Create a health monitor without a prober."""
    return HealthMonitor(prober=None, config=HealthConfig(), clock=clock)


@pytest.fixture
def ledger(store, health_monitor, clock):
    """Create a ledger that writes counters synchronously."""
    return UsageLedger(store, health_monitor=health_monitor, clock=clock)
