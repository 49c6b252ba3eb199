"""Command-line entry point for Switchyard.

::

    switchyard dispatch prompts.json --task-type image --retry
    switchyard test-chain research --simulate-failure perplexity
    switchyard test-chain --all
    switchyard load-test image --concurrency 5 --requests 20
    switchyard reliability anthropic --requests 30
    switchyard usage
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Any, TypeVar

import click

from switchyard.config import get_settings
from switchyard.diagnostics.fallback_tester import (
    ChainSweepResult,
    FallbackChainTestResult,
    FallbackTester,
    LoadTestResult,
    ReliabilityTestResult,
)
from switchyard.dispatch.artifacts import FileArtifactStore
from switchyard.dispatch.models import DispatchResult, WorkUnit
from switchyard.logging import get_logger, setup_logging
from switchyard.orchestrator import Orchestrator

T = TypeVar("T")


def load_units(path: Path) -> list[WorkUnit]:
    """Read work units from a JSON list (or an object with a ``units`` key)."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("units", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON list of work units")
    return [WorkUnit.from_dict(item) for item in data]


def summarize(results: Sequence[DispatchResult]) -> dict[str, Any]:
    """Build the JSON summary printed after a batch."""
    succeeded = sum(1 for r in results if r.success)
    return {
        "total": len(results),
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
        "cost": round(sum(r.cost for r in results), 6),
        "results": [r.to_dict() for r in results],
    }


async def dispatch_batch(
    units: Sequence[WorkUnit],
    task_type: str | None = None,
    provider: str | None = None,
    concurrency: int | None = None,
    retry: bool = False,
    output_dir: Path | None = None,
) -> list[DispatchResult]:
    """Run one batch through a freshly started orchestrator."""
    log = get_logger("switchyard.main")
    artifact_store = FileArtifactStore(output_dir) if output_dir else None

    def on_progress(completed: int, total: int) -> None:
        log.info("batch_progress", completed=completed, total=total)

    try:
        async with Orchestrator.from_settings(artifact_store=artifact_store) as orch:
            results = await orch.process_all(
                units,
                on_progress=on_progress,
                task_type=task_type,
                preferred_provider=provider,
                concurrency_limit=concurrency,
            )
            if retry:
                results = await orch.retry_failed(
                    results, task_type=task_type, preferred_provider=provider
                )
            await orch.flush_usage()
    finally:
        if artifact_store is not None:
            await artifact_store.close()

    return results


async def run_diagnostic(operation: Callable[[FallbackTester], Awaitable[T]]) -> T:
    """Run one fallback tester operation against the configured providers."""
    async with Orchestrator.from_settings() as orch:
        tester = FallbackTester(orch.registry, orch.clients, ledger=orch.ledger)
        result = await operation(tester)
        await orch.flush_usage()
    return result


async def run_chain_test(
    task_type: str, simulate_failures: Sequence[str], timeout_seconds: float
) -> FallbackChainTestResult:
    """Walk one fallback chain against the configured providers."""
    return await run_diagnostic(
        lambda tester: tester.test_fallback_chain(
            task_type, simulate_failures=simulate_failures, timeout_seconds=timeout_seconds
        )
    )


async def run_chain_sweep(
    simulate_failures: Sequence[str], timeout_seconds: float
) -> ChainSweepResult:
    """Walk every text task type's fallback chain."""
    return await run_diagnostic(
        lambda tester: tester.test_all_fallback_chains(
            simulate_failures=simulate_failures, timeout_seconds=timeout_seconds
        )
    )


async def run_load_test(
    task_type: str,
    concurrent_requests: int,
    total_requests: int,
    simulate_failures: Sequence[str],
    timeout_seconds: float,
) -> LoadTestResult:
    """Walk one fallback chain many times concurrently."""
    return await run_diagnostic(
        lambda tester: tester.run_load_test(
            task_type,
            concurrent_requests,
            total_requests,
            simulate_failures=simulate_failures,
            timeout_seconds=timeout_seconds,
        )
    )


async def run_reliability_test(
    provider: str, requests: int, interval_seconds: float, timeout_seconds: float
) -> ReliabilityTestResult:
    """Call one provider repeatedly and measure how often it answers."""
    return await run_diagnostic(
        lambda tester: tester.test_provider_reliability(
            provider,
            requests=requests,
            interval_seconds=interval_seconds,
            timeout_seconds=timeout_seconds,
        )
    )


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL for this run")
def main(log_level: str | None) -> None:
    """Switchyard - route generative work across AI providers."""
    setup_logging(get_settings(), level=log_level)


@main.command()
@click.argument("units_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--task-type", default=None, help="Task type used to pick the fallback chain (default: image)"
)
@click.option("--provider", default=None, help="Preferred provider to try first")
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Override the batch concurrency limit",
)
@click.option("--retry", is_flag=True, help="Retry failed units once")
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Save generated artifacts to this directory",
)
def dispatch(
    units_file: Path,
    task_type: str | None,
    provider: str | None,
    concurrency: int | None,
    retry: bool,
    output_dir: Path | None,
) -> None:
    """Dispatch a batch of work units read from a JSON file."""
    log = get_logger("switchyard.main")
    try:
        units = load_units(units_file)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="UNITS_FILE") from e

    log.info("starting_switchyard", environment=get_settings().environment, units=len(units))
    results = asyncio.run(
        dispatch_batch(units, task_type, provider, concurrency, retry, output_dir)
    )

    summary = summarize(results)
    click.echo(json.dumps(summary, indent=2))
    log.info("switchyard_finished", succeeded=summary["succeeded"], failed=summary["failed"])
    if summary["failed"]:
        sys.exit(1)


_simulate_failure_option = click.option(
    "--simulate-failure",
    "simulate_failures",
    multiple=True,
    help="Provider to treat as failed without calling it (repeatable)",
)


@main.command("test-chain")
@click.argument("task_type", required=False)
@click.option("--all", "sweep", is_flag=True, help="Test every text task type's chain")
@_simulate_failure_option
@click.option("--timeout", type=float, default=30.0, help="Timeout per provider call (seconds)")
def chain_test_command(
    task_type: str | None, sweep: bool, simulate_failures: tuple[str, ...], timeout: float
) -> None:
    """Walk a task type's fallback chain (or all of them) with a short test prompt."""
    if sweep == (task_type is not None):
        raise click.UsageError("Give either TASK_TYPE or --all")

    result: FallbackChainTestResult | ChainSweepResult
    if task_type is None:
        result = asyncio.run(run_chain_sweep(simulate_failures, timeout))
    else:
        result = asyncio.run(run_chain_test(task_type, simulate_failures, timeout))
    click.echo(json.dumps(result.to_dict(), indent=2))
    if not result.success:
        sys.exit(1)


@main.command("load-test")
@click.argument("task_type")
@click.option(
    "--concurrency", type=click.IntRange(min=1), default=5, help="Requests in flight at once"
)
@click.option("--requests", type=click.IntRange(min=1), default=20, help="Total requests")
@_simulate_failure_option
@click.option("--timeout", type=float, default=30.0, help="Timeout per provider call (seconds)")
def load_test_command(
    task_type: str,
    concurrency: int,
    requests: int,
    simulate_failures: tuple[str, ...],
    timeout: float,
) -> None:
    """Walk a fallback chain many times concurrently and report latency."""
    result = asyncio.run(
        run_load_test(task_type, concurrency, requests, simulate_failures, timeout)
    )
    click.echo(json.dumps(result.to_dict(), indent=2))
    if result.success_rate == 0:
        sys.exit(1)


@main.command()
@click.argument("provider")
@click.option("--requests", type=click.IntRange(min=1), default=50, help="Sequential calls")
@click.option("--interval", type=float, default=1.0, help="Pause between calls (seconds)")
@click.option("--timeout", type=float, default=10.0, help="Timeout per call (seconds)")
def reliability(provider: str, requests: int, interval: float, timeout: float) -> None:
    """Call one provider repeatedly and report how often it answers."""
    result = asyncio.run(run_reliability_test(provider, requests, interval, timeout))
    click.echo(json.dumps(result.to_dict(), indent=2))
    if result.success_count == 0:
        sys.exit(1)


@main.command()
def usage() -> None:
    """Show month-to-date spend against monthly limits."""
    orch = Orchestrator.from_settings(clients={})
    click.echo(json.dumps([u.to_dict() for u in orch.get_monthly_usage()], indent=2))


if __name__ == "__main__":
    main()
