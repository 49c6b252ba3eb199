"""Usage reports built from the ledger and the persistent counters.

Monthly budget standing comes from the store (it survives restarts); time
breakdowns and provider comparisons come from the in-memory history.
"""

import calendar
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from switchyard.logging import get_logger
from switchyard.usage.ledger import UsageRecord, UsageStats
from switchyard.usage.store import UsageStore

log = get_logger("switchyard.usage.reports")

# Budget standing thresholds (percent of monthly limit)
WARNING_PCT = 75.0
CRITICAL_PCT = 90.0
EXCEEDED_PCT = 100.0


@dataclass
class MonthlyUsage:
    """Month-to-date budget standing of one provider."""

    provider: str
    current_usage: float
    limit: float
    percentage: float
    days_remaining: int
    projected: float
    status: str  # safe | warning | critical | exceeded

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "provider": self.provider,
            "current_usage": round(self.current_usage, 4),
            "limit": round(self.limit, 2),
            "percentage": round(self.percentage, 1),
            "days_remaining": self.days_remaining,
            "projected": round(self.projected, 2),
            "status": self.status,
        }


@dataclass
class PeriodCost:
    """Cost, tokens and request count for one day or hour bucket."""

    key: str | int
    cost: float = 0.0
    tokens: int = 0
    requests: int = 0


def _period_totals(period: PeriodCost) -> dict[str, Any]:
    return {"cost": round(period.cost, 6), "tokens": period.tokens, "requests": period.requests}


@dataclass
class CostBreakdown:
    """Cost by calendar day and by hour of day."""

    daily: list[PeriodCost] = field(default_factory=list)
    hourly: list[PeriodCost] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "daily": [{"date": p.key, **_period_totals(p)} for p in self.daily],
            "hourly": [{"hour": p.key, **_period_totals(p)} for p in self.hourly],
        }


@dataclass
class ProviderPerformance:
    """One row of a provider comparison."""

    name: str
    avg_latency: float
    success_rate: float
    cost_per_token: float
    total_cost: float
    total_tokens: int
    requests: int


@dataclass
class ProviderComparison:
    """Providers ranked by spend, plus the best provider per dimension."""

    providers: list[ProviderPerformance]
    best_by: dict[str, str]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "providers": [
                {
                    "name": p.name,
                    "avg_latency": round(p.avg_latency, 2),
                    "success_rate": round(p.success_rate, 4),
                    "cost_per_token": p.cost_per_token,
                    "total_cost": round(p.total_cost, 6),
                    "total_tokens": p.total_tokens,
                    "requests": p.requests,
                }
                for p in self.providers
            ],
            "best_by": dict(self.best_by),
        }


def budget_status(percentage: float) -> str:
    """Classify a percentage of the monthly limit."""
    if percentage >= EXCEEDED_PCT:
        return "exceeded"
    if percentage >= CRITICAL_PCT:
        return "critical"
    if percentage >= WARNING_PCT:
        return "warning"
    return "safe"


def get_monthly_usage(store: UsageStore, now: datetime | None = None) -> list[MonthlyUsage]:
    """Get budget standing for every provider with a monthly limit.

    Args:
        store: Persistent usage counter store.
        now: Reference time (defaults to now, UTC).

    Returns:
        One entry per limited provider, highest percentage first. Empty if
        the store cannot be read.
    """
    now = now or datetime.now(UTC)
    days_in_month = calendar.monthrange(now.year, now.month)[1]
    days_passed = now.day
    days_remaining = days_in_month - days_passed

    try:
        rows = store.list_usage()
    except Exception as e:
        log.error("monthly_usage_failed", error=str(e))
        return []

    result: list[MonthlyUsage] = []
    for row in rows:
        limit = row.monthly_limit or 0.0
        if limit <= 0:
            continue
        percentage = row.current_usage / limit * 100
        result.append(
            MonthlyUsage(
                provider=row.provider,
                current_usage=row.current_usage,
                limit=limit,
                percentage=percentage,
                days_remaining=days_remaining,
                projected=row.current_usage / days_passed * days_in_month,
                status=budget_status(percentage),
            )
        )

    return sorted(result, key=lambda u: u.percentage, reverse=True)


def cost_breakdown(
    records: Iterable[UsageRecord],
    days: int = 30,
    now: datetime | None = None,
) -> CostBreakdown:
    """Break cost down by day (``YYYY-MM-DD``) and by hour of day (UTC).

    Args:
        records: Ledger records to aggregate.
        days: Window size in days.
        now: Reference time (defaults to now, UTC).

    Returns:
        CostBreakdown with both series sorted ascending.
    """
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(days=days)

    daily: dict[str, PeriodCost] = {}
    hourly: dict[int, PeriodCost] = {}
    for r in records:
        if r.timestamp < cutoff:
            continue
        ts = r.timestamp.astimezone(UTC)
        for bucket in (
            daily.setdefault(ts.strftime("%Y-%m-%d"), PeriodCost(ts.strftime("%Y-%m-%d"))),
            hourly.setdefault(ts.hour, PeriodCost(ts.hour)),
        ):
            bucket.cost += r.cost
            bucket.tokens += r.tokens_used
            bucket.requests += 1

    return CostBreakdown(
        daily=[daily[k] for k in sorted(daily)],
        hourly=[hourly[k] for k in sorted(hourly)],
    )


def provider_comparison(stats: UsageStats) -> ProviderComparison:
    """Compare providers on speed, reliability, cost per token and volume.

    Ties go to the provider seen first. Every ``best_by`` entry is
    ``"none"`` when there is no data.
    """
    rows = [
        ProviderPerformance(
            name=name,
            avg_latency=s.avg_latency,
            success_rate=s.success_rate,
            cost_per_token=s.cost / s.tokens if s.tokens > 0 else 0.0,
            total_cost=s.cost,
            total_tokens=s.tokens,
            requests=s.calls,
        )
        for name, s in stats.by_provider.items()
    ]

    if not rows:
        best_by = dict.fromkeys(("speed", "reliability", "cost", "volume"), "none")
    else:
        best_by = {
            "speed": min(rows, key=lambda p: p.avg_latency).name,
            "reliability": max(rows, key=lambda p: p.success_rate).name,
            "cost": min(rows, key=lambda p: p.cost_per_token).name,
            "volume": max(rows, key=lambda p: p.total_tokens).name,
        }

    return ProviderComparison(
        providers=sorted(rows, key=lambda p: p.total_cost, reverse=True),
        best_by=best_by,
    )
