"""Usage ledger, persistent counters, budget enforcement and reports."""

from switchyard.usage.ledger import (
    BudgetStatus,
    ProviderStats,
    TaskStats,
    UsageLedger,
    UsageRecord,
    UsageStats,
)
from switchyard.usage.persistence import UsagePersistenceWorker
from switchyard.usage.pricing import CostResult, get_cost, get_image_cost
from switchyard.usage.reports import (
    CostBreakdown,
    MonthlyUsage,
    ProviderComparison,
    cost_breakdown,
    get_monthly_usage,
    provider_comparison,
)
from switchyard.usage.store import ProviderUsage, SQLiteUsageStore, UsageStore

__all__ = [
    "BudgetStatus",
    "CostBreakdown",
    "CostResult",
    "MonthlyUsage",
    "ProviderComparison",
    "ProviderStats",
    "ProviderUsage",
    "SQLiteUsageStore",
    "TaskStats",
    "UsageLedger",
    "UsagePersistenceWorker",
    "UsageRecord",
    "UsageStats",
    "UsageStore",
    "cost_breakdown",
    "get_cost",
    "get_image_cost",
    "get_monthly_usage",
    "provider_comparison",
]
