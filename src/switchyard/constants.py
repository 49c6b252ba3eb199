"""Shared default values."""

# Health monitoring
DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS = 300.0  # 5 minutes
DEFAULT_PROBE_TIMEOUT_SECONDS = 10.0
DEFAULT_EWMA_ALPHA = 0.1

# Dispatch
DEFAULT_CONCURRENCY = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_CALL_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_TOKENS = 4000

# Usage ledger
DEFAULT_HISTORY_SIZE = 10_000
DEFAULT_STATS_WINDOW_DAYS = 30

# Records above this cost are logged even when successful
HIGH_COST_LOG_THRESHOLD_USD = 1.0
