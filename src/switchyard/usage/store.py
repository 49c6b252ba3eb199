"""Persistent per-provider usage counters.

The ledger keeps only a bounded in-memory history; month-to-date spend,
monthly limits and the active flag live in an external store so they survive
restarts. :class:`SQLiteUsageStore` is the bundled implementation, created at
``data/usage.db`` by default.
"""

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

from switchyard.logging import get_logger

log = get_logger("switchyard.usage.store")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS provider_usage (
    provider TEXT PRIMARY KEY,
    current_usage REAL NOT NULL DEFAULT 0,
    monthly_limit REAL,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    last_reset_at DATETIME,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""


@dataclass
class ProviderUsage:
    """Month-to-date spend and budget state for one provider."""

    provider: str
    current_usage: float = 0.0
    monthly_limit: float | None = None
    active: bool = True
    last_reset_at: datetime | None = None


class UsageStore(Protocol):
    """Interface of the external usage counter store."""

    def increment_usage(self, provider: str, cost_delta: float) -> None: ...

    def get_usage(self, provider: str) -> ProviderUsage | None: ...

    def set_active(self, provider: str, active: bool) -> None: ...

    def set_monthly_limit(self, provider: str, limit: float | None) -> None: ...

    def list_usage(self) -> list[ProviderUsage]: ...

    def reset_monthly_counters(self) -> None: ...


class SQLiteUsageStore:
    """SQLite storage for provider usage counters.

    Thread-safe via connection-per-operation pattern.
    """

    def __init__(self, db_path: str | Path = "data/usage.db"):
        """Initialize the usage store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()
        log.info("usage_store_initialized", path=str(self._db_path))

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def increment_usage(self, provider: str, cost_delta: float) -> None:
        """Add a cost delta to a provider's month-to-date usage."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO provider_usage (provider, current_usage)
                VALUES (?, ?)
                ON CONFLICT (provider) DO UPDATE SET
                    current_usage = COALESCE(current_usage, 0) + excluded.current_usage,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (provider, cost_delta),
            )
            conn.commit()

    def get_usage(self, provider: str) -> ProviderUsage | None:
        """Get a provider's usage row, or None if it has never been seen."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM provider_usage WHERE provider = ?", (provider,)
            ).fetchone()
        return self._row_to_usage(row) if row else None

    def set_active(self, provider: str, active: bool) -> None:
        """Activate or deactivate a provider."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO provider_usage (provider, active) VALUES (?, ?)
                ON CONFLICT (provider) DO UPDATE SET
                    active = excluded.active,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (provider, active),
            )
            conn.commit()

    def set_monthly_limit(self, provider: str, limit: float | None) -> None:
        """Set a provider's monthly spend ceiling (None removes it)."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO provider_usage (provider, monthly_limit) VALUES (?, ?)
                ON CONFLICT (provider) DO UPDATE SET
                    monthly_limit = excluded.monthly_limit,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (provider, limit),
            )
            conn.commit()

    def list_usage(self) -> list[ProviderUsage]:
        """Get usage rows for every known provider."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM provider_usage ORDER BY provider").fetchall()
        return [self._row_to_usage(row) for row in rows]

    def reset_monthly_counters(self) -> None:
        """Zero every provider's usage and re-activate them."""
        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE provider_usage SET
                    current_usage = 0,
                    active = TRUE,
                    last_reset_at = ?,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (datetime.now().isoformat(),),
            )
            conn.commit()
        log.info("monthly_counters_reset")

    def _row_to_usage(self, row: sqlite3.Row) -> ProviderUsage:
        """Convert a database row to a ProviderUsage."""
        last_reset = row["last_reset_at"]
        return ProviderUsage(
            provider=row["provider"],
            current_usage=float(row["current_usage"] or 0.0),
            monthly_limit=float(row["monthly_limit"]) if row["monthly_limit"] is not None else None,
            active=bool(row["active"]),
            last_reset_at=datetime.fromisoformat(last_reset) if last_reset else None,
        )
