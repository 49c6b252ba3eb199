"""Provider health monitoring."""

from switchyard.health.monitor import HealthConfig, HealthMonitor, HealthRecord, HealthStats

__all__ = ["HealthConfig", "HealthMonitor", "HealthRecord", "HealthStats"]
