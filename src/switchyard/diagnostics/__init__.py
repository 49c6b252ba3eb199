"""Diagnostics for fallback chains."""

from switchyard.diagnostics.fallback_tester import (
    ChainSweepResult,
    FallbackAttempt,
    FallbackChainTestResult,
    FallbackTester,
    LoadTestResult,
    ReliabilityTestResult,
)

__all__ = [
    "ChainSweepResult",
    "FallbackAttempt",
    "FallbackChainTestResult",
    "FallbackTester",
    "LoadTestResult",
    "ReliabilityTestResult",
]
