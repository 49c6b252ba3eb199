"""Exceptions raised by the routing and dispatch layers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from switchyard.routing.selector import TaskRequirements


class OrchestrationError(Exception):
    """Base class for orchestration failures."""


class NoSuitableProviderError(OrchestrationError):
    """No registered provider satisfies the task's capability constraints."""

    def __init__(
        self,
        task_type: str,
        requirements: TaskRequirements | None = None,
        attempted: list[str] | None = None,
        reason: str | None = None,
    ) -> None:
        self.task_type = task_type
        self.requirements = requirements
        self.attempted = list(attempted or [])
        message = f"No suitable provider available for {task_type}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ExhaustedFallbackError(OrchestrationError):
    """Every candidate provider failed for a single unit of work."""

    def __init__(self, task_type: str, attempted: list[str], last_error: str | None = None):
        self.task_type = task_type
        self.attempted = list(attempted)
        self.last_error = last_error
        chain = " -> ".join(attempted) or "none"
        message = f"All providers failed for {task_type} (tried: {chain})"
        if last_error:
            message = f"{message}; last error: {last_error}"
        super().__init__(message)


class ProviderCallError(OrchestrationError):
    """A provider returned an unusable response."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")
