"""Provider capability registry and candidate selection."""

from switchyard.routing.capabilities import (
    Capability,
    CapabilityRegistry,
    ProviderProfile,
    TaskParameters,
    TaskType,
    models_for_task,
    parameters_for_task,
)
from switchyard.routing.errors import (
    ExhaustedFallbackError,
    NoSuitableProviderError,
    OrchestrationError,
    ProviderCallError,
)
from switchyard.routing.selector import ProviderSelector, TaskRequirements

__all__ = [
    "Capability",
    "CapabilityRegistry",
    "ExhaustedFallbackError",
    "NoSuitableProviderError",
    "OrchestrationError",
    "ProviderCallError",
    "ProviderProfile",
    "ProviderSelector",
    "TaskParameters",
    "TaskRequirements",
    "TaskType",
    "models_for_task",
    "parameters_for_task",
]
