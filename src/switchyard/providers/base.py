"""Provider call boundary.

Every external generation service is wrapped in a :class:`ProviderClient`.
The pipeline only ever sees ``generate`` and ``test_connection``; SDK details
stay inside the adapters.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from switchyard.constants import DEFAULT_MAX_TOKENS
from switchyard.routing.capabilities import Capability, TaskType, models_for_task, task_key


@dataclass
class GenerationOptions:
    """Per-call options passed to a provider."""

    task_type: str = TaskType.WRITING.value
    capability: Capability = Capability.TEXT
    model: str | None = None
    temperature: float = 0.7
    max_tokens: int = DEFAULT_MAX_TOKENS
    size: str | None = None
    style: str | None = None
    quality: str = "high"
    system_prompt: str | None = None


@dataclass
class GenerationOutcome:
    """Result of one provider call."""

    success: bool
    model: str
    artifact_refs: list[str] = field(default_factory=list)
    content: str | None = None
    error: str | None = None
    tokens_used: int = 0
    cost: float = 0.0


class ProviderClient(ABC):
    """Adapter around one provider's API."""

    name: str = ""

    def __init__(self, default_model: str, image_model: str | None = None) -> None:
        self._default_model = default_model
        self._image_model = image_model

    def resolve_model(self, options: GenerationOptions) -> str:
        """Pick the model for a call: explicit, then task preference, then default."""
        if options.model:
            return options.model
        if options.capability == Capability.IMAGE and self._image_model:
            return self._image_model
        preferred = models_for_task(self.name, task_key(options.task_type))
        if preferred and options.capability != Capability.IMAGE:
            return preferred[0]
        return self._default_model

    @abstractmethod
    async def generate(self, prompt: str, options: GenerationOptions) -> GenerationOutcome:
        """Run one generation call.

        Raises:
            Exception: Any SDK or transport error; the caller treats it as a
                failed attempt.
        """

    @abstractmethod
    async def test_connection(self) -> bool:
        """Lightweight reachability check used by the health monitor."""

    async def close(self) -> None:
        """Release network resources."""
