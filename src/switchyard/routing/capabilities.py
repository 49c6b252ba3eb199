"""Provider capability registry and task fallback chains.

Static configuration: which provider can do what, how large a context it
accepts, what it roughly costs, and in which order providers are tried for
each kind of task. Nothing here is mutated after construction, so a single
registry can be read from any number of concurrent callers.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from switchyard.constants import DEFAULT_MAX_TOKENS
from switchyard.logging import get_logger

log = get_logger("switchyard.routing.capabilities")

DEFAULT_CHAIN_KEY = "default"


class Capability(Enum):
    """Categories of generative work a provider can perform."""

    TEXT = "text"
    IMAGE = "image"
    RESEARCH = "research"
    MULTIMODAL = "multimodal"


class TaskType(Enum):
    """Task types with a dedicated fallback chain.

    Any other string is accepted by the registry and routed through the
    ``default`` chain.
    """

    RESEARCH = "research"
    WRITING = "writing"
    IMAGE = "image"
    CREATIVE = "creative"
    ANALYSIS = "analysis"
    MULTIMODAL = "multimodal"
    IDEATION = "ideation"


@dataclass(frozen=True)
class ProviderProfile:
    """Immutable description of what a provider supports."""

    name: str
    capabilities: frozenset[Capability]
    max_tokens: int
    cost_per_1k_tokens: float

    def supports(self, capability: Capability) -> bool:
        """Check whether the provider offers a capability."""
        return capability in self.capabilities


@dataclass(frozen=True)
class TaskParameters:
    """Sampling parameters tuned per task type."""

    temperature: float = 0.7
    max_tokens: int = DEFAULT_MAX_TOKENS


DEFAULT_PROFILES: dict[str, ProviderProfile] = {
    "openai": ProviderProfile(
        name="openai",
        capabilities=frozenset(
            {Capability.TEXT, Capability.IMAGE, Capability.RESEARCH, Capability.MULTIMODAL}
        ),
        max_tokens=128_000,
        cost_per_1k_tokens=0.03,
    ),
    "anthropic": ProviderProfile(
        name="anthropic",
        capabilities=frozenset({Capability.TEXT, Capability.RESEARCH}),
        max_tokens=200_000,
        cost_per_1k_tokens=0.025,
    ),
    "google": ProviderProfile(
        name="google",
        capabilities=frozenset(
            {Capability.TEXT, Capability.IMAGE, Capability.RESEARCH, Capability.MULTIMODAL}
        ),
        max_tokens=1_000_000,
        cost_per_1k_tokens=0.02,
    ),
    "perplexity": ProviderProfile(
        name="perplexity",
        capabilities=frozenset({Capability.TEXT, Capability.RESEARCH}),
        max_tokens=128_000,
        cost_per_1k_tokens=0.015,
    ),
}

# Ordered provider preference per task type (first = tried first)
DEFAULT_FALLBACK_CHAINS: dict[str, tuple[str, ...]] = {
    TaskType.RESEARCH.value: ("perplexity", "anthropic", "google", "openai"),
    TaskType.WRITING.value: ("anthropic", "openai", "google"),
    TaskType.IMAGE.value: ("google", "openai"),
    TaskType.CREATIVE.value: ("openai", "anthropic", "google"),
    TaskType.ANALYSIS.value: ("anthropic", "google", "openai"),
    TaskType.MULTIMODAL.value: ("google", "openai"),
    TaskType.IDEATION.value: ("openai", "anthropic", "google"),
    DEFAULT_CHAIN_KEY: ("anthropic", "openai", "google", "perplexity"),
}

# Preferred models per provider and task; the first entry is used
TASK_MODELS: dict[str, dict[str, tuple[str, ...]]] = {
    "openai": {
        "writing": ("gpt-4o", "gpt-4-turbo"),
        "creative": ("gpt-4o", "gpt-4-turbo"),
        "image": ("dall-e-3", "dall-e-2"),
        "research": ("gpt-4o",),
        "analysis": ("gpt-4o",),
        "multimodal": ("gpt-4o",),
        "ideation": ("gpt-4o",),
    },
    "anthropic": {
        "writing": ("claude-3-5-sonnet-20241022", "claude-3-5-haiku-20241022"),
        "creative": ("claude-3-5-sonnet-20241022",),
        "research": ("claude-3-5-sonnet-20241022",),
        "analysis": ("claude-3-5-sonnet-20241022",),
        "ideation": ("claude-3-5-sonnet-20241022",),
    },
    "google": {
        "writing": ("gemini-1.5-pro", "gemini-1.5-flash"),
        "creative": ("gemini-1.5-pro",),
        "image": ("imagen-3.0-generate-001",),
        "research": ("gemini-1.5-pro",),
        "analysis": ("gemini-1.5-pro",),
        "multimodal": ("gemini-1.5-pro",),
        "ideation": ("gemini-1.5-pro",),
    },
    "perplexity": {
        "research": ("llama-3.1-sonar-large-128k-online", "llama-3.1-sonar-small-128k-online"),
        "writing": ("llama-3.1-sonar-large-128k-chat",),
        "analysis": ("llama-3.1-sonar-large-128k-online",),
    },
}

TASK_PARAMETERS: dict[str, TaskParameters] = {
    "writing": TaskParameters(temperature=0.7, max_tokens=4000),
    "creative": TaskParameters(temperature=0.9, max_tokens=4000),
    "research": TaskParameters(temperature=0.3, max_tokens=8000),
    "analysis": TaskParameters(temperature=0.2, max_tokens=4000),
    "ideation": TaskParameters(temperature=0.8, max_tokens=3000),
    "image": TaskParameters(temperature=0.7, max_tokens=1000),
}


def task_key(task_type: str | TaskType) -> str:
    """Normalize a task type to its string key."""
    if isinstance(task_type, TaskType):
        return task_type.value
    return str(task_type)


class CapabilityRegistry:
    """Lookup of provider profiles and per-task fallback chains."""

    def __init__(
        self,
        profiles: Mapping[str, ProviderProfile] | Iterable[ProviderProfile] | None = None,
        chains: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        if profiles is None:
            profiles = DEFAULT_PROFILES
        if isinstance(profiles, Mapping):
            self._profiles = dict(profiles)
        else:
            self._profiles = {p.name: p for p in profiles}

        source = DEFAULT_FALLBACK_CHAINS if chains is None else chains
        self._chains: dict[str, tuple[str, ...]] = {k: tuple(v) for k, v in source.items()}
        if DEFAULT_CHAIN_KEY not in self._chains:
            raise ValueError(f"Fallback chains must define a '{DEFAULT_CHAIN_KEY}' chain")

        for task, chain in self._chains.items():
            unknown = [name for name in chain if name not in self._profiles]
            if unknown:
                # Dangling names are legal; they simply never match a profile
                log.debug("chain_references_unknown_provider", task_type=task, providers=unknown)

    def capabilities_of(self, provider: str) -> ProviderProfile | None:
        """Get the profile for a provider, or None if it is not registered."""
        return self._profiles.get(provider)

    def chain_for(self, task_type: str | TaskType) -> list[str]:
        """Get the ordered fallback chain for a task type.

        Unknown task types use the ``default`` chain.
        """
        chain = self._chains.get(task_key(task_type))
        if chain is None:
            chain = self._chains[DEFAULT_CHAIN_KEY]
        return list(chain)

    def providers(self) -> list[str]:
        """Get all registered provider names."""
        return list(self._profiles)

    def profiles(self) -> dict[str, ProviderProfile]:
        """Get a copy of all provider profiles."""
        return dict(self._profiles)

    def chains(self) -> dict[str, list[str]]:
        """Get a copy of all fallback chains."""
        return {k: list(v) for k, v in self._chains.items()}


def models_for_task(provider: str, task_type: str | TaskType) -> list[str]:
    """Get the preferred models for a provider and task, best first.

    Falls back to the provider's writing models when the task has no entry.
    """
    provider_models = TASK_MODELS.get(provider)
    if not provider_models:
        return []
    key = task_key(task_type)
    return list(provider_models.get(key) or provider_models.get("writing") or ())


def parameters_for_task(task_type: str | TaskType) -> TaskParameters:
    """Get the sampling parameters for a task type."""
    return TASK_PARAMETERS.get(task_key(task_type), TaskParameters())
