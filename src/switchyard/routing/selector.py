"""Provider selection for a single unit of work.

Turns a task type plus capability requirements into an ordered list of
candidate providers. The configured fallback chain is authoritative for
ordering; health only decides whether a provider is skipped, never where it
ranks. When skipping unhealthy providers would leave nothing to try, they are
kept: degraded service beats a guaranteed failure.
"""

from collections.abc import Callable
from dataclasses import dataclass

from switchyard.health.monitor import HealthMonitor
from switchyard.logging import get_logger
from switchyard.routing.capabilities import Capability, CapabilityRegistry, TaskType, task_key
from switchyard.routing.errors import NoSuitableProviderError

log = get_logger("switchyard.routing.selector")


@dataclass(frozen=True)
class TaskRequirements:
    """Constraints a provider must meet to be considered."""

    capability: Capability
    min_tokens: int | None = None
    max_cost: float | None = None


class ProviderSelector:
    """Selects and orders candidate providers for a task."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        health: HealthMonitor | None = None,
        is_available: Callable[[str], bool] | None = None,
    ) -> None:
        """Initialize the selector.

        Args:
            registry: Static capability registry.
            health: Health monitor read for the fast health signal.
            is_available: Predicate for providers that may be used at all
                (configured and not disabled by budget). Defaults to all.
        """
        self._registry = registry
        self._health = health
        self._is_available = is_available or (lambda _provider: True)

    def capable_providers(self, requirements: TaskRequirements) -> list[str]:
        """Get available providers whose profile satisfies the requirements."""
        capable: list[str] = []
        for name in self._registry.providers():
            profile = self._registry.capabilities_of(name)
            if profile is None or not profile.supports(requirements.capability):
                continue
            if requirements.min_tokens is not None and profile.max_tokens < requirements.min_tokens:
                continue
            if (
                requirements.max_cost is not None
                and profile.cost_per_1k_tokens > requirements.max_cost
            ):
                continue
            if not self._is_available(name):
                continue
            capable.append(name)
        return capable

    def select(
        self,
        task_type: str | TaskType,
        requirements: TaskRequirements,
        preferred_provider: str | None = None,
    ) -> list[str]:
        """Get the ordered candidate providers for a task.

        Args:
            task_type: Task type used to pick the fallback chain.
            requirements: Capability constraints.
            preferred_provider: Provider to try first when it is capable and
                not known to be unhealthy.

        Returns:
            Non-empty list of provider names, first to try first.

        Raises:
            NoSuitableProviderError: If no provider can serve the request.
        """
        key = task_key(task_type)
        capable = set(self.capable_providers(requirements))
        if not capable:
            log.warning(
                "no_capable_provider",
                task_type=key,
                capability=requirements.capability.value,
            )
            raise NoSuitableProviderError(
                key, requirements, reason=f"no provider supports {requirements.capability.value}"
            )

        if (
            preferred_provider
            and preferred_provider in capable
            and self._health_flag(preferred_provider) is not False
        ):
            backups = self._walk_chain(key, capable, exclude=preferred_provider)
            candidates = [preferred_provider, *backups]
            log.debug("provider_candidates", task_type=key, candidates=candidates, preferred=True)
            return candidates

        candidates = self._walk_chain(key, capable)
        if not candidates:
            raise NoSuitableProviderError(
                key, requirements, reason="no capable provider in the fallback chain"
            )

        log.debug("provider_candidates", task_type=key, candidates=candidates)
        return candidates

    def _walk_chain(
        self, task_type: str, capable: set[str], exclude: str | None = None
    ) -> list[str]:
        in_chain = [
            name
            for name in self._registry.chain_for(task_type)
            if name in capable and name != exclude
        ]
        healthy = [name for name in in_chain if self._health_flag(name) is not False]
        if healthy or not in_chain:
            return healthy

        log.warning("all_candidates_unhealthy", task_type=task_type, candidates=in_chain)
        return in_chain

    def _health_flag(self, provider: str) -> bool | None:
        if self._health is None:
            return None
        return self._health.is_healthy(provider)
