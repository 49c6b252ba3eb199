"""Build provider clients from settings."""

from switchyard.config import Settings
from switchyard.logging import get_logger
from switchyard.providers.anthropic_client import AnthropicClient
from switchyard.providers.base import ProviderClient
from switchyard.providers.google_client import GoogleClient
from switchyard.providers.openai_client import OpenAIClient
from switchyard.providers.perplexity_client import PerplexityClient

log = get_logger("switchyard.providers.factory")


def build_clients(settings: Settings) -> dict[str, ProviderClient]:
    """Create a client for every provider that has credentials.

    Args:
        settings: Application settings.

    Returns:
        Mapping of provider name to client. Providers without an API key
        are absent and therefore never selected.
    """
    clients: dict[str, ProviderClient] = {}

    if settings.anthropic_api_key:
        clients["anthropic"] = AnthropicClient(
            api_key=settings.anthropic_api_key.get_secret_value(),
            default_model=settings.anthropic_model,
        )

    if settings.openai_api_key:
        clients["openai"] = OpenAIClient(
            api_key=settings.openai_api_key.get_secret_value(),
            default_model=settings.openai_model,
            image_model=settings.openai_image_model,
        )

    if settings.google_api_key:
        clients["google"] = GoogleClient(
            api_key=settings.google_api_key.get_secret_value(),
            default_model=settings.google_model,
            image_model=settings.google_image_model,
        )

    if settings.perplexity_api_key:
        clients["perplexity"] = PerplexityClient(
            api_key=settings.perplexity_api_key.get_secret_value(),
            default_model=settings.perplexity_model,
            base_url=settings.perplexity_base_url,
            timeout=settings.provider_call_timeout_seconds,
        )

    log.info("provider_clients_built", providers=sorted(clients))
    return clients
