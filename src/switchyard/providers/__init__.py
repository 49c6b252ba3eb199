"""Provider adapters behind a common call boundary."""

from switchyard.providers.anthropic_client import AnthropicClient
from switchyard.providers.base import GenerationOptions, GenerationOutcome, ProviderClient
from switchyard.providers.factory import build_clients
from switchyard.providers.google_client import GoogleClient
from switchyard.providers.openai_client import OpenAIClient
from switchyard.providers.perplexity_client import PerplexityClient

__all__ = [
    "AnthropicClient",
    "GenerationOptions",
    "GenerationOutcome",
    "GoogleClient",
    "OpenAIClient",
    "PerplexityClient",
    "ProviderClient",
    "build_clients",
]
