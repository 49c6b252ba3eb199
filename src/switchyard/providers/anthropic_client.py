"""Anthropic Claude adapter (text only)."""

import anthropic

from switchyard.logging import get_logger
from switchyard.providers.base import GenerationOptions, GenerationOutcome, ProviderClient
from switchyard.routing.capabilities import Capability
from switchyard.routing.errors import ProviderCallError
from switchyard.usage.pricing import get_cost

log = get_logger("switchyard.providers.anthropic")


class AnthropicClient(ProviderClient):
    """Calls the Anthropic Messages API."""

    name = "anthropic"

    def __init__(self, api_key: str, default_model: str) -> None:
        super().__init__(default_model)
        self._client = anthropic.AsyncAnthropic(api_key=api_key)

    async def generate(self, prompt: str, options: GenerationOptions) -> GenerationOutcome:
        """Generate text with Claude."""
        model = self.resolve_model(options)
        if options.capability == Capability.IMAGE:
            return GenerationOutcome(
                success=False, model=model, error="Anthropic does not generate images"
            )

        response = await self._client.messages.create(
            model=model,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            system=options.system_prompt or "",
            messages=[{"role": "user", "content": prompt}],
        )

        text_blocks = [block.text for block in response.content if hasattr(block, "text")]
        if not text_blocks:
            raise ProviderCallError(self.name, "response contained no text")

        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        cost = get_cost(model, input_tokens, output_tokens)
        return GenerationOutcome(
            success=True,
            model=model,
            content="".join(text_blocks),
            tokens_used=input_tokens + output_tokens,
            cost=cost.cost_usd,
        )

    async def test_connection(self) -> bool:
        """Check the API key by listing models."""
        try:
            await self._client.models.list(limit=1)
            return True
        except Exception as e:
            log.warning("connection_test_failed", provider=self.name, error=str(e))
            return False

    async def close(self) -> None:
        """Close the SDK's HTTP client."""
        await self._client.close()
