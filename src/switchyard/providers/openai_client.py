"""OpenAI adapter (chat completions and DALL-E images)."""

import openai

from switchyard.logging import get_logger
from switchyard.providers.base import GenerationOptions, GenerationOutcome, ProviderClient
from switchyard.routing.capabilities import Capability
from switchyard.routing.errors import ProviderCallError
from switchyard.usage.pricing import get_cost, get_image_cost

log = get_logger("switchyard.providers.openai")

DEFAULT_IMAGE_SIZE = "1024x1024"

# Work-unit quality setting -> DALL-E quality parameter
_QUALITY_MAP = {"high": "hd", "standard": "standard"}


class OpenAIClient(ProviderClient):
    """Calls the OpenAI chat completions and image generation APIs."""

    name = "openai"

    def __init__(self, api_key: str, default_model: str, image_model: str = "dall-e-3") -> None:
        super().__init__(default_model, image_model)
        self._client = openai.AsyncOpenAI(api_key=api_key)

    async def generate(self, prompt: str, options: GenerationOptions) -> GenerationOutcome:
        """Generate text or an image depending on the requested capability."""
        if options.capability == Capability.IMAGE:
            return await self._generate_image(prompt, options)
        return await self._generate_text(prompt, options)

    async def _generate_text(self, prompt: str, options: GenerationOptions) -> GenerationOutcome:
        model = self.resolve_model(options)
        messages: list[dict[str, str]] = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = await self._client.chat.completions.create(
            model=model,
            messages=messages,  # type: ignore[arg-type]
            max_tokens=options.max_tokens,
            temperature=options.temperature,
        )

        if not response.choices:
            raise ProviderCallError(self.name, "response contained no choices")

        input_tokens = response.usage.prompt_tokens if response.usage else 0
        output_tokens = response.usage.completion_tokens if response.usage else 0
        cost = get_cost(model, input_tokens, output_tokens)
        return GenerationOutcome(
            success=True,
            model=model,
            content=response.choices[0].message.content or "",
            tokens_used=input_tokens + output_tokens,
            cost=cost.cost_usd,
        )

    async def _generate_image(self, prompt: str, options: GenerationOptions) -> GenerationOutcome:
        model = self.resolve_model(options)
        kwargs: dict[str, object] = {
            "model": model,
            "prompt": prompt,
            "n": 1,
            "size": options.size or DEFAULT_IMAGE_SIZE,
            "quality": _QUALITY_MAP.get(options.quality, "standard"),
        }
        if options.style in ("vivid", "natural"):
            kwargs["style"] = options.style

        response = await self._client.images.generate(**kwargs)  # type: ignore[call-overload]

        refs = [img.url for img in (response.data or []) if img.url]
        if not refs:
            raise ProviderCallError(self.name, "image response contained no URLs")

        cost = get_image_cost(self.name, model, count=len(refs))
        return GenerationOutcome(
            success=True,
            model=model,
            artifact_refs=refs,
            cost=cost.cost_usd,
        )

    async def test_connection(self) -> bool:
        """Check the API key by listing models."""
        try:
            await self._client.models.list()
            return True
        except Exception as e:
            log.warning("connection_test_failed", provider=self.name, error=str(e))
            return False

    async def close(self) -> None:
        """Close the SDK's HTTP client."""
        await self._client.close()
