"""Google adapter (Gemini text and Imagen images).

The google-genai client is synchronous here, so calls run in a worker thread
to keep the event loop free.
"""

import asyncio
import base64
from typing import Any

from google import genai
from google.genai import types

from switchyard.logging import get_logger
from switchyard.providers.base import GenerationOptions, GenerationOutcome, ProviderClient
from switchyard.routing.capabilities import Capability
from switchyard.routing.errors import ProviderCallError
from switchyard.usage.pricing import get_cost, get_image_cost

log = get_logger("switchyard.providers.google")

# Pixel sizes used by work units -> Imagen aspect ratios
_ASPECT_RATIOS = {
    "1024x1024": "1:1",
    "1792x1024": "16:9",
    "1024x1792": "9:16",
    "1536x1024": "4:3",
    "1024x1536": "3:4",
}


class GoogleClient(ProviderClient):
    """Calls Gemini for text and Imagen for images."""

    name = "google"

    def __init__(
        self,
        api_key: str,
        default_model: str,
        image_model: str = "imagen-3.0-generate-001",
    ) -> None:
        super().__init__(default_model, image_model)
        self._client = genai.Client(api_key=api_key)

    async def generate(self, prompt: str, options: GenerationOptions) -> GenerationOutcome:
        """Generate text or an image depending on the requested capability."""
        if options.capability == Capability.IMAGE:
            return await self._generate_image(prompt, options)
        return await self._generate_text(prompt, options)

    async def _generate_text(self, prompt: str, options: GenerationOptions) -> GenerationOutcome:
        model = self.resolve_model(options)
        content = prompt
        if options.system_prompt:
            content = f"{options.system_prompt}\n\n{prompt}"

        def _sync_generate() -> Any:
            return self._client.models.generate_content(
                model=model,
                contents=content,
                config={
                    "temperature": options.temperature,
                    "max_output_tokens": options.max_tokens,
                },
            )

        response = await asyncio.to_thread(_sync_generate)

        text = response.text or ""
        if not text:
            raise ProviderCallError(self.name, "response contained no text")

        usage = getattr(response, "usage_metadata", None)
        input_tokens = getattr(usage, "prompt_token_count", 0) if usage else 0
        output_tokens = getattr(usage, "candidates_token_count", 0) if usage else 0
        # Heuristic when usage metadata is missing
        if not input_tokens:
            input_tokens = len(content.split()) * 2
        if not output_tokens:
            output_tokens = len(text.split()) * 2

        cost = get_cost(model, input_tokens, output_tokens)
        return GenerationOutcome(
            success=True,
            model=model,
            content=text,
            tokens_used=input_tokens + output_tokens,
            cost=cost.cost_usd,
        )

    async def _generate_image(self, prompt: str, options: GenerationOptions) -> GenerationOutcome:
        model = self.resolve_model(options)
        config = types.GenerateImagesConfig(
            number_of_images=1,
            aspect_ratio=_ASPECT_RATIOS.get(options.size or "", "1:1"),
        )

        def _sync_generate() -> Any:
            return self._client.models.generate_images(model=model, prompt=prompt, config=config)

        response = await asyncio.to_thread(_sync_generate)

        refs: list[str] = []
        for generated in response.generated_images or []:
            image = generated.image
            if image is None or not image.image_bytes:
                continue
            mime = image.mime_type or "image/png"
            encoded = base64.b64encode(image.image_bytes).decode("ascii")
            refs.append(f"data:{mime};base64,{encoded}")

        if not refs:
            raise ProviderCallError(self.name, "image response contained no images")

        cost = get_image_cost(self.name, model, count=len(refs))
        return GenerationOutcome(
            success=True,
            model=model,
            artifact_refs=refs,
            cost=cost.cost_usd,
        )

    async def test_connection(self) -> bool:
        """Check the API key by listing models."""

        def _sync_health_check() -> bool:
            list(self._client.models.list())
            return True

        try:
            return await asyncio.to_thread(_sync_health_check)
        except Exception as e:
            log.warning("connection_test_failed", provider=self.name, error=str(e))
            return False
