"""Perplexity adapter (OpenAI-compatible chat completions over httpx)."""

import httpx

from switchyard.logging import get_logger
from switchyard.providers.base import GenerationOptions, GenerationOutcome, ProviderClient
from switchyard.routing.capabilities import Capability
from switchyard.routing.errors import ProviderCallError
from switchyard.usage.pricing import get_cost

log = get_logger("switchyard.providers.perplexity")


class PerplexityClient(ProviderClient):
    """Calls Perplexity's chat completions endpoint."""

    name = "perplexity"

    def __init__(
        self,
        api_key: str,
        default_model: str,
        base_url: str = "https://api.perplexity.ai",
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(default_model)
        self._base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    async def generate(self, prompt: str, options: GenerationOptions) -> GenerationOutcome:
        """Generate text (research-oriented models answer with citations)."""
        model = self.resolve_model(options)
        if options.capability == Capability.IMAGE:
            return GenerationOutcome(
                success=False, model=model, error="Perplexity does not generate images"
            )

        messages: list[dict[str, str]] = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = await self._http.post(
            f"{self._base_url}/chat/completions",
            json={
                "model": model,
                "messages": messages,
                "max_tokens": options.max_tokens,
                "temperature": options.temperature,
            },
        )
        response.raise_for_status()
        data = response.json()

        choices = data.get("choices") or []
        if not choices:
            raise ProviderCallError(self.name, "response contained no choices")

        usage = data.get("usage") or {}
        input_tokens = usage.get("prompt_tokens", 0)
        output_tokens = usage.get("completion_tokens", 0)
        cost = get_cost(model, input_tokens, output_tokens)
        return GenerationOutcome(
            success=True,
            model=model,
            content=choices[0].get("message", {}).get("content", ""),
            tokens_used=input_tokens + output_tokens,
            cost=cost.cost_usd,
        )

    async def test_connection(self) -> bool:
        """Send a one-token request; any 2xx counts as reachable."""
        try:
            response = await self._http.post(
                f"{self._base_url}/chat/completions",
                json={
                    "model": self._default_model,
                    "messages": [{"role": "user", "content": "ping"}],
                    "max_tokens": 1,
                },
            )
            return response.is_success
        except Exception as e:
            log.warning("connection_test_failed", provider=self.name, error=str(e))
            return False

    async def close(self) -> None:
        """Close the shared HTTP client."""
        await self._http.aclose()
