"""OpenRouter client for image generation through chat completions."""

from typing import Any, Optional

import httpx
import structlog

from vitrine.services.exceptions import PermanentError, TransientError
from vitrine.services.image_generation.base import (
    GenerationRequest,
    check_response,
    decode_data_url,
)

logger = structlog.get_logger(__name__)


class OpenRouterImageProvider:
    """Image generation via OpenRouter's chat completions API.

    The input photo goes in as a data URL, the generated image comes back as a data URL
    in choices[0].message.images.
    """

    name = "openrouter"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize OpenRouter client.

        Args:
            api_key: OpenRouter API key (from OPENROUTER_API_KEY env var)
            base_url: API base URL
            http_client: Shared client, a short-lived one is created per call when None
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client

    def _build_payload(self, request: GenerationRequest, model: str) -> dict[str, Any]:
        text = request.prompt
        if request.negative_prompt:
            text = f"{text}\n\nAvoid: {request.negative_prompt}"
        return {
            "model": model,
            "modalities": ["image", "text"],
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": text},
                        {"type": "image_url", "image_url": {"url": request.input_data_url()}},
                    ],
                }
            ],
        }

    async def generate(self, request: GenerationRequest, model: str) -> bytes:
        """Generate one image.

        Raises:
            TransientError: Network timeout, rate limit (429), service unavailable (5xx)
            PermanentError: Missing key, auth failure, bad request, response without image
        """
        if not self.api_key:
            raise PermanentError("OPENROUTER_API_KEY not configured", "UNAUTHORIZED")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if request.correlation_id:
            headers["X-Correlation-Id"] = request.correlation_id

        payload = self._build_payload(request, model)
        url = f"{self.base_url}/chat/completions"

        try:
            if self.http_client is not None:
                response = await self.http_client.post(url, headers=headers, json=payload)
            else:
                async with httpx.AsyncClient(timeout=60.0) as client:
                    response = await client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise TransientError(f"Request timeout: {e}", "PROVIDER_TIMEOUT") from e
        except httpx.HTTPError as e:
            raise TransientError(f"Network error: {e}", "PROVIDER_UNAVAILABLE") from e

        check_response(response, "openrouter")
        return self._extract_image(response.json(), model)

    def _extract_image(self, body: dict[str, Any], model: str) -> bytes:
        try:
            message = body["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise PermanentError(f"Malformed OpenRouter response: {e}") from e

        images = message.get("images") or []
        if not images:
            logger.warning(
                "openrouter.no_image_returned",
                model=model,
                text=(message.get("content") or "")[:200],
            )
            raise PermanentError(f"Model {model} returned no image", "NO_IMAGE")

        return decode_data_url(images[0]["image_url"]["url"])
