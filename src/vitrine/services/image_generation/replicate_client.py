"""Replicate API client for image generation and NSFW detection with error classification."""

import asyncio
from typing import Any, Optional

import httpx
import replicate
from replicate.exceptions import ReplicateError as ReplicateAPIError

from vitrine.services.exceptions import PermanentError, ServiceError, TransientError
from vitrine.services.image_generation.base import (
    ContentPolicyError,
    GenerationRequest,
    check_response,
)


def classify_error(exception: Exception) -> ServiceError:
    """Classify exception into retry category.

    Args:
        exception: Original exception from Replicate SDK or network layer

    Returns:
        Classified ServiceError subclass instance

    Classification rules:
        - Timeout errors → TransientError
        - 429 (rate limit) → TransientError
        - 503 (service unavailable) → TransientError
        - 401/403 (authentication) → PermanentError
        - Content policy violations → ContentPolicyError
        - Connection errors → TransientError
        - Other errors → PermanentError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()

    if isinstance(exception, TimeoutError) or "timeout" in error_message_lower:
        return TransientError(f"Network timeout: {error_message}", "PROVIDER_TIMEOUT")

    if "429" in error_message or "rate limit" in error_message_lower:
        return TransientError(f"Rate limit exceeded: {error_message}", "RATE_LIMITED")

    if "503" in error_message or "service unavailable" in error_message_lower:
        return TransientError(f"Service unavailable: {error_message}", "PROVIDER_UNAVAILABLE")

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return PermanentError(f"Authentication failed: {error_message}", "UNAUTHORIZED")

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
        or "inappropriate" in error_message_lower
    ):
        return ContentPolicyError(f"Content policy violation: {error_message}")

    if isinstance(exception, (ConnectionError, OSError)):
        return TransientError(f"Connection error: {error_message}", "PROVIDER_UNAVAILABLE")

    return PermanentError(f"Permanent error: {error_message}")


def extract_output_url(output: Any) -> str:
    """Pull the first file URL out of a model output (format varies by model)."""
    if isinstance(output, list) and len(output) > 0:
        return str(output[0])
    if isinstance(output, str):
        return output
    if hasattr(output, "url"):
        return str(output.url)
    raise PermanentError(f"Unexpected output format from Replicate: {type(output)}")


async def run_model(api_token: str, model: str, model_input: dict[str, Any]) -> Any:
    """Run a Replicate model in a worker thread (the SDK is synchronous).

    Raises:
        TransientError: Temporary failure, should retry
        ContentPolicyError: Model refused the input
        PermanentError: Permanent failure, should not retry
    """
    if not api_token:
        raise PermanentError("REPLICATE_API_TOKEN not configured", "UNAUTHORIZED")

    client = replicate.Client(api_token=api_token)

    try:
        return await asyncio.to_thread(client.run, model, input=model_input)

    except ReplicateAPIError as e:
        raise classify_error(e) from e

    except (ConnectionError, OSError, TimeoutError) as e:
        raise classify_error(e) from e

    except Exception as e:
        # Unexpected errors - treat as permanent to avoid infinite retries
        raise PermanentError(f"Unexpected error: {e}") from e


class ReplicateImageProvider:
    """Image-to-image generation on Replicate (FLUX Kontext family by default)."""

    name = "replicate"

    def __init__(self, api_token: str, http_client: Optional[httpx.AsyncClient] = None):
        self.api_token = api_token
        self.http_client = http_client

    async def generate(self, request: GenerationRequest, model: str) -> bytes:
        """Generate an image and download it from the Replicate CDN.

        Raises:
            TransientError / PermanentError: Classified provider or download failure
        """
        model_input: dict[str, Any] = {
            "prompt": request.prompt,
            "input_image": request.input_data_url(),
            "output_format": "png",
        }
        model_input.update(request.params)

        output = await run_model(self.api_token, model, model_input)
        image_url = extract_output_url(output)
        return await self._download(image_url)

    async def _download(self, url: str) -> bytes:
        try:
            if self.http_client is not None:
                response = await self.http_client.get(url)
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.get(url)
        except httpx.TimeoutException as e:
            raise TransientError(f"Download timeout: {e}", "PROVIDER_TIMEOUT") from e
        except httpx.HTTPError as e:
            raise TransientError(f"Download failed: {e}", "PROVIDER_UNAVAILABLE") from e

        check_response(response, "replicate-cdn")
        return response.content
