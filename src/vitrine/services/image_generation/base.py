"""Shared types for image generation providers."""

import base64
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from vitrine.services.exceptions import PermanentError, TransientError


@dataclass
class GenerationRequest:
    """Everything a provider needs to render one product photo."""

    prompt: str
    input_image: bytes
    negative_prompt: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    input_mime_type: str = "image/jpeg"
    correlation_id: str = ""

    def input_data_url(self) -> str:
        encoded = base64.b64encode(self.input_image).decode("ascii")
        return f"data:{self.input_mime_type};base64,{encoded}"


@dataclass
class GeneratedImage:
    data: bytes
    provider: str
    model: str


class ImageProvider(Protocol):
    """One AI backend. generate() returns raw image bytes."""

    name: str

    async def generate(self, request: GenerationRequest, model: str) -> bytes: ...


class ContentPolicyError(PermanentError):
    """Provider refused the prompt or image on safety grounds."""

    error_code = "CONTENT_POLICY"


def check_response(response: httpx.Response, service: str) -> None:
    """Classify a provider HTTP response.

    Raises:
        TransientError: 429, 500, 502, 503, 504
        PermanentError: 400, 401, 403 and any other non-2xx status
    """
    code = response.status_code
    if code < 400:
        return
    if code == 429:
        raise TransientError(f"{service} rate limit exceeded: {response.text}", "RATE_LIMITED")
    if code in (500, 502, 503, 504):
        raise TransientError(f"{service} unavailable ({code}): {response.text}", "PROVIDER_UNAVAILABLE")
    if code in (401, 403):
        raise PermanentError(f"{service} authentication failed ({code})", "UNAUTHORIZED")
    if code == 400:
        raise PermanentError(f"{service} bad request: {response.text}", "BAD_REQUEST")
    raise PermanentError(f"{service} returned {code}: {response.text}")


def decode_data_url(data_url: str) -> bytes:
    """Extract bytes from a base64 data URL.

    Raises:
        PermanentError: If the string is not a base64 data URL
    """
    if not data_url.startswith("data:") or ";base64," not in data_url:
        raise PermanentError("Expected a base64 data URL", "BAD_IMAGE")
    encoded = data_url.split(";base64,", 1)[1]
    try:
        return base64.b64decode(encoded, validate=True)
    except ValueError as e:
        raise PermanentError(f"Invalid base64 image payload: {e}", "BAD_IMAGE") from e
