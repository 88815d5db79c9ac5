"""Image provider and NSFW classifier client tests.

HTTP is served by httpx.MockTransport; the Replicate SDK call is monkeypatched.
"""

import base64
import json

import httpx
import pytest

from conftest import make_png
from vitrine.services import nsfw
from vitrine.services.exceptions import PermanentError, TransientError
from vitrine.services.image_generation import replicate_client
from vitrine.services.image_generation.base import ContentPolicyError, GenerationRequest
from vitrine.services.image_generation.openrouter_client import OpenRouterImageProvider
from vitrine.services.image_generation.replicate_client import (
    ReplicateImageProvider,
    classify_error,
    extract_output_url,
)
from vitrine.services.nsfw import ReplicateNsfwChecker, interpret_output


def make_request() -> GenerationRequest:
    return GenerationRequest(
        prompt="fashion clothing item, studio shot",
        input_image=b"\xff\xd8\xff",
        negative_prompt="watermark",
        params={"guidance_scale": 7.5},
        correlation_id="corr-9",
    )


def openrouter_reply(image: bytes) -> dict:
    data_url = "data:image/png;base64," + base64.b64encode(image).decode("ascii")
    return {"choices": [{"message": {"content": "", "images": [{"image_url": {"url": data_url}}]}}]}


@pytest.mark.asyncio
async def test_openrouter_returns_decoded_image():
    image = make_png(32, 32)
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["correlation"] = request.headers["X-Correlation-Id"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=openrouter_reply(image))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = OpenRouterImageProvider("sk-test", "https://router.test/api/v1/", http_client=client)
        result = await provider.generate(make_request(), "google/gemini-2.5-flash-image")

    assert result == image
    assert seen["url"] == "https://router.test/api/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["correlation"] == "corr-9"
    assert seen["body"]["model"] == "google/gemini-2.5-flash-image"
    content = seen["body"]["messages"][0]["content"]
    assert "Avoid: watermark" in content[0]["text"]
    assert content[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error_type, code",
    [
        (429, TransientError, "RATE_LIMITED"),
        (503, TransientError, "PROVIDER_UNAVAILABLE"),
        (401, PermanentError, "UNAUTHORIZED"),
        (400, PermanentError, "BAD_REQUEST"),
    ],
)
async def test_openrouter_http_errors_are_classified(status, error_type, code):
    transport = httpx.MockTransport(lambda request: httpx.Response(status, text="nope"))
    async with httpx.AsyncClient(transport=transport) as client:
        provider = OpenRouterImageProvider("sk-test", http_client=client)
        with pytest.raises(error_type) as exc_info:
            await provider.generate(make_request(), "m")

    assert exc_info.value.error_code == code


@pytest.mark.asyncio
async def test_openrouter_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = OpenRouterImageProvider("sk-test", http_client=client)
        with pytest.raises(TransientError) as exc_info:
            await provider.generate(make_request(), "m")

    assert exc_info.value.error_code == "PROVIDER_TIMEOUT"


@pytest.mark.asyncio
async def test_openrouter_text_only_answer_is_permanent():
    body = {"choices": [{"message": {"content": "I cannot edit this image", "images": []}}]}
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))
    async with httpx.AsyncClient(transport=transport) as client:
        provider = OpenRouterImageProvider("sk-test", http_client=client)
        with pytest.raises(PermanentError) as exc_info:
            await provider.generate(make_request(), "m")

    assert exc_info.value.error_code == "NO_IMAGE"


@pytest.mark.asyncio
async def test_openrouter_without_key():
    with pytest.raises(PermanentError):
        await OpenRouterImageProvider("").generate(make_request(), "m")


@pytest.mark.parametrize(
    "message, expected_type, code",
    [
        ("Request timeout after 60s", TransientError, "PROVIDER_TIMEOUT"),
        ("HTTP 429: rate limit", TransientError, "RATE_LIMITED"),
        ("503 Service Unavailable", TransientError, "PROVIDER_UNAVAILABLE"),
        ("401 Unauthorized", PermanentError, "UNAUTHORIZED"),
        ("NSFW content detected", ContentPolicyError, "CONTENT_POLICY"),
        ("invalid input shape", PermanentError, "PERMANENT_ERROR"),
    ],
)
def test_replicate_error_classification(message, expected_type, code):
    error = classify_error(Exception(message))
    assert type(error) is expected_type
    assert error.error_code == code


def test_replicate_connection_error_is_transient():
    assert isinstance(classify_error(ConnectionError("reset by peer")), TransientError)


def test_extract_output_url_formats():
    assert extract_output_url(["https://cdn/1.png", "https://cdn/2.png"]) == "https://cdn/1.png"
    assert extract_output_url("https://cdn/x.png") == "https://cdn/x.png"
    with pytest.raises(PermanentError):
        extract_output_url(42)


@pytest.mark.asyncio
async def test_replicate_provider_downloads_output(monkeypatch):
    image = make_png(16, 16)
    calls = []

    async def fake_run_model(api_token, model, model_input):
        calls.append((api_token, model, model_input))
        return ["https://replicate.delivery/out.png"]

    monkeypatch.setattr(replicate_client, "run_model", fake_run_model)
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=image))

    async with httpx.AsyncClient(transport=transport) as client:
        provider = ReplicateImageProvider("r8-test", http_client=client)
        result = await provider.generate(make_request(), "black-forest-labs/flux-kontext-pro")

    assert result == image
    token, model, model_input = calls[0]
    assert (token, model) == ("r8-test", "black-forest-labs/flux-kontext-pro")
    assert model_input["guidance_scale"] == 7.5
    assert model_input["input_image"].startswith("data:image/jpeg;base64,")


@pytest.mark.asyncio
async def test_replicate_without_token_is_permanent():
    with pytest.raises(PermanentError) as exc_info:
        await replicate_client.run_model("", "some/model", {})
    assert exc_info.value.error_code == "UNAUTHORIZED"


@pytest.mark.parametrize(
    "output, flagged, category",
    [
        ("normal", False, "normal"),
        ("nsfw", True, "nsfw"),
        ({"porn": 0.95, "neutral": 0.05}, True, "porn"),
        ({"porn": 0.5, "drawings": 0.5}, False, "porn"),
        ([{"label": "hentai", "score": 0.9}, {"label": "neutral", "score": 0.1}], True, "hentai"),
        ({"neutral": 0.99}, False, None),
        (None, False, None),
    ],
)
def test_nsfw_output_interpretation(output, flagged, category):
    verdict = interpret_output(output, threshold=0.8)
    assert verdict.flagged is flagged
    assert verdict.category == category


@pytest.mark.asyncio
async def test_nsfw_checker_calls_classifier(monkeypatch):
    async def fake_run_model(api_token, model, model_input):
        assert model == "falcons-ai/nsfw_image_detection"
        assert model_input["image"].startswith("data:image/jpeg;base64,")
        return "nsfw"

    monkeypatch.setattr(nsfw, "run_model", fake_run_model)
    checker = ReplicateNsfwChecker("r8-test", "falcons-ai/nsfw_image_detection")

    verdict = await checker.check(b"\xff\xd8")

    assert verdict.flagged
