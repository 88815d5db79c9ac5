"""Model router tests: routing lookup and primary → fallback → unavailable."""

import asyncio

import pytest

from conftest import FakeImageProvider
from vitrine.models.routing import ModelRouting
from vitrine.services.exceptions import ModelUnavailableError, PermanentError, TransientError
from vitrine.services.image_generation.base import GenerationRequest
from vitrine.services.image_generation.model_router import ModelRouter, RoutingDecision


class SlowProvider:
    name = "openrouter"

    async def generate(self, request: GenerationRequest, model: str) -> bytes:
        await asyncio.sleep(5)
        return b"never"


def make_request() -> GenerationRequest:
    return GenerationRequest(prompt="studio shot", input_image=b"\xff\xd8", correlation_id="corr")


@pytest.mark.asyncio
async def test_default_routing_when_no_row(uow_factory, settings):
    router = ModelRouter(uow_factory, {}, settings)

    routing = await router.route("clothing")

    assert routing.provider == settings.default_provider
    assert routing.model == settings.default_model
    assert routing.fallback_provider == settings.default_fallback_provider
    assert routing.timeout_ms == settings.model_timeout_ms


@pytest.mark.asyncio
async def test_routing_row_overrides_default(uow_factory, settings):
    async with await uow_factory() as uow:
        await uow.routing.add_routing(
            ModelRouting(
                category="jewelry",
                provider="replicate",
                model="custom/jewelry-model",
                fallback_provider=None,
                fallback_model=None,
                timeout_ms=12000,
            )
        )
    router = ModelRouter(uow_factory, {}, settings)

    routing = await router.route("jewelry")

    assert routing == RoutingDecision("replicate", "custom/jewelry-model", 12000, None, None)
    assert not routing.has_fallback


@pytest.mark.asyncio
async def test_primary_success_skips_fallback(uow_factory, settings):
    primary = FakeImageProvider("openrouter", result=b"primary")
    fallback = FakeImageProvider("replicate", result=b"fallback")
    router = ModelRouter(uow_factory, {"openrouter": primary, "replicate": fallback}, settings)

    result = await router.generate(make_request(), RoutingDecision("openrouter", "m1", 1000, "replicate", "m2"))

    assert (result.data, result.provider, result.model) == (b"primary", "openrouter", "m1")
    assert fallback.calls == []


@pytest.mark.asyncio
async def test_fallback_used_when_primary_fails(uow_factory, settings):
    primary = FakeImageProvider("openrouter", error=TransientError("503"))
    fallback = FakeImageProvider("replicate", result=b"fallback")
    router = ModelRouter(uow_factory, {"openrouter": primary, "replicate": fallback}, settings)

    result = await router.generate(make_request(), RoutingDecision("openrouter", "m1", 1000, "replicate", "m2"))

    assert (result.provider, result.model) == ("replicate", "m2")
    assert len(primary.calls) == 1
    assert fallback.calls[0][1] == "m2"


@pytest.mark.asyncio
async def test_primary_timeout_falls_back(uow_factory, settings):
    fallback = FakeImageProvider("replicate", result=b"fallback")
    router = ModelRouter(uow_factory, {"openrouter": SlowProvider(), "replicate": fallback}, settings)

    result = await router.generate(make_request(), RoutingDecision("openrouter", "m1", 50, "replicate", "m2"))

    assert result.provider == "replicate"


@pytest.mark.asyncio
async def test_both_failing_raises_model_unavailable(uow_factory, settings):
    router = ModelRouter(
        uow_factory,
        {
            "openrouter": FakeImageProvider("openrouter", error=PermanentError("401")),
            "replicate": FakeImageProvider("replicate", error=TransientError("timeout")),
        },
        settings,
    )

    with pytest.raises(ModelUnavailableError):
        await router.generate(make_request(), RoutingDecision("openrouter", "m1", 1000, "replicate", "m2"))


@pytest.mark.asyncio
async def test_no_fallback_configured(uow_factory, settings):
    router = ModelRouter(
        uow_factory, {"openrouter": FakeImageProvider("openrouter", error=TransientError("x"))}, settings
    )

    with pytest.raises(ModelUnavailableError, match="no fallback"):
        await router.generate(make_request(), RoutingDecision("openrouter", "m1", 1000))


@pytest.mark.asyncio
async def test_unconfigured_provider_counts_as_failure(uow_factory, settings):
    fallback = FakeImageProvider("replicate", result=b"ok")
    router = ModelRouter(uow_factory, {"replicate": fallback}, settings)

    result = await router.generate(make_request(), RoutingDecision("openrouter", "m1", 1000, "replicate", "m2"))

    assert result.data == b"ok"
