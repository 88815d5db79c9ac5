"""Model router: per-category provider/model selection with one fallback.

Model unavailability is a soft-degrade event. generate() raises ModelUnavailableError
only after both the primary and the fallback pair failed, and callers substitute a
placeholder image instead of failing the job.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from vitrine.core.config import Settings
from vitrine.services.exceptions import ModelUnavailableError
from vitrine.services.image_generation.base import GeneratedImage, GenerationRequest, ImageProvider

logger = structlog.get_logger(__name__)


@dataclass
class RoutingDecision:
    provider: str
    model: str
    timeout_ms: int
    fallback_provider: Optional[str] = None
    fallback_model: Optional[str] = None

    @property
    def has_fallback(self) -> bool:
        return bool(self.fallback_provider and self.fallback_model)


class ModelRouter:
    """Selects and calls image providers according to the model_routing table."""

    def __init__(
        self,
        uow_factory: Callable,
        providers: dict[str, ImageProvider],
        settings: Settings,
    ):
        """Initialize router.

        Args:
            uow_factory: Factory producing UnitOfWork instances (routing table reads)
            providers: Provider instances keyed by provider name
            settings: Default routing used when no active row exists
        """
        self.uow_factory = uow_factory
        self.providers = providers
        self.settings = settings

    def default_routing(self) -> RoutingDecision:
        return RoutingDecision(
            provider=self.settings.default_provider,
            model=self.settings.default_model,
            timeout_ms=self.settings.model_timeout_ms,
            fallback_provider=self.settings.default_fallback_provider or None,
            fallback_model=self.settings.default_fallback_model or None,
        )

    async def route(self, category: str) -> RoutingDecision:
        """Routing for a category; the hard-coded default when none is configured."""
        try:
            async with await self.uow_factory() as uow:
                row = await uow.routing.get_active_routing(category)
        except SQLAlchemyError as e:
            logger.warning("model_router.config_unavailable", category=category, error=str(e))
            return self.default_routing()

        if row is None:
            return self.default_routing()

        return RoutingDecision(
            provider=row.provider,
            model=row.model,
            timeout_ms=row.timeout_ms,
            fallback_provider=row.fallback_provider,
            fallback_model=row.fallback_model,
        )

    async def _call(
        self, provider_name: str, model: str, request: GenerationRequest, timeout_ms: int
    ) -> GeneratedImage:
        provider = self.providers.get(provider_name)
        if provider is None:
            raise LookupError(f"Unknown image provider: {provider_name}")
        data = await asyncio.wait_for(provider.generate(request, model), timeout=timeout_ms / 1000)
        return GeneratedImage(data=data, provider=provider_name, model=model)

    async def generate(self, request: GenerationRequest, routing: RoutingDecision) -> GeneratedImage:
        """Call the primary pair, then the fallback pair once.

        Raises:
            ModelUnavailableError: If every configured pair failed or timed out
        """
        try:
            return await self._call(routing.provider, routing.model, request, routing.timeout_ms)
        except Exception as primary_error:
            logger.warning(
                "model_router.primary_failed",
                correlation_id=request.correlation_id,
                provider=routing.provider,
                model=routing.model,
                error_type=type(primary_error).__name__,
                error=str(primary_error),
            )
            if not routing.has_fallback:
                raise ModelUnavailableError(
                    f"{routing.provider}/{routing.model} failed and no fallback is configured"
                ) from primary_error

        try:
            result = await self._call(
                routing.fallback_provider,  # type: ignore[arg-type]
                routing.fallback_model,  # type: ignore[arg-type]
                request,
                routing.timeout_ms,
            )
        except Exception as fallback_error:
            logger.warning(
                "model_router.fallback_failed",
                correlation_id=request.correlation_id,
                provider=routing.fallback_provider,
                model=routing.fallback_model,
                error_type=type(fallback_error).__name__,
                error=str(fallback_error),
            )
            raise ModelUnavailableError(
                "Both primary and fallback models failed"
            ) from fallback_error

        logger.info(
            "model_router.fallback_used",
            correlation_id=request.correlation_id,
            provider=result.provider,
            model=result.model,
        )
        return result
