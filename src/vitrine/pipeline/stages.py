"""The fixed pipeline stages.

validate -> fetch_input -> ai_generate -> upload_export -> generate_thumbnails

Each stage takes the job's ProcessingContext and mutates it. Pillow work runs in a
worker thread so one job's encoding never stalls the other jobs on the event loop.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Sequence

import structlog
from PIL import Image
from sqlalchemy.exc import SQLAlchemyError

from vitrine.core.config import Settings
from vitrine.models.asset import Asset, AssetType
from vitrine.pipeline.context import ProcessingContext
from vitrine.services.exceptions import (
    ModelUnavailableError,
    NonRetryableError,
    ServiceError,
    UploadError,
)
from vitrine.services.image_generation.base import GenerationRequest
from vitrine.services.image_generation.model_router import ModelRouter
from vitrine.services.image_generation.prompts import (
    PromptProfileSpec,
    build_generation_prompt,
    default_profile,
    validate_prompt,
)
from vitrine.services.imaging.compositor import compose
from vitrine.services.imaging.renditions import (
    EXPORT_FORMATS,
    EncodedImage,
    ExportFormat,
    encode_webp,
    fit_cover,
    make_thumbnail,
    open_image,
    placeholder_image,
    preprocess,
)
from vitrine.services.storage import PIPELINE_VERSION, BlobStore, export_key, thumbnail_key

logger = structlog.get_logger(__name__)

STAGE_ORDER = ("validate", "fetch_input", "ai_generate", "upload_export", "generate_thumbnails")

PLACEHOLDER_MODEL = "placeholder"
PLACEHOLDER_PROVIDER = "fallback"

Stage = Callable[[ProcessingContext], Awaitable[None]]


def _render_thumbnail(image: Image.Image, size: int) -> EncodedImage:
    return encode_webp(make_thumbnail(image, size))


class PipelineStages:
    """Stage implementations bound to their collaborators."""

    def __init__(
        self,
        uow_factory: Callable,
        storage: BlobStore,
        router: ModelRouter,
        settings: Settings,
        export_formats: Sequence[ExportFormat] = EXPORT_FORMATS,
        thumbnail_sizes: Optional[Sequence[int]] = None,
    ):
        self.uow_factory = uow_factory
        self.storage = storage
        self.router = router
        self.settings = settings
        self.export_formats = tuple(export_formats)
        self.thumbnail_sizes = tuple(thumbnail_sizes or settings.thumbnail_sizes)

    def ordered(self) -> list[tuple[str, Stage]]:
        return [(name, getattr(self, name)) for name in STAGE_ORDER]

    async def validate(self, ctx: ProcessingContext) -> None:
        """Fail non-retryably when the job cannot possibly be processed."""
        required = ("category", "background_style", "template_layout", "input_image_key")
        missing = [name for name in required if not getattr(ctx, name)]
        if missing:
            raise NonRetryableError(
                f"Job is missing required fields: {', '.join(missing)}", "VALIDATION_FAILED"
            )

        if ctx.custom_prompt is not None:
            try:
                validate_prompt(ctx.custom_prompt)
            except ValueError as e:
                raise NonRetryableError(str(e), "VALIDATION_FAILED") from e

    async def fetch_input(self, ctx: ProcessingContext) -> None:
        """Load the raw upload and normalize it. Storage errors are retryable."""
        data = await self.storage.get(self.storage.raw_bucket, ctx.input_image_key)  # type: ignore[arg-type]
        processed = await asyncio.to_thread(preprocess, data)
        ctx.input_image = processed.data

        logger.info(
            "pipeline.input_fetched",
            job_id=str(ctx.job_id),
            correlation_id=ctx.correlation_id,
            original_bytes=len(data),
            width=processed.width,
            height=processed.height,
        )

    async def ai_generate(self, ctx: ProcessingContext) -> None:
        """Generate the product photo. Model outages degrade to a placeholder image."""
        style = ctx.background_style.value  # type: ignore[union-attr]
        category = ctx.category.value  # type: ignore[union-attr]

        profile = await self._load_profile(style)
        prompt = build_generation_prompt(
            profile, category, ctx.mannequin_mode.value, ctx.custom_prompt
        )
        request = GenerationRequest(
            prompt=prompt,
            input_image=ctx.input_image or b"",
            negative_prompt=profile.negative_prompt,
            params=dict(profile.params),
            correlation_id=ctx.correlation_id,
        )

        routing = await self.router.route(category)
        try:
            result = await self.router.generate(request, routing)
            await asyncio.to_thread(open_image, result.data)
        except (ModelUnavailableError, NonRetryableError) as e:
            logger.warning(
                "pipeline.placeholder_used",
                job_id=str(ctx.job_id),
                correlation_id=ctx.correlation_id,
                error_code=e.error_code,
                error=str(e),
            )
            ctx.generated_image = await asyncio.to_thread(
                placeholder_image, self.settings.placeholder_color
            )
            ctx.model_used = PLACEHOLDER_MODEL
            ctx.provider_used = PLACEHOLDER_PROVIDER
            return

        ctx.generated_image = result.data
        ctx.model_used = result.model
        ctx.provider_used = result.provider
        logger.info(
            "pipeline.image_generated",
            job_id=str(ctx.job_id),
            correlation_id=ctx.correlation_id,
            provider=result.provider,
            model=result.model,
            size_bytes=len(result.data),
        )

    async def upload_export(self, ctx: ProcessingContext) -> None:
        """Render, upload and record every export format.

        A failing format is skipped. The stage fails (retryably) only when none succeeded.
        """
        image = await asyncio.to_thread(open_image, ctx.generated_image or b"")

        uploaded = 0
        for export_format in self.export_formats:
            try:
                encoded = await asyncio.to_thread(self._render_export, image, export_format, ctx)
                key = export_key(ctx.account_id, ctx.job_id, export_format.tag)
                await self.storage.put(
                    self.storage.gallery_bucket, key, encoded.data, encoded.content_type
                )
            except (ServiceError, OSError, ValueError) as e:
                logger.warning(
                    "pipeline.export_failed",
                    job_id=str(ctx.job_id),
                    correlation_id=ctx.correlation_id,
                    format=export_format.tag,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue

            asset = await self._record_asset(ctx, AssetType.OUTPUT_IMAGE, export_format.tag, key, encoded)
            ctx.assets.append(asset)
            uploaded += 1

        if uploaded == 0:
            raise UploadError(f"None of {len(self.export_formats)} export formats could be uploaded")

        logger.info(
            "pipeline.exports_uploaded",
            job_id=str(ctx.job_id),
            correlation_id=ctx.correlation_id,
            uploaded=uploaded,
            total=len(self.export_formats),
        )

    async def generate_thumbnails(self, ctx: ProcessingContext) -> None:
        """Preview renditions. Nothing here can fail the job."""
        try:
            image = await asyncio.to_thread(open_image, ctx.generated_image or b"")
        except NonRetryableError as e:
            logger.warning("pipeline.thumbnail_failed", job_id=str(ctx.job_id), error=str(e))
            return

        for size in self.thumbnail_sizes:
            tag = f"thumb_{size}"
            try:
                encoded = await asyncio.to_thread(_render_thumbnail, image, size)
                key = thumbnail_key(ctx.account_id, ctx.job_id, size)
                await self.storage.put(
                    self.storage.gallery_bucket, key, encoded.data, encoded.content_type
                )
                asset = await self._record_asset(ctx, AssetType.THUMBNAIL, tag, key, encoded)
            except (ServiceError, SQLAlchemyError, OSError, ValueError) as e:
                logger.warning(
                    "pipeline.thumbnail_failed",
                    job_id=str(ctx.job_id),
                    correlation_id=ctx.correlation_id,
                    size=size,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue
            ctx.assets.append(asset)

    def _render_export(
        self, image: Image.Image, export_format: ExportFormat, ctx: ProcessingContext
    ) -> EncodedImage:
        width, height = export_format.width, export_format.height
        if ctx.overlays.is_empty:
            frame = fit_cover(image, width, height)
        else:
            frame = compose(
                image,
                ctx.template_layout,  # type: ignore[arg-type]
                ctx.overlays,
                width,
                height,
                background=image,
            )
        return encode_webp(frame)

    async def _load_profile(self, style: str) -> PromptProfileSpec:
        async with await self.uow_factory() as uow:
            row = await uow.routing.get_active_prompt_profile(style)
        if row is None:
            return default_profile(style)
        return PromptProfileSpec(
            style=row.style,
            name=row.name,
            prompt=row.prompt,
            negative_prompt=row.negative_prompt,
            params=dict(row.params or {}),
        )

    async def _record_asset(
        self,
        ctx: ProcessingContext,
        asset_type: AssetType,
        format_tag: str,
        key: str,
        encoded: EncodedImage,
    ) -> Asset:
        """Insert the asset row, or refresh it when a previous delivery already wrote it."""
        metadata = {
            "model": ctx.model_used,
            "provider": ctx.provider_used,
            "quality": encoded.quality,
            "pipeline_version": PIPELINE_VERSION,
            "url": self.storage.public_url(self.storage.gallery_bucket, key),
        }
        async with await self.uow_factory() as uow:
            asset = await uow.assets.get_by_key(ctx.job_id, key)
            if asset is None:
                asset = await uow.assets.add(
                    Asset(
                        account_id=ctx.account_id,
                        job_id=ctx.job_id,
                        asset_type=asset_type,
                        format_tag=format_tag,
                        bucket=self.storage.gallery_bucket,
                        key=key,
                        content_type=encoded.content_type,
                        size_bytes=len(encoded.data),
                        width=encoded.width,
                        height=encoded.height,
                        metadata_json=metadata,
                    )
                )
            else:
                asset.size_bytes = len(encoded.data)
                asset.width = encoded.width
                asset.height = encoded.height
                asset.metadata_json = metadata
                uow.session.add(asset)
        return asset
