"""Job API endpoints.

- POST /api/jobs - Admit a generation request (idempotent per source message / request id)
- GET /api/jobs/{job_id} - Job status and produced assets, scoped to the caller

Admission errors are translated to HTTP responses by the handler registered in app.py.
"""

import base64
import binascii
from datetime import datetime
from typing import Annotated, Any, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from pydantic import BaseModel, Field

from vitrine.api.dependencies import (
    get_account_id,
    get_admission_service,
    get_storage,
    get_uow_factory,
)
from vitrine.models.job import (
    BackgroundStyle,
    MannequinMode,
    ProductCategory,
    SourceChannel,
    TemplateLayout,
)
from vitrine.services.admission import AdmissionRequest, AdmissionService
from vitrine.services.exceptions import RequestValidationError
from vitrine.services.storage import BlobStore

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/jobs", tags=["jobs"])


# Request/Response Models


class OverlaysModel(BaseModel):
    """Optional text drawn over the exported images."""

    price: Optional[int] = Field(default=None, ge=0, description="Price in whole currency units")
    currency: Optional[str] = Field(default=None, max_length=8, description="Currency suffix (FCFA)")
    handle: Optional[str] = Field(default=None, max_length=64, description="Shop handle, shown as @handle")
    badge: Optional[str] = Field(default=None, max_length=32, description="Short badge text (NEW, -20%)")


class CreateJobRequest(BaseModel):
    """Generation request as sent by the front-ends."""

    source_channel: SourceChannel = Field(..., description="Front-end the request came from")
    source_message_id: Optional[str] = Field(
        default=None, max_length=128, description="Message id on the source channel (bots)"
    )
    client_request_id: Optional[str] = Field(
        default=None, max_length=128, description="Client-generated request id (apps)"
    )
    nonce: Optional[str] = Field(
        default=None,
        max_length=128,
        description="Client nonce making retransmissions idempotent when no other id exists",
    )
    category: ProductCategory
    background_style: BackgroundStyle
    template_layout: TemplateLayout = Field(default=TemplateLayout.A)
    mannequin_mode: MannequinMode = Field(default=MannequinMode.NONE)
    image_base64: Optional[str] = Field(
        default=None, description="Raw product photo, base64 encoded"
    )
    input_image_key: Optional[str] = Field(
        default=None, max_length=512, description="Key of a photo already in the raw bucket"
    )
    custom_prompt: Optional[str] = Field(default=None, max_length=1000)
    overlays: Optional[OverlaysModel] = None


class CreateJobResponse(BaseModel):
    job_id: UUID = Field(..., description="Job id (the existing one for duplicates)")
    status: str = Field(..., description="Current job status")
    was_created: bool = Field(..., description="False when the request was a duplicate")
    balance_after: int = Field(..., description="Credit balance after admission")
    priority: str


class AssetDTO(BaseModel):
    asset_type: str
    format_tag: str
    url: str
    content_type: str
    width: Optional[int] = None
    height: Optional[int] = None
    size_bytes: int


class JobResponse(BaseModel):
    """Job status as seen by its owner."""

    job_id: UUID
    status: str
    category: str
    background_style: str
    template_layout: str
    mannequin_mode: str
    credits_debited: int
    attempt_count: int
    error_code: Optional[str] = None
    model_used: Optional[str] = None
    duration_ms_total: Optional[int] = None
    stage_durations: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    completed_at: Optional[datetime] = None
    assets: list[AssetDTO] = Field(default_factory=list)


# API Endpoints


def _decode_image(image_base64: Optional[str]) -> Optional[bytes]:
    if image_base64 is None:
        return None
    try:
        return base64.b64decode(image_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise RequestValidationError("image_base64 is not valid base64") from e


@router.post("", response_model=CreateJobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    body: CreateJobRequest,
    response: Response,
    account_id: UUID = Depends(get_account_id),
    x_correlation_id: Annotated[str | None, Header()] = None,
    admission: AdmissionService = Depends(get_admission_service),
) -> CreateJobResponse:
    """Admit a generation request.

    Returns 201 for a new job and 200 when the request duplicates an admitted one.

    Errors:
    - 400 VALIDATION_FAILED
    - 402 INSUFFICIENT_CREDITS
    - 403 FORBIDDEN (ban, cooldown with remaining hours, account deletion)
    - 422 REJECTED_CONTENT (violation count and sanction in details)
    """
    request = AdmissionRequest(
        source_channel=body.source_channel,
        category=body.category,
        background_style=body.background_style,
        template_layout=body.template_layout,
        mannequin_mode=body.mannequin_mode,
        source_message_id=body.source_message_id,
        client_request_id=body.client_request_id,
        nonce=body.nonce,
        image=_decode_image(body.image_base64),
        input_image_key=body.input_image_key,
        custom_prompt=body.custom_prompt,
        overlays=body.overlays.model_dump(exclude_none=True) if body.overlays else None,
        correlation_id=x_correlation_id,
    )

    result = await admission.admit(account_id, request)
    if not result.was_created:
        response.status_code = status.HTTP_200_OK

    return CreateJobResponse(
        job_id=result.job.id,
        status=result.job.status.value,
        was_created=result.was_created,
        balance_after=result.balance_after,
        priority=result.job.priority.value,
    )


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: UUID,
    account_id: UUID = Depends(get_account_id),
    uow_factory=Depends(get_uow_factory),
    storage: BlobStore = Depends(get_storage),
) -> JobResponse:
    """Job status and produced assets. 404 for unknown jobs and for other accounts' jobs."""
    async with await uow_factory() as uow:
        job = await uow.jobs.get_for_account(job_id, account_id)
        if job is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
        assets = await uow.assets.list_by_job(job.id)

    return JobResponse(
        job_id=job.id,
        status=job.status.value,
        category=job.category.value,
        background_style=job.background_style.value,
        template_layout=job.template_layout.value,
        mannequin_mode=job.mannequin_mode.value,
        credits_debited=job.credits_debited,
        attempt_count=job.attempt_count,
        error_code=job.last_error_code,
        model_used=job.model_used,
        duration_ms_total=job.duration_ms_total,
        stage_durations=job.stage_durations or {},
        created_at=job.created_at,
        completed_at=job.completed_at,
        assets=[
            AssetDTO(
                asset_type=asset.asset_type.value,
                format_tag=asset.format_tag,
                url=storage.public_url(asset.bucket, asset.key),
                content_type=asset.content_type,
                width=asset.width,
                height=asset.height,
                size_bytes=asset.size_bytes,
            )
            for asset in assets
        ],
    )
