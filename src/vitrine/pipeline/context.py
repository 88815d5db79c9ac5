"""Per-invocation processing context.

Built from the job row at the start of a pipeline run and passed by reference through
every stage. It is never stored in shared state, so concurrent jobs never see each
other's bytes or assets.
"""

from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

from vitrine.models.asset import Asset
from vitrine.models.job import (
    BackgroundStyle,
    Job,
    MannequinMode,
    ProductCategory,
    SourceChannel,
    TemplateLayout,
)
from vitrine.services.imaging.compositor import Overlays


@dataclass
class ProcessingContext:
    job_id: UUID
    account_id: UUID
    correlation_id: str
    attempt: int
    source_channel: SourceChannel
    category: Optional[ProductCategory]
    background_style: Optional[BackgroundStyle]
    template_layout: Optional[TemplateLayout]
    mannequin_mode: MannequinMode
    custom_prompt: Optional[str]
    overlays: Overlays
    input_image_key: Optional[str]

    input_image: Optional[bytes] = None
    generated_image: Optional[bytes] = None
    model_used: Optional[str] = None
    provider_used: Optional[str] = None
    assets: list[Asset] = field(default_factory=list)
    stage_durations: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_job(cls, job: Job, attempt: int) -> "ProcessingContext":
        return cls(
            job_id=job.id,
            account_id=job.account_id,
            correlation_id=job.correlation_id,
            attempt=attempt,
            source_channel=job.source_channel,
            category=job.category,
            background_style=job.background_style,
            template_layout=job.template_layout,
            mannequin_mode=job.mannequin_mode,
            custom_prompt=job.custom_prompt,
            overlays=Overlays.from_dict(job.overlays),
            input_image_key=job.input_image_key,
        )

    @property
    def used_placeholder(self) -> bool:
        return self.model_used == "placeholder"
