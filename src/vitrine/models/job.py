"""Job entity - one admitted generation request with lifecycle status tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from vitrine.core.timezone import utcnow


class SourceChannel(str, Enum):
    """Front-end the request came from."""

    MOBILE_APP = "mobile_app"
    TELEGRAM_BOT = "telegram_bot"
    WHATSAPP_BOT = "whatsapp_bot"
    WEB_APP = "web_app"
    API = "api"


class ProductCategory(str, Enum):
    CLOTHING = "clothing"
    BEAUTY = "beauty"
    ACCESSORIES = "accessories"
    SHOES = "shoes"
    JEWELRY = "jewelry"
    BAGS = "bags"


class BackgroundStyle(str, Enum):
    STUDIO_WHITE = "studio_white"
    STUDIO_GRAY = "studio_gray"
    GRADIENT_SOFT = "gradient_soft"
    STUDIO_CLEAN_WHITE = "studio_clean_white"
    LUXURY_MARBLE_VELVET = "luxury_marble_velvet"
    BOUTIQUE_CLEAN_STORE = "boutique_clean_store"


class TemplateLayout(str, Enum):
    A = "A"
    B = "B"
    C = "C"


class MannequinMode(str, Enum):
    NONE = "none"
    GHOST_MANNEQUIN = "ghost_mannequin"
    CUSTOM = "custom"
    VIRTUAL_MODEL_FEMALE = "virtual_model_female"
    VIRTUAL_MODEL_MALE = "virtual_model_male"


class JobPriority(str, Enum):
    HIGH = "high"
    LOW = "low"


class JobStatus(str, Enum):
    """Job lifecycle status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


class Job(SQLModel, table=True):
    """Job represents one generation request, from admission to a terminal state."""

    __tablename__ = "jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: UUID = Field(foreign_key="accounts.id", index=True)
    idempotency_key: str = Field(unique=True, index=True, max_length=255)
    correlation_id: str = Field(max_length=64)

    # Request
    source_channel: SourceChannel
    source_message_id: Optional[str] = Field(default=None, max_length=128)
    client_request_id: Optional[str] = Field(default=None, max_length=128)
    category: ProductCategory
    background_style: BackgroundStyle
    template_layout: TemplateLayout
    mannequin_mode: MannequinMode = Field(default=MannequinMode.NONE)
    custom_prompt: Optional[str] = Field(default=None, max_length=1000)
    overlays: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    input_image_key: Optional[str] = Field(default=None, max_length=512)
    priority: JobPriority = Field(default=JobPriority.LOW)
    credits_debited: int = Field(default=1, ge=0)

    # Processing
    status: JobStatus = Field(default=JobStatus.QUEUED, index=True)
    attempt_count: int = Field(default=0, ge=0)
    last_error_code: Optional[str] = Field(default=None, max_length=64)
    last_error_message: Optional[str] = Field(default=None, max_length=1000)
    stage_durations: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    duration_ms_total: Optional[int] = Field(default=None)
    model_used: Optional[str] = Field(default=None, max_length=128)
    provider_used: Optional[str] = Field(default=None, max_length=64)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
    queued_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
    processing_started_at: Optional[datetime] = Field(default=None, sa_type=DateTime())
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime())
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_processing(self, attempt: int) -> None:
        """Transition from queued to processing.

        A job already in processing is accepted too: that is a redelivery after a worker
        crash left it behind.

        Raises:
            InvalidStateTransition: If the job is in a terminal state
        """
        if self.status not in (JobStatus.QUEUED, JobStatus.PROCESSING):
            raise InvalidStateTransition(
                f"Cannot mark processing from {self.status.value}. "
                "Job must be in queued or processing state."
            )
        self.status = JobStatus.PROCESSING
        self.attempt_count = attempt
        self.processing_started_at = utcnow()
        self.updated_at = self.processing_started_at

    def mark_requeued(self, error_code: str, error_message: str) -> None:
        """Transition from processing back to queued after a retryable failure."""
        if self.status != JobStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot requeue from {self.status.value}. Job must be in processing state."
            )
        self.status = JobStatus.QUEUED
        self.last_error_code = error_code
        self.last_error_message = error_message[:1000]
        self.queued_at = utcnow()
        self.updated_at = self.queued_at

    def mark_completed(self, duration_ms_total: int) -> None:
        """Transition from processing to completed."""
        if self.status != JobStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {self.status.value}. Job must be in processing state."
            )
        self.status = JobStatus.COMPLETED
        self.duration_ms_total = duration_ms_total
        self.completed_at = utcnow()
        self.updated_at = self.completed_at

    def mark_failed(self, error_code: str, error_message: str) -> None:
        """Transition from any non-terminal state to failed.

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        self.status = JobStatus.FAILED
        self.last_error_code = error_code
        self.last_error_message = error_message[:1000]
        self.updated_at = utcnow()

    def mark_cancelled(self) -> None:
        """Operator cancel. Allowed while the job is queued or processing."""
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot cancel from terminal state {self.status.value}."
            )
        self.status = JobStatus.CANCELLED
        self.updated_at = utcnow()
