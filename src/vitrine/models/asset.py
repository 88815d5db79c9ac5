"""Asset entity - one stored image file produced for a job."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from vitrine.core.timezone import utcnow


class AssetType(str, Enum):
    INPUT_IMAGE = "input_image"
    OUTPUT_IMAGE = "output_image"
    THUMBNAIL = "thumbnail"


class Asset(SQLModel, table=True):
    """Stored image for a job. format_tag names the export format (story, square, thumb_256)."""

    __tablename__ = "assets"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: UUID = Field(foreign_key="accounts.id", index=True)
    job_id: UUID = Field(foreign_key="jobs.id", index=True)
    asset_type: AssetType
    format_tag: str = Field(max_length=32)
    bucket: str = Field(max_length=128)
    key: str = Field(max_length=512)
    content_type: str = Field(max_length=64)
    size_bytes: int = Field(ge=0)
    width: Optional[int] = Field(default=None)
    height: Optional[int] = Field(default=None)
    metadata_json: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
