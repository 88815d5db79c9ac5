"""Generation configuration: model routing per category and prompt profiles per style."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from vitrine.core.timezone import utcnow


class ModelRouting(SQLModel, table=True):
    """Primary and fallback provider/model pair for one product category."""

    __tablename__ = "model_routing"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    category: str = Field(max_length=32, index=True)
    provider: str = Field(max_length=32)
    model: str = Field(max_length=128)
    fallback_provider: Optional[str] = Field(default=None, max_length=32)
    fallback_model: Optional[str] = Field(default=None, max_length=128)
    timeout_ms: int = Field(default=30000, gt=0)
    active: bool = Field(default=True, index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())


class PromptProfile(SQLModel, table=True):
    """Prompt template for one background style. Overrides the built-in defaults."""

    __tablename__ = "prompt_profiles"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    style: str = Field(max_length=64, index=True)
    name: str = Field(max_length=128)
    prompt: str
    negative_prompt: str = Field(default="")
    params: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    active: bool = Field(default=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
