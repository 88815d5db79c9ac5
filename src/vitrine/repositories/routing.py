"""Read access to generation configuration (model routing, prompt profiles)."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vitrine.models.routing import ModelRouting, PromptProfile


class RoutingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active_routing(self, category: str) -> ModelRouting | None:
        """Most recently updated active routing row for the category."""
        result = await self.session.execute(
            select(ModelRouting)
            .where(ModelRouting.category == category, ModelRouting.active == True)  # noqa: E712
            .order_by(ModelRouting.updated_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_active_prompt_profile(self, style: str) -> PromptProfile | None:
        result = await self.session.execute(
            select(PromptProfile)
            .where(PromptProfile.style == style, PromptProfile.active == True)  # noqa: E712
            .order_by(PromptProfile.updated_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def add_routing(self, routing: ModelRouting) -> ModelRouting:
        self.session.add(routing)
        await self.session.flush()
        return routing

    async def add_prompt_profile(self, profile: PromptProfile) -> PromptProfile:
        self.session.add(profile)
        await self.session.flush()
        return profile
