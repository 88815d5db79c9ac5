"""Asset repository."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vitrine.models.asset import Asset, AssetType


class AssetRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, asset: Asset) -> Asset:
        self.session.add(asset)
        await self.session.flush()
        return asset

    async def list_by_job(self, job_id: UUID, asset_type: AssetType | None = None) -> list[Asset]:
        """List assets for a job in creation order, optionally filtered by type."""
        stmt = select(Asset).where(Asset.job_id == job_id)  # type: ignore[arg-type]
        if asset_type is not None:
            stmt = stmt.where(Asset.asset_type == asset_type)  # type: ignore[arg-type]
        result = await self.session.execute(stmt.order_by(Asset.created_at.asc()))  # type: ignore[attr-defined]
        return list(result.scalars().all())

    async def get_by_key(self, job_id: UUID, key: str) -> Asset | None:
        """Asset already stored under this key, e.g. by an earlier delivery of the same job."""
        result = await self.session.execute(
            select(Asset).where(Asset.job_id == job_id, Asset.key == key)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()
