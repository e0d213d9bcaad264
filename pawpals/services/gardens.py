from __future__ import annotations
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from ..models import Garden, GardenType

async def get_garden(db: AsyncSession, garden_id: str) -> Garden | None:
    """Active garden by id; inactive gardens are treated as missing."""
    return (await db.execute(
        select(Garden).where(Garden.id == garden_id, Garden.is_active.is_(True))
    )).scalar_one_or_none()

async def list_gardens(
    db: AsyncSession,
    *,
    city: str | None = None,
    garden_type: GardenType | None = None,
    has_capacity: bool = False,
    limit: int = 50,
    skip: int = 0,
) -> list[Garden]:
    stmt = select(Garden).where(Garden.is_active.is_(True))
    if city:
        stmt = stmt.where(Garden.city == city)
    if garden_type:
        stmt = stmt.where(Garden.type == garden_type)
    if has_capacity:
        stmt = stmt.where((Garden.max_dogs.is_(None)) | (Garden.current_occupancy < Garden.max_dogs))
    stmt = stmt.order_by(Garden.name.asc()).limit(limit).offset(skip)
    return list((await db.execute(stmt)).scalars().all())
