from __future__ import annotations
from typing import Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from ..models import Dog

async def get_dogs_for_user(db: AsyncSession, user_id: str) -> list[Dog]:
    rows = (await db.execute(
        select(Dog).where(Dog.owner_id == user_id, Dog.is_active.is_(True)).order_by(Dog.name.asc())
    )).scalars().all()
    return list(rows)

async def get_owned_dogs(db: AsyncSession, user_id: str, dog_ids: Iterable[str]) -> list[Dog]:
    """Subset of ``dog_ids`` that are active and owned by ``user_id``."""
    ids = list(dog_ids)
    if not ids:
        return []
    rows = (await db.execute(
        select(Dog).where(Dog.id.in_(ids), Dog.owner_id == user_id, Dog.is_active.is_(True))
    )).scalars().all()
    return list(rows)

async def get_dogs_by_ids(db: AsyncSession, dog_ids: Iterable[str]) -> dict[str, Dog]:
    ids = list(dog_ids)
    if not ids:
        return {}
    rows = (await db.execute(select(Dog).where(Dog.id.in_(ids)))).scalars().all()
    return {d.id: d for d in rows}
