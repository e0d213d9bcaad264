from __future__ import annotations
from typing import Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update
from ..models import Garden, Visit, VisitDog, VisitStatus, utcnow

def _active_dogs_query():
    return (
        select(Visit.garden_id, func.count(VisitDog.dog_id))
        .join(VisitDog, VisitDog.visit_id == Visit.id)
        .where(Visit.status == VisitStatus.ACTIVE)
        .group_by(Visit.garden_id)
    )

async def compute_occupancy(db: AsyncSession, garden_id: str) -> int:
    """Dogs currently present: dog rows of active visits at the garden."""
    q = (
        select(func.count(VisitDog.dog_id))
        .join(Visit, VisitDog.visit_id == Visit.id)
        .where(Visit.garden_id == garden_id, Visit.status == VisitStatus.ACTIVE)
    )
    return int((await db.execute(q)).scalar_one() or 0)

async def occupancy_by_garden(db: AsyncSession, garden_ids: Iterable[str]) -> dict[str, int]:
    ids = list(garden_ids)
    if not ids:
        return {}
    rows = (await db.execute(_active_dogs_query().where(Visit.garden_id.in_(ids)))).all()
    counts = {gid: 0 for gid in ids}
    for gid, n in rows:
        counts[gid] = int(n)
    return counts

async def refresh_occupancy(db: AsyncSession, garden_id: str) -> int:
    """
    Recompute the cached counter from the visit store inside the caller's
    transaction (no commit). Recomputing instead of +N/-N heals missed updates.
    """
    await db.flush()
    n = max(0, await compute_occupancy(db, garden_id))
    await db.execute(
        update(Garden).where(Garden.id == garden_id).values(current_occupancy=n, updated_at=utcnow())
    )
    return n

async def reconcile_all(db: AsyncSession) -> int:
    """Rewrite every garden's cached occupancy; returns how many were off."""
    live = dict((await db.execute(_active_dogs_query())).all())
    gardens = (await db.execute(select(Garden.id, Garden.current_occupancy))).all()
    fixed = 0
    for gid, cached in gardens:
        actual = int(live.get(gid, 0))
        if cached != actual:
            await db.execute(update(Garden).where(Garden.id == gid).values(current_occupancy=actual))
            fixed += 1
    await db.commit()
    return fixed
