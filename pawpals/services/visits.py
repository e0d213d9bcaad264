from __future__ import annotations
import logging
from datetime import datetime
from typing import Iterable, Sequence
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update

from ..core.identity import MemberIdentity
from ..errors import (
    AlreadyCheckedIn,
    GardenFull,
    GardenNotFound,
    InvalidInput,
    VisitAlreadyClosed,
    VisitNotFound,
    VisitNotOwned,
)
from ..models import Dog, Garden, Visit, VisitDog, VisitStatus, as_utc, utcnow
from .dogs import get_dogs_by_ids, get_owned_dogs
from .gardens import get_garden
from .occupancy import compute_occupancy, refresh_occupancy

logger = logging.getLogger(__name__)

NOTES_MAX = 500

async def get_active_visit(db: AsyncSession, user_id: str) -> Visit | None:
    return (await db.execute(
        select(Visit)
        .where(Visit.user_id == user_id, Visit.status == VisitStatus.ACTIVE)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()

async def get_visit(db: AsyncSession, visit_id: str) -> Visit | None:
    return (await db.execute(
        select(Visit).where(Visit.id == visit_id).execution_options(populate_existing=True)
    )).scalar_one_or_none()

def duration_minutes(check_in: datetime, check_out: datetime) -> int:
    """Whole minutes between the two instants, rounded down, never negative."""
    seconds = (as_utc(check_out) - as_utc(check_in)).total_seconds()
    return max(0, int(seconds // 60))

async def check_in(
    db: AsyncSession,
    member: MemberIdentity,
    *,
    garden_id: str,
    dog_ids: Sequence[str],
    notes: str | None = None,
    now: datetime | None = None,
) -> Visit:
    dog_ids = list(dog_ids or [])

    # 1) dog selection
    if not dog_ids:
        raise InvalidInput("No dogs selected for check-in", reason="no_dogs")
    if len(set(dog_ids)) != len(dog_ids):
        raise InvalidInput("The same dog was selected twice", reason="duplicate_dogs")
    owned = await get_owned_dogs(db, member.user_id, dog_ids)
    if len(owned) != len(dog_ids):
        raise InvalidInput("Invalid dogs selected", reason="dogs_not_owned")

    # 2) one active visit per user
    existing = await get_active_visit(db, member.user_id)
    if existing:
        raise AlreadyCheckedIn(existing)

    # 3) garden
    garden = await get_garden(db, garden_id)
    if not garden:
        raise GardenNotFound()

    # 4) capacity
    if garden.max_dogs is not None:
        occupancy = await compute_occupancy(db, garden.id)
        if occupancy + len(dog_ids) > garden.max_dogs:
            raise GardenFull(occupancy=occupancy, max_dogs=garden.max_dogs)

    visit = Visit(
        user_id=member.user_id,
        garden_id=garden.id,
        status=VisitStatus.ACTIVE,
        check_in_time=now or utcnow(),
        notes=notes[:NOTES_MAX] if notes else None,
        dogs=[VisitDog(dog_id=d) for d in dog_ids],
    )
    db.add(visit)
    try:
        # partial unique index rejects a second active visit written concurrently
        await db.flush()
    except IntegrityError:
        await db.rollback()
        winner = await get_active_visit(db, member.user_id)
        logger.info("concurrent check-in rejected user=%s", member.user_id)
        raise AlreadyCheckedIn(winner)

    await db.execute(
        update(Garden).where(Garden.id == garden.id).values(total_visits=Garden.total_visits + 1)
    )
    await refresh_occupancy(db, garden.id)
    await db.commit()
    logger.info("check-in visit=%s user=%s garden=%s dogs=%d", visit.id, member.user_id, garden.id, len(dog_ids))
    return visit

async def _close(
    db: AsyncSession,
    member: MemberIdentity,
    visit_id: str,
    *,
    to_status: VisitStatus,
    notes: str | None,
    now: datetime | None,
) -> Visit:
    visit = await get_visit(db, visit_id)
    if visit is None:
        raise VisitNotFound()
    if visit.user_id != member.user_id:
        raise VisitNotOwned()
    if visit.status != VisitStatus.ACTIVE:
        raise VisitAlreadyClosed(status=visit.status.value)

    now = now or utcnow()
    values: dict = {"status": to_status, "check_out_time": now}
    if to_status == VisitStatus.COMPLETED:
        values["duration_minutes"] = duration_minutes(visit.check_in_time, now)
    if notes:
        merged = f"{visit.notes}\n{notes}" if visit.notes else notes
        values["notes"] = merged[:NOTES_MAX]

    # conditional transition: only one caller can move a visit out of active
    res = await db.execute(
        update(Visit)
        .where(Visit.id == visit.id, Visit.status == VisitStatus.ACTIVE)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        await db.rollback()
        raise VisitAlreadyClosed()

    await refresh_occupancy(db, visit.garden_id)
    await db.commit()
    await db.refresh(visit)
    logger.info("%s visit=%s user=%s garden=%s", to_status.value, visit.id, member.user_id, visit.garden_id)
    return visit

async def check_out(
    db: AsyncSession,
    member: MemberIdentity,
    visit_id: str,
    *,
    notes: str | None = None,
    now: datetime | None = None,
) -> Visit:
    return await _close(db, member, visit_id, to_status=VisitStatus.COMPLETED, notes=notes, now=now)

async def cancel_visit(
    db: AsyncSession,
    member: MemberIdentity,
    visit_id: str,
    *,
    now: datetime | None = None,
) -> Visit:
    return await _close(db, member, visit_id, to_status=VisitStatus.CANCELLED, notes=None, now=now)

async def list_visits(
    db: AsyncSession,
    user_id: str,
    *,
    status: VisitStatus | None = None,
    garden_id: str | None = None,
    dog_id: str | None = None,
    limit: int = 20,
    skip: int = 0,
) -> tuple[int, list[Visit]]:
    conds = [Visit.user_id == user_id]
    if status:
        conds.append(Visit.status == status)
    if garden_id:
        conds.append(Visit.garden_id == garden_id)
    if dog_id:
        conds.append(Visit.dogs.any(VisitDog.dog_id == dog_id))
    total = (await db.execute(select(func.count()).select_from(Visit).where(*conds))).scalar_one()
    rows = (await db.execute(
        select(Visit).where(*conds).order_by(Visit.check_in_time.desc()).limit(limit).offset(skip)
    )).scalars().all()
    return int(total), list(rows)

async def resolve_references(
    db: AsyncSession, visits: Iterable[Visit]
) -> tuple[dict[str, Garden], dict[str, Dog]]:
    """Load the gardens and dogs the given visits point at, keyed by id."""
    visits = list(visits)
    garden_ids = {v.garden_id for v in visits}
    gardens: dict[str, Garden] = {}
    if garden_ids:
        rows = (await db.execute(select(Garden).where(Garden.id.in_(garden_ids)))).scalars().all()
        gardens = {g.id: g for g in rows}
    dogs = await get_dogs_by_ids(db, {d for v in visits for d in v.dog_ids})
    return gardens, dogs
