from __future__ import annotations
import logging
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from ..models import Visit, VisitStatus, utcnow
from .notify import dispatch

logger = logging.getLogger(__name__)

async def find_long_visits(db: AsyncSession, *, older_than: datetime) -> list[Visit]:
    rows = (await db.execute(
        select(Visit).where(
            Visit.status == VisitStatus.ACTIVE,
            Visit.reminder_sent.is_(False),
            Visit.check_in_time <= older_than,
        ).order_by(Visit.check_in_time.asc())
    )).scalars().all()
    return list(rows)

async def send_visit_reminders(db: AsyncSession, *, after_minutes: int, now: datetime | None = None) -> int:
    """
    Remind users whose visit has been active for ``after_minutes`` or more.
    Each visit is flagged before publishing so a reminder goes out at most once.
    """
    now = now or utcnow()
    visits = await find_long_visits(db, older_than=now - timedelta(minutes=after_minutes))
    sent = 0
    for v in visits:
        res = await db.execute(
            update(Visit)
            .where(Visit.id == v.id, Visit.reminder_sent.is_(False), Visit.status == VisitStatus.ACTIVE)
            .values(reminder_sent=True)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if res.rowcount != 1:
            continue
        # flagged either way; a failed publish is not retried
        if await dispatch("reminder", v, now):
            sent += 1
    if sent:
        logger.info("sent %d long-visit reminders", sent)
    return sent
