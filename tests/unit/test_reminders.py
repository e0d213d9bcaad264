from __future__ import annotations

from datetime import datetime, timedelta, timezone

from pawpals.services import visits as svc
from pawpals.services.reminders import send_visit_reminders

T0 = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)


async def test_long_visits_get_a_single_reminder(db, seed, alice, bob, published):
    g = await seed.garden()
    long_visit = await svc.check_in(db, alice, garden_id=g.id, dog_ids=[(await seed.dog(alice.user_id)).id], now=T0)
    await svc.check_in(
        db, bob, garden_id=g.id, dog_ids=[(await seed.dog(bob.user_id)).id], now=T0 + timedelta(minutes=90)
    )
    published.clear()

    now = T0 + timedelta(minutes=125)
    assert await send_visit_reminders(db, after_minutes=120, now=now) == 1
    assert await send_visit_reminders(db, after_minutes=120, now=now) == 0

    assert [e for e, _ in published] == ["reminder"]
    evt = published[0][1]
    assert evt["visit_id"] == long_visit.id
    assert evt["user_id"] == alice.user_id
    assert evt["idempotency_key"] == f"{long_visit.id}:reminder"


async def test_closed_visits_are_not_reminded(db, seed, alice, published):
    g = await seed.garden()
    v = await svc.check_in(db, alice, garden_id=g.id, dog_ids=[(await seed.dog(alice.user_id)).id], now=T0)
    await svc.check_out(db, alice, v.id, now=T0 + timedelta(minutes=10))
    published.clear()

    assert await send_visit_reminders(db, after_minutes=120, now=T0 + timedelta(hours=5)) == 0
    assert published == []
