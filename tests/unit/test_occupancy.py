from __future__ import annotations

from sqlalchemy import select, update

from pawpals.models import Garden
from pawpals.services import visits as svc
from pawpals.services.occupancy import occupancy_by_garden, reconcile_all, refresh_occupancy


async def test_reconcile_all_repairs_drifted_counters(db, seed, session_maker, alice):
    g = await seed.garden()
    idle = await seed.garden(name="Empty", current_occupancy=4)
    dogs = [(await seed.dog(alice.user_id, name=n)).id for n in ("Rex", "Luna")]
    await svc.check_in(db, alice, garden_id=g.id, dog_ids=dogs)
    await db.execute(update(Garden).where(Garden.id == g.id).values(current_occupancy=9))
    await db.commit()

    async with session_maker() as s:
        fixed = await reconcile_all(s)

    assert fixed == 2
    async with session_maker() as s:
        rows = dict((await s.execute(select(Garden.id, Garden.current_occupancy))).all())
    assert rows == {g.id: 2, idle.id: 0}

    async with session_maker() as s:
        assert await reconcile_all(s) == 0


async def test_refresh_occupancy_never_goes_negative(db, seed):
    g = await seed.garden(current_occupancy=0)
    assert await refresh_occupancy(db, g.id) == 0
    await db.commit()


async def test_occupancy_by_garden_reports_zero_for_empty_gardens(db, seed, alice):
    g = await seed.garden()
    h = await seed.garden(name="Gan Meir")
    await svc.check_in(db, alice, garden_id=g.id, dog_ids=[(await seed.dog(alice.user_id)).id])

    assert await occupancy_by_garden(db, [g.id, h.id]) == {g.id: 1, h.id: 0}
    assert await occupancy_by_garden(db, []) == {}
