from __future__ import annotations

import asyncio

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from pawpals.client.active_visit import ActiveVisitTracker, VisitState
from pawpals.client.api import VisitsApi
from pawpals.core.identity import GuestIdentity, MemberIdentity
from pawpals.errors import (
    ActionInProgress,
    AlreadyCheckedIn,
    GardenFull,
    GuestNotAllowed,
    ServerConnectionError,
    VisitNotFound,
    VisitNotOwned,
)
from pawpals.main import app


@pytest_asyncio.fixture
async def device(api_client, as_user):
    """Builds a tracker talking to the app as the given user; one per simulated device."""
    clients: list[AsyncClient] = []

    async def _make(user_id: str = "user-alice", role: str = "user") -> ActiveVisitTracker:
        client = AsyncClient(
            transport=ASGITransport(app=app), base_url="http://testserver", headers=as_user(user_id, role)
        )
        clients.append(client)
        identity = GuestIdentity() if role == "guest" else MemberIdentity(user_id=user_id)
        return ActiveVisitTracker(VisitsApi(client), identity)

    yield _make
    for c in clients:
        await c.aclose()


async def _garden_and_dogs(seed, owner="user-alice", n=2, **kw):
    g = await seed.garden(**kw)
    return g, [(await seed.dog(owner, name=f"dog-{i}")).id for i in range(n)]


async def test_guest_never_has_a_visit(device, seed):
    g, dogs = await _garden_and_dogs(seed)
    tracker = await device("guest-1", role="guest")

    assert tracker.state == VisitState.NO_ACTIVE_VISIT
    assert (await tracker.refresh()).state == VisitState.NO_ACTIVE_VISIT
    with pytest.raises(GuestNotAllowed):
        await tracker.check_in(g.id, dogs)
    with pytest.raises(GuestNotAllowed):
        await tracker.check_out()


async def test_refresh_moves_through_loading(device):
    tracker = await device()
    seen = []
    tracker.subscribe(lambda snap: seen.append(snap.state))

    assert tracker.state == VisitState.UNKNOWN
    await tracker.refresh()

    assert seen == [VisitState.LOADING, VisitState.NO_ACTIVE_VISIT]
    assert tracker.visit is None


async def test_unsubscribe(device):
    tracker = await device()
    seen = []
    unsubscribe = tracker.subscribe(seen.append)
    unsubscribe()
    await tracker.refresh()
    assert seen == []


async def test_check_in_then_check_out(device, seed):
    g, dogs = await _garden_and_dogs(seed)
    tracker = await device()

    visit = await tracker.check_in(g.id, dogs)

    assert tracker.state == VisitState.HAS_ACTIVE_VISIT
    assert tracker.visit.id == visit.id
    assert tracker.visit.garden_id == g.id
    assert sorted(tracker.visit.dog_ids) == sorted(dogs)
    assert not tracker.busy

    done = await tracker.check_out(notes="bye")

    assert done.id == visit.id
    assert done.status == "completed"
    assert tracker.state == VisitState.NO_ACTIVE_VISIT
    assert tracker.visit is None


async def test_scan_and_check_in(device, seed):
    g, dogs = await _garden_and_dogs(seed, n=1)
    tracker = await device()

    visit = await tracker.scan_and_check_in(f"https://www.pawpals.yadbarzel.info/garden/{g.id}", dogs)

    assert visit.garden_id == g.id
    assert tracker.state == VisitState.HAS_ACTIVE_VISIT


async def test_already_checked_in_adopts_the_server_visit(device, seed):
    g, dogs = await _garden_and_dogs(seed)
    h = await seed.garden(name="Gan Meir")
    phone = await device()
    tablet = await device()
    existing = await phone.check_in(g.id, dogs[:1])

    with pytest.raises(AlreadyCheckedIn) as exc:
        await tablet.check_in(h.id, dogs[1:])

    assert exc.value.active_visit.id == existing.id
    assert tablet.state == VisitState.HAS_ACTIVE_VISIT
    assert tablet.visit.id == existing.id


async def test_refused_check_in_reconciles_to_server_state(device, seed):
    g, _ = await _garden_and_dogs(seed, owner="user-bob", n=0, max_dogs=1)
    bob_dog = (await seed.dog("user-bob")).id
    alice_dogs = [(await seed.dog("user-alice")).id]
    bob = await device("user-bob")
    alice = await device()
    await bob.check_in(g.id, [bob_dog])

    with pytest.raises(GardenFull):
        await alice.check_in(g.id, alice_dogs)

    assert alice.state == VisitState.NO_ACTIVE_VISIT


async def test_check_out_closed_elsewhere_returns_none(device, seed):
    g, dogs = await _garden_and_dogs(seed)
    phone = await device()
    tablet = await device()
    await phone.check_in(g.id, dogs)
    await tablet.refresh()
    assert tablet.state == VisitState.HAS_ACTIVE_VISIT

    assert await phone.check_out() is not None
    assert await tablet.check_out() is None
    assert tablet.state == VisitState.NO_ACTIVE_VISIT


async def test_check_out_without_a_visit_returns_none(device):
    tracker = await device()
    assert await tracker.check_out() is None
    assert tracker.state == VisitState.NO_ACTIVE_VISIT


class _StubApi:
    """Stands in for ``VisitsApi`` where the test needs to control timing or failures."""

    def __init__(self, visit):
        self.visit = visit
        self.release = asyncio.Event()
        self.active_fails = False
        self.check_out_error: Exception | None = None

    async def check_in(self, garden_id, dog_ids, notes=None):
        await self.release.wait()
        return self.visit

    async def get_active_visit(self):
        if self.active_fails:
            raise ServerConnectionError("offline")
        return self.visit

    async def check_out(self, visit_id, notes=None):
        raise self.check_out_error


async def _visit_read(device, seed):
    g, dogs = await _garden_and_dogs(seed, n=1)
    tracker = await device()
    return await tracker.check_in(g.id, dogs)


async def test_only_one_mutation_at_a_time(device, seed):
    api = _StubApi(await _visit_read(device, seed))
    tracker = ActiveVisitTracker(api, MemberIdentity(user_id="user-alice"))

    pending = asyncio.create_task(tracker.check_in("g", ["d"]))
    await asyncio.sleep(0)
    assert tracker.busy
    with pytest.raises(ActionInProgress):
        await tracker.check_out()
    with pytest.raises(ActionInProgress):
        await tracker.check_in("g", ["d"])

    api.release.set()
    await pending
    assert not tracker.busy
    assert tracker.state == VisitState.HAS_ACTIVE_VISIT


async def test_optimistic_state_survives_failed_resync(device, seed):
    visit = await _visit_read(device, seed)
    api = _StubApi(visit)
    api.release.set()
    api.active_fails = True
    tracker = ActiveVisitTracker(api, MemberIdentity(user_id="user-alice"))

    await tracker.check_in("g", ["d"])

    assert tracker.state == VisitState.HAS_ACTIVE_VISIT
    assert tracker.visit.id == visit.id


async def test_transport_failure_leaves_state_unknown():
    def _offline(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = AsyncClient(transport=httpx.MockTransport(_offline), base_url="http://testserver")
    tracker = ActiveVisitTracker(VisitsApi(client, token="t"), MemberIdentity(user_id="user-alice"))
    try:
        with pytest.raises(ServerConnectionError):
            await tracker.refresh()
        assert tracker.state == VisitState.UNKNOWN

        with pytest.raises(ServerConnectionError):
            await tracker.check_in("a" * 24, ["b" * 24])
        assert tracker.state == VisitState.UNKNOWN
        assert not tracker.busy
    finally:
        await client.aclose()


class _LostReply(httpx.AsyncBaseTransport):
    """Delivers requests to the app but drops the reply for paths ending in ``suffix``."""

    def __init__(self, inner: httpx.AsyncBaseTransport, suffix: str):
        self._inner = inner
        self._suffix = suffix

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        response = await self._inner.handle_async_request(request)
        if request.url.path.endswith(self._suffix):
            await response.aread()
            raise httpx.ReadError("connection reset", request=request)
        return response


async def test_check_out_reply_lost_settles_from_server(api_client, seed, as_user):
    g, dogs = await _garden_and_dogs(seed)
    transport = _LostReply(ASGITransport(app=app), "/checkout")
    async with AsyncClient(transport=transport, base_url="http://testserver", headers=as_user("user-alice")) as client:
        tracker = ActiveVisitTracker(VisitsApi(client), MemberIdentity(user_id="user-alice"))
        await tracker.check_in(g.id, dogs)

        with pytest.raises(ServerConnectionError):
            await tracker.check_out()

        # the server did complete it; the re-fetch is what the tracker believes
        assert tracker.state == VisitState.NO_ACTIVE_VISIT
        assert tracker.visit is None
        assert not tracker.busy


@pytest.mark.parametrize(
    "error, still_active, expected",
    [
        (VisitNotOwned(), True, VisitState.HAS_ACTIVE_VISIT),
        (VisitNotFound(), False, VisitState.NO_ACTIVE_VISIT),
    ],
)
async def test_refused_check_out_reraises_and_resyncs(device, seed, error, still_active, expected):
    visit = await _visit_read(device, seed)
    api = _StubApi(visit)
    tracker = ActiveVisitTracker(api, MemberIdentity(user_id="user-alice"))
    await tracker.refresh()
    api.check_out_error = error
    if not still_active:
        api.visit = None

    with pytest.raises(type(error)):
        await tracker.check_out()

    assert tracker.state == expected
    assert not tracker.busy


async def test_history_and_qr_preview_through_the_client(api_client, seed, as_user):
    g, dogs = await _garden_and_dogs(seed, n=1)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver", headers=as_user("user-alice")
    ) as client:
        api = VisitsApi(client)

        ref = await api.parse_qr(f"pawpals:garden:{g.id}")
        assert (ref.garden_id, ref.format) == (g.id, "scheme")

        visit = await api.check_in(ref.garden_id, dogs)
        await api.check_out(visit.id, notes="home")

        history = await api.my_visits(status="completed", expand=True, garden_id=None)
        assert history.total == 1
        assert history.visits[0].id == visit.id
        assert history.visits[0].garden.kind == "resolved"
        assert (await api.my_visits(status="active")).total == 0
