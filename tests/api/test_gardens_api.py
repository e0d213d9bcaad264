from __future__ import annotations

from pawpals.models import GardenType


async def test_list_gardens_with_live_occupancy(api_client, seed, as_user):
    full = await seed.garden(name="Small Run", max_dogs=1)
    roomy = await seed.garden(name="Big Field", max_dogs=None, city="Haifa", type=GardenType.PRIVATE)
    await seed.garden(name="Closed", is_active=False)
    dog = await seed.dog("user-alice")
    await api_client.post("/visits", json={"garden_id": full.id, "dog_ids": [dog.id]}, headers=as_user("user-alice"))

    rows = (await api_client.get("/gardens")).json()
    assert [g["name"] for g in rows] == ["Big Field", "Small Run"]
    small = rows[1]
    assert small["current_occupancy"] == 1
    assert small["available_spots"] == 0
    assert rows[0]["available_spots"] is None

    open_now = (await api_client.get("/gardens", params={"has_capacity": "true"})).json()
    assert [g["id"] for g in open_now] == [roomy.id]

    haifa = (await api_client.get("/gardens", params={"city": "Haifa", "type": "private"})).json()
    assert [g["id"] for g in haifa] == [roomy.id]


async def test_garden_detail_and_missing(api_client, seed):
    g = await seed.garden(amenities=["water", "shade"])

    r = await api_client.get(f"/gardens/{g.id}")
    assert r.status_code == 200
    assert r.json()["amenities"] == ["water", "shade"]
    assert r.json()["available_spots"] == 10

    r = await api_client.get(f"/gardens/{'c' * 24}")
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "garden_not_found"


async def test_garden_qr_png(api_client, seed):
    g = await seed.garden()
    r = await api_client.get(f"/gardens/{g.id}/qr.png")
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert r.content.startswith(b"\x89PNG")


async def test_my_dogs(api_client, seed, as_user):
    await seed.dog("user-alice", name="Luna", breed="Saluki", personality={"energy": 5})
    await seed.dog("user-alice", name="Archie")
    await seed.dog("user-alice", name="Gone", is_active=False)
    await seed.dog("user-bob", name="Rex")

    r = await api_client.get("/dogs/me", headers=as_user("user-alice"))

    assert r.status_code == 200
    assert [d["name"] for d in r.json()] == ["Archie", "Luna"]
    assert r.json()[1]["personality"] == {"energy": 5}

    r = await api_client.get("/dogs/me", headers=as_user("guest-1", role="guest"))
    assert r.status_code == 403


async def test_health(api_client):
    r = await api_client.get("/health")
    assert r.json() == {"status": "ok", "service": "pawpals-visits-svc"}


async def test_garden_qr_png_encodes_scheme_or_url(api_client, seed, monkeypatch):
    from pawpals.routers import gardens as gardens_router

    encoded = []
    monkeypatch.setattr(gardens_router, "render_qr_png", lambda text: encoded.append(text) or b"\x89PNG")
    g = await seed.garden()

    await api_client.get(f"/gardens/{g.id}/qr.png")
    await api_client.get(f"/gardens/{g.id}/qr.png", params={"format": "url"})
    r = await api_client.get(f"/gardens/{g.id}/qr.png", params={"format": "gif"})

    assert encoded == [f"pawpals:garden:{g.id}", f"https://www.pawpals.yadbarzel.info/garden/{g.id}"]
    assert r.status_code == 422
