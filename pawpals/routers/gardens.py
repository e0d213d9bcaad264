from __future__ import annotations
from typing import Literal
from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.qr import build_qr_text, build_qr_url, render_qr_png
from ..deps import get_db
from ..errors import GardenNotFound
from ..models import Garden, GardenType
from ..schemas import GardenRead
from ..services.gardens import get_garden, list_gardens
from ..services.occupancy import compute_occupancy, occupancy_by_garden

router = APIRouter(prefix="/gardens", tags=["gardens"])

def garden_read(g: Garden, occupancy: int) -> GardenRead:
    spots = None if g.max_dogs is None else max(0, g.max_dogs - occupancy)
    return GardenRead(
        id=g.id, name=g.name, address=g.address, city=g.city, type=g.type.value,
        description=g.description, latitude=g.latitude, longitude=g.longitude,
        max_dogs=g.max_dogs, current_occupancy=occupancy, available_spots=spots,
        amenities=list(g.amenities or []), average_rating=g.average_rating,
        total_reviews=g.total_reviews, total_visits=g.total_visits,
    )

@router.get("", response_model=list[GardenRead])
async def gardens(
    db: AsyncSession = Depends(get_db),
    city: str | None = Query(default=None),
    garden_type: GardenType | None = Query(default=None, alias="type"),
    has_capacity: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    skip: int = Query(default=0, ge=0),
):
    rows = await list_gardens(db, city=city, garden_type=garden_type, has_capacity=has_capacity, limit=limit, skip=skip)
    live = await occupancy_by_garden(db, [g.id for g in rows])
    return [garden_read(g, live.get(g.id, 0)) for g in rows]

@router.get("/{garden_id}", response_model=GardenRead)
async def garden_detail(garden_id: str, db: AsyncSession = Depends(get_db)):
    g = await get_garden(db, garden_id)
    if not g:
        raise HTTPException(status_code=404, detail=GardenNotFound().to_detail())
    return garden_read(g, await compute_occupancy(db, g.id))

# signage PNG: "<prefix>:garden:<id>" text, or the public garden URL with ?format=url
@router.get("/{garden_id}/qr.png")
async def garden_qr_png(
    garden_id: str,
    qr_format: Literal["scheme", "url"] = Query(default="scheme", alias="format"),
    db: AsyncSession = Depends(get_db),
):
    g = await get_garden(db, garden_id)
    if not g:
        raise HTTPException(status_code=404, detail=GardenNotFound().to_detail())
    text = build_qr_url(g.id) if qr_format == "url" else build_qr_text(g.id)
    return Response(content=render_qr_png(text), media_type="image/png")
