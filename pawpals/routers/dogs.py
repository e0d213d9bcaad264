from __future__ import annotations
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.identity import MemberIdentity
from ..deps import get_db, require_member
from ..schemas import DogRead
from ..services.dogs import get_dogs_for_user

router = APIRouter(prefix="/dogs", tags=["dogs"])

@router.get("/me", response_model=list[DogRead])
async def my_dogs(member: MemberIdentity = Depends(require_member), db: AsyncSession = Depends(get_db)):
    rows = await get_dogs_for_user(db, member.user_id)
    return [
        DogRead(
            id=d.id, name=d.name, breed=d.breed, size=d.size, age=d.age,
            personality=dict(d.personality or {}), is_vaccinated=d.is_vaccinated,
        )
        for d in rows
    ]
