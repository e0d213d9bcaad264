from __future__ import annotations
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.identity import GuestIdentity, Identity, MemberIdentity
from ..core.qr import parse_qr
from ..deps import get_db, get_identity, rate_limited, require_member
from ..errors import VisitError
from ..models import Dog, Garden, Visit, VisitStatus, as_utc
from ..schemas import (
    ActiveVisitResponse,
    CheckinCreate,
    CheckoutRequest,
    DogSummary,
    GardenSummary,
    IdRef,
    QRParseRead,
    QRPayload,
    ResolvedDog,
    ResolvedGarden,
    ScanCheckinCreate,
    VisitList,
    VisitRead,
)
from ..services import visits as visit_svc
from ..services.notify import dispatch
from ._errors import to_http_error

router = APIRouter(prefix="/visits", tags=["visits"])

def visit_read(v: Visit, gardens: dict[str, Garden] | None = None, dogs: dict[str, Dog] | None = None) -> VisitRead:
    g = (gardens or {}).get(v.garden_id)
    garden_ref = (
        ResolvedGarden(value=GardenSummary(id=g.id, name=g.name, address=g.address, city=g.city, type=g.type.value))
        if g else IdRef(id=v.garden_id)
    )
    dog_refs = []
    for dog_id in v.dog_ids:
        d = (dogs or {}).get(dog_id)
        dog_refs.append(
            ResolvedDog(value=DogSummary(id=d.id, name=d.name, breed=d.breed, size=d.size)) if d else IdRef(id=dog_id)
        )
    return VisitRead(
        id=v.id, user_id=v.user_id, garden=garden_ref, dogs=dog_refs, status=v.status.value,
        check_in_time=as_utc(v.check_in_time), check_out_time=as_utc(v.check_out_time),
        duration_minutes=v.duration_minutes, notes=v.notes,
    )

def _error(exc: VisitError):
    return to_http_error(exc, serialize_visit=lambda v: visit_read(v).model_dump(mode="json"))

async def _resolved(db: AsyncSession, v: Visit) -> VisitRead:
    gardens, dogs = await visit_svc.resolve_references(db, [v])
    return visit_read(v, gardens, dogs)

# --- 1) Check in with selected dogs
@router.post(
    "", response_model=VisitRead, status_code=201,
    dependencies=[Depends(rate_limited("visits.checkin"))],
)
async def check_in(
    payload: CheckinCreate,
    member: MemberIdentity = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    try:
        visit = await visit_svc.check_in(
            db, member, garden_id=payload.garden_id, dog_ids=payload.dog_ids, notes=payload.notes
        )
    except VisitError as exc:
        raise _error(exc)
    await dispatch("checked_in", visit, visit.check_in_time)
    return await _resolved(db, visit)

# --- 2) Scan garden QR and check in
@router.post(
    "/scan", response_model=VisitRead, status_code=201,
    dependencies=[Depends(rate_limited("visits.scan"))],
)
async def scan_and_check_in(
    payload: ScanCheckinCreate,
    member: MemberIdentity = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    try:
        ref = parse_qr(payload.qr)
        visit = await visit_svc.check_in(
            db, member, garden_id=ref.garden_id, dog_ids=payload.dog_ids, notes=payload.notes
        )
    except VisitError as exc:
        raise _error(exc)
    await dispatch("checked_in", visit, visit.check_in_time)
    return await _resolved(db, visit)

# --- 3) Parse only (scanner preview, no side effects)
@router.post("/qr/parse", response_model=QRParseRead, dependencies=[Depends(get_identity)])
async def parse_qr_payload(payload: QRPayload):
    try:
        ref = parse_qr(payload.qr)
    except VisitError as exc:
        raise _error(exc)
    return QRParseRead(garden_id=ref.garden_id, garden_name=ref.garden_name, type=ref.type, format=ref.format)

# --- 4) Current active visit (always resolved)
@router.get("/active", response_model=ActiveVisitResponse)
async def active_visit(identity: Identity = Depends(get_identity), db: AsyncSession = Depends(get_db)):
    if isinstance(identity, GuestIdentity):
        return ActiveVisitResponse(visit=None)
    visit = await visit_svc.get_active_visit(db, identity.user_id)
    if visit is None:
        return ActiveVisitResponse(visit=None)
    return ActiveVisitResponse(visit=await _resolved(db, visit))

# --- 5) Visit history
@router.get("/me", response_model=VisitList)
async def my_visits(
    status_filter: VisitStatus | None = Query(default=None, alias="status"),
    garden_id: str | None = Query(default=None),
    dog_id: str | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
    expand: bool = Query(default=False),
    member: MemberIdentity = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    total, rows = await visit_svc.list_visits(
        db, member.user_id, status=status_filter, garden_id=garden_id, dog_id=dog_id, limit=limit, skip=skip
    )
    gardens, dogs = (await visit_svc.resolve_references(db, rows)) if expand else ({}, {})
    return VisitList(total=total, visits=[visit_read(v, gardens, dogs) for v in rows])

# --- 6) Check out
@router.post("/{visit_id}/checkout", response_model=VisitRead)
async def check_out(
    visit_id: str,
    payload: CheckoutRequest | None = None,
    member: MemberIdentity = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    try:
        visit = await visit_svc.check_out(db, member, visit_id, notes=payload.notes if payload else None)
    except VisitError as exc:
        raise _error(exc)
    await dispatch("checked_out", visit, visit.check_out_time)
    return await _resolved(db, visit)

# --- 7) Cancel (no duration recorded)
@router.post("/{visit_id}/cancel", response_model=VisitRead)
async def cancel(
    visit_id: str,
    member: MemberIdentity = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    try:
        visit = await visit_svc.cancel_visit(db, member, visit_id)
    except VisitError as exc:
        raise _error(exc)
    await dispatch("cancelled", visit, visit.check_out_time)
    return await _resolved(db, visit)
