from __future__ import annotations
from typing import Annotated, Literal, Union
from pydantic import BaseModel, Field
from datetime import datetime

IdStr    = Annotated[str, Field(min_length=1, max_length=64)]
NotesStr = Annotated[str, Field(max_length=500)]

VisitStatusLit = Literal["active", "completed", "cancelled"]

# ---- Gardens / dogs ----
class GardenSummary(BaseModel):
    id: str
    name: str
    address: str | None = None
    city: str | None = None
    type: Literal["public", "private"] = "public"

class GardenRead(GardenSummary):
    description: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    max_dogs: int | None = None
    current_occupancy: int = 0
    available_spots: int | None = None
    amenities: list[str] = []
    average_rating: float = 0.0
    total_reviews: int = 0
    total_visits: int = 0

class DogSummary(BaseModel):
    id: str
    name: str
    breed: str | None = None
    size: str | None = None

class DogRead(DogSummary):
    age: int | None = None
    personality: dict[str, int] = {}
    is_vaccinated: bool = False

# ---- References: either a bare id or the resolved record ----
class IdRef(BaseModel):
    kind: Literal["id"] = "id"
    id: str

class ResolvedGarden(BaseModel):
    kind: Literal["resolved"] = "resolved"
    value: GardenSummary

class ResolvedDog(BaseModel):
    kind: Literal["resolved"] = "resolved"
    value: DogSummary

GardenRef = Annotated[Union[IdRef, ResolvedGarden], Field(discriminator="kind")]
DogRef    = Annotated[Union[IdRef, ResolvedDog], Field(discriminator="kind")]

def ref_id(ref: IdRef | ResolvedGarden | ResolvedDog) -> str:
    if isinstance(ref, IdRef):
        return ref.id
    return ref.value.id

# ---- Visits ----
class CheckinCreate(BaseModel):
    garden_id: IdStr
    dog_ids: list[IdStr] = Field(default_factory=list, max_length=20)
    notes: NotesStr | None = None

class QRPayload(BaseModel):
    qr: Annotated[str, Field(max_length=4096)]  # raw scanned text

class ScanCheckinCreate(QRPayload):
    dog_ids: list[IdStr] = Field(default_factory=list, max_length=20)
    notes: NotesStr | None = None

class CheckoutRequest(BaseModel):
    notes: NotesStr | None = None

class VisitRead(BaseModel):
    id: str
    user_id: str
    garden: GardenRef
    dogs: list[DogRef]
    status: VisitStatusLit
    check_in_time: datetime
    check_out_time: datetime | None = None
    duration_minutes: int | None = None
    notes: str | None = None

    @property
    def garden_id(self) -> str:
        return ref_id(self.garden)

    @property
    def dog_ids(self) -> list[str]:
        return [ref_id(d) for d in self.dogs]

class ActiveVisitResponse(BaseModel):
    visit: VisitRead | None = None

class VisitList(BaseModel):
    total: int
    visits: list[VisitRead]

class QRParseRead(BaseModel):
    garden_id: str
    garden_name: str | None = None
    type: str
    format: str
