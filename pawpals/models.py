from __future__ import annotations
import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy.orm import declarative_base, Mapped, mapped_column, relationship
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Enum as SqlEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.types import DateTime

Base = declarative_base()

ID_LEN = 24

def utcnow():
    return datetime.now(timezone.utc)

def as_utc(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone=True columns
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt

def new_id() -> str:
    """24-hex id: 4 bytes of epoch seconds followed by 8 random bytes."""
    return f"{int(time.time()):08x}{secrets.token_hex(8)}"

def _values(enum_cls):
    return [m.value for m in enum_cls]

class GardenType(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"

class VisitStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class Garden(Base):
    __tablename__ = "gardens"

    id: Mapped[str] = mapped_column(String(ID_LEN), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    type: Mapped[GardenType] = mapped_column(
        SqlEnum(GardenType, values_callable=_values, native_enum=False, length=16),
        default=GardenType.PUBLIC, nullable=False,
    )
    address: Mapped[str | None] = mapped_column(String(255))
    city: Mapped[str | None] = mapped_column(String(120), index=True)
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    max_dogs: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None => unbounded
    amenities: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    average_rating: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_reviews: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_visits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_occupancy: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("current_occupancy >= 0", name="ck_gardens_occupancy_nonneg"),
        CheckConstraint("max_dogs IS NULL OR max_dogs > 0", name="ck_gardens_max_dogs_pos"),
    )

class Dog(Base):
    __tablename__ = "dogs"

    id: Mapped[str] = mapped_column(String(ID_LEN), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    breed: Mapped[str | None] = mapped_column(String(120))
    age: Mapped[int | None] = mapped_column(Integer)
    size: Mapped[str | None] = mapped_column(String(16))  # small / medium / large
    personality: Mapped[dict[str, int]] = mapped_column(JSON, default=dict, nullable=False)
    is_vaccinated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

class Visit(Base):
    __tablename__ = "visits"

    id: Mapped[str] = mapped_column(String(ID_LEN), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    garden_id: Mapped[str] = mapped_column(ForeignKey("gardens.id"), nullable=False)
    status: Mapped[VisitStatus] = mapped_column(
        SqlEnum(VisitStatus, values_callable=_values, native_enum=False, length=16),
        default=VisitStatus.ACTIVE, nullable=False,
    )
    check_in_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    check_out_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(String(500))
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        # the single-active-visit rule lives in the store, not in a check-then-write
        Index(
            "uq_visits_one_active_per_user", "user_id", unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_visits_user_checkin", "user_id", "check_in_time"),
        Index("ix_visits_garden_status", "garden_id", "status"),
        CheckConstraint("duration_minutes IS NULL OR duration_minutes >= 0", name="ck_visits_duration_nonneg"),
    )

    garden: Mapped[Garden] = relationship("Garden", lazy="raise")
    dogs: Mapped[list["VisitDog"]] = relationship(
        "VisitDog", back_populates="visit", cascade="all, delete-orphan", lazy="selectin"
    )

    @property
    def dog_ids(self) -> list[str]:
        return [d.dog_id for d in self.dogs]

class VisitDog(Base):
    __tablename__ = "visit_dogs"

    visit_id: Mapped[str] = mapped_column(ForeignKey("visits.id", ondelete="CASCADE"), primary_key=True)
    dog_id: Mapped[str] = mapped_column(ForeignKey("dogs.id"), primary_key=True)

    visit: Mapped[Visit] = relationship("Visit", back_populates="dogs")
