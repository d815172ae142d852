import uuid
from datetime import date, datetime, time
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Text, Date, Time, JSON, ForeignKey, UniqueConstraint, Index
from sqlalchemy.types import TypeDecorator
from app.core.base import Base, TimestampedMixin, UTCDateTime
from app.modules.availability.recurrence import RecurrenceRule, RecurrenceAdapter, parse_recurrence
from app.modules.availability.schemas import BusinessRules


class RecurrenceType(TypeDecorator):
    """Stores a recurrence variant as JSON; loads it back as the typed rule."""
    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return RecurrenceAdapter.dump_python(parse_recurrence(value), mode="json")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return RecurrenceAdapter.validate_python(value)


class AvailabilityConfig(Base, TimestampedMixin):
    professional_id: Mapped[uuid.UUID] = mapped_column(index=True)
    title: Mapped[str] = mapped_column(String(120))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    recurrence: Mapped[RecurrenceRule] = mapped_column(RecurrenceType)
    start_time: Mapped[time] = mapped_column(Time)  # local wall clock
    end_time: Mapped[time] = mapped_column(Time)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60)
    timezone: Mapped[str] = mapped_column(String(64))
    dst_handling: Mapped[str] = mapped_column(String(8), default="auto")  # auto | fixed
    valid_from: Mapped[date] = mapped_column(Date)
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True)

    # business rules
    buffer_minutes: Mapped[int] = mapped_column(Integer, default=15)
    max_slots_per_day: Mapped[int] = mapped_column(Integer, default=8)
    min_advance_minutes: Mapped[int] = mapped_column(Integer, default=24 * 60)
    max_advance_days: Mapped[int] = mapped_column(Integer, default=90)

    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    @property
    def rules(self) -> BusinessRules:
        return BusinessRules(
            buffer_minutes=self.buffer_minutes,
            max_slots_per_day=self.max_slots_per_day,
            min_advance_minutes=self.min_advance_minutes,
            max_advance_days=self.max_advance_days,
        )


class Slot(Base, TimestampedMixin):
    __table_args__ = (
        UniqueConstraint("professional_id", "start_time", name="uq_slot_professional_start"),
        Index("ix_slot_config_local_date", "config_id", "local_date"),
    )

    config_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("availabilityconfig.id", ondelete="SET NULL"), nullable=True
    )
    professional_id: Mapped[uuid.UUID] = mapped_column(index=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime)

    # display copy in the professional's zone
    local_date: Mapped[date] = mapped_column(Date)
    local_start: Mapped[str] = mapped_column(String(5))
    local_end: Mapped[str] = mapped_column(String(5))
    timezone: Mapped[str] = mapped_column(String(64))

    status: Mapped[str] = mapped_column(String(16), default="available")  # available | held | booked | cancelled
    booked_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    booked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # hold lease; only meaningful while status == "held"
    held_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    hold_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hold_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)


class BlockedPeriod(Base, TimestampedMixin):
    professional_id: Mapped[uuid.UUID] = mapped_column(index=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime)
    reason: Mapped[str] = mapped_column(String(48), default="other")  # vacation, sick_leave, personal, training, other
    source: Mapped[str] = mapped_column(String(16), default="manual")  # manual | import
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True)
