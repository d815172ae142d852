import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, ForeignKey, JSON, Integer
from app.core.base import Base, TimestampedMixin, UTCDateTime

class Appointment(Base, TimestampedMixin):
    professional_id: Mapped[uuid.UUID] = mapped_column(index=True)
    client_id: Mapped[uuid.UUID] = mapped_column(index=True)

    # set when booked through a slot; direct scheduling leaves these empty
    slot_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("slot.id", ondelete="SET NULL"), nullable=True, index=True)
    config_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("availabilityconfig.id", ondelete="SET NULL"), nullable=True)

    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    appointment_type: Mapped[str] = mapped_column(String(32), default="consultation")  # consultation, follow_up, assessment, other
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    scheduled_start: Mapped[datetime] = mapped_column(UTCDateTime)
    scheduled_end: Mapped[datetime] = mapped_column(UTCDateTime)
    timezone: Mapped[str] = mapped_column(String(64))

    status: Mapped[str] = mapped_column(String(16), default="scheduled")  # scheduled, confirmed, completed, cancelled, no_show
    reschedule_count: Mapped[int] = mapped_column(Integer, default=0)

    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

    # Freeform metadata container
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
