import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.modules.appointments.models import Appointment
from app.modules.availability.models import BlockedPeriod


class ConflictRepository:
    """The two reads that define "busy" for a professional."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def active_appointments_overlapping(
        self,
        professional_id: uuid.UUID,
        start: datetime,
        end: datetime,
        *,
        exclude_appointment_id: uuid.UUID | None = None,
    ) -> Sequence[Appointment]:
        q = select(Appointment).where(
            Appointment.professional_id == professional_id,
            Appointment.deleted_at.is_(None),
            Appointment.status != "cancelled",
            Appointment.scheduled_start < end,
            Appointment.scheduled_end > start,
        )
        if exclude_appointment_id:
            q = q.where(Appointment.id != exclude_appointment_id)
        res = await self.session.execute(q.order_by(Appointment.scheduled_start.asc()))
        return res.scalars().all()

    async def active_blocks_overlapping(self, professional_id: uuid.UUID, start: datetime, end: datetime) -> Sequence[BlockedPeriod]:
        res = await self.session.execute(select(BlockedPeriod).where(
            BlockedPeriod.professional_id == professional_id,
            BlockedPeriod.deleted_at.is_(None),
            BlockedPeriod.is_active.is_(True),
            BlockedPeriod.start_time < end,
            BlockedPeriod.end_time > start,
        ).order_by(BlockedPeriod.start_time.asc()))
        return res.scalars().all()
