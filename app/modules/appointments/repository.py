import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, func
from app.modules.appointments.models import Appointment

class AppointmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> Appointment:
        obj = Appointment(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, appt_id: uuid.UUID, *, for_update: bool = False) -> Appointment | None:
        q = select(Appointment).where(
            and_(Appointment.id == appt_id,
                 Appointment.deleted_at.is_(None))
        )
        if for_update:
            q = q.with_for_update()
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def count_active(self, professional_id: uuid.UUID, start: datetime | None = None, end: datetime | None = None) -> int:
        cond = [Appointment.professional_id == professional_id, Appointment.deleted_at.is_(None), Appointment.status != "cancelled"]
        if start:
            cond.append(Appointment.scheduled_start >= start)
        if end:
            cond.append(Appointment.scheduled_start < end)
        res = await self.session.execute(select(func.count()).select_from(Appointment).where(and_(*cond)))
        return res.scalar_one()

    async def list(
        self,
        *,
        professional_id: uuid.UUID | None = None,
        client_id: uuid.UUID | None = None,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Appointment]:
        cond = [Appointment.deleted_at.is_(None)]
        if professional_id:
            cond.append(Appointment.professional_id == professional_id)
        if client_id:
            cond.append(Appointment.client_id == client_id)
        if status:
            cond.append(Appointment.status == status)
        if start:
            cond.append(Appointment.scheduled_end > start)
        if end:
            cond.append(Appointment.scheduled_start < end)
        q = select(Appointment).where(and_(*cond)).order_by(Appointment.scheduled_start.asc()).limit(limit).offset(offset)
        res = await self.session.execute(q)
        return res.scalars().all()
