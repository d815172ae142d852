"""
Booking coordinator.

Slot lifecycle handled here:

    available -> held -> booked
    available -> booked
    booked -> available            (appointment cancelled / rescheduled away)

Every transition is a compare-and-set UPDATE guarded by the store, so two
requests racing for one slot can never both commit ``booked``; the loser gets
SlotUnavailable. Events go to the outbox inside the same transaction and are
published by the relay after commit.
"""

import uuid
import logging
import secrets
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.base import utcnow
from app.core.config import settings
from app.core.errors import InvalidTransition, NotFound, SlotUnavailable, ValidationFailed
from app.core.intervals import Interval
from app.modules.appointments.models import Appointment
from app.modules.appointments.repository import AppointmentRepository
from app.modules.appointments.schemas import AppointmentCreate, BookingDetails
from app.modules.availability.models import Slot
from app.modules.availability.repository import AvailabilityRepository, is_bookable
from app.modules.conflicts.detector import ConflictDetector
from app.modules.events.outbox import OutboxService
from app.modules.timezones.service import resolve_zone

logger = logging.getLogger(__name__)

VALID_NEXT = {
    "scheduled": {"confirmed", "cancelled", "no_show"},
    "confirmed": {"completed", "cancelled", "no_show"},
    "completed": set(),
    "cancelled": set(),
    "no_show": set(),
}


def _event_payload(appt: Appointment) -> dict:
    return {
        "professional_id": str(appt.professional_id),
        "client_id": str(appt.client_id),
        "slot_id": str(appt.slot_id) if appt.slot_id else None,
        "start": appt.scheduled_start.isoformat(),
        "end": appt.scheduled_end.isoformat(),
        "status": appt.status,
    }


class AppointmentService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.appts = AppointmentRepository(session)
        self.slots = AvailabilityRepository(session)
        self.detector = ConflictDetector(session)

    # ---- Slot booking ----
    async def book_slot(
        self,
        slot_id: uuid.UUID,
        requester_id: uuid.UUID,
        details: BookingDetails | None = None,
        *,
        hold_token: str | None = None,
        now: datetime | None = None,
    ) -> Appointment:
        now = now or utcnow()
        details = details or BookingDetails()

        slot = await self.slots.get_slot_for_update(slot_id)
        if slot is None:
            raise NotFound("slot", slot_id)
        if not is_bookable(slot, now, hold_token):
            current = slot.status
            await self.session.rollback()
            raise SlotUnavailable(slot_id, current)

        # the UPDATE's WHERE clause is what actually arbitrates a race
        if not await self.slots.claim_slot(slot_id, requester_id, now, hold_token):
            await self.session.rollback()
            raise SlotUnavailable(slot_id, "booked")

        interval = Interval(slot.start_time, slot.end_time)
        result = await self.detector.has_conflict(interval, slot.professional_id)
        if result.conflict:
            conflicts = result.describe()
            await self.session.rollback()
            logger.warning(f"Slot {slot_id} conflicts with {len(conflicts)} existing entries")
            raise ValidationFailed("Slot overlaps an existing appointment or blocked period", conflicts=conflicts)

        appt = await self.appts.create(
            professional_id=slot.professional_id,
            client_id=requester_id,
            slot_id=slot.id,
            config_id=slot.config_id,
            scheduled_start=slot.start_time,
            scheduled_end=slot.end_time,
            timezone=slot.timezone,
            status="scheduled",
            created_by=requester_id,
            **details.model_dump(include=set(BookingDetails.model_fields)),
        )
        await OutboxService(self.session).enqueue("APPOINTMENT_BOOKED", "appointment", appt.id, _event_payload(appt))
        await self.session.commit()
        logger.info(f"Slot {slot_id} booked by {requester_id} as appointment {appt.id}")
        return appt

    async def hold_slot(
        self,
        slot_id: uuid.UUID,
        requester_id: uuid.UUID,
        ttl_seconds: int | None = None,
        *,
        now: datetime | None = None,
    ) -> Slot:
        """Lease a slot for ``ttl_seconds``. The lease lapses on its own; nothing has to clean it up."""
        now = now or utcnow()
        ttl = min(ttl_seconds or settings.DEFAULT_HOLD_TTL_SECONDS, settings.MAX_HOLD_TTL_SECONDS)

        slot = await self.slots.get_slot_for_update(slot_id)
        if slot is None:
            raise NotFound("slot", slot_id)
        current = slot.status
        token = secrets.token_urlsafe(24)
        if not await self.slots.hold_slot(slot_id, requester_id, token, now + timedelta(seconds=ttl), now):
            await self.session.rollback()
            raise SlotUnavailable(slot_id, current)

        await OutboxService(self.session).enqueue("SLOT_HELD", "slot", slot_id, {"held_by": str(requester_id), "ttl_seconds": ttl})
        await self.session.commit()
        await self.session.refresh(slot)
        return slot

    async def release_hold(self, slot_id: uuid.UUID, hold_token: str) -> Slot:
        slot = await self.slots.get_slot_for_update(slot_id)
        if slot is None:
            raise NotFound("slot", slot_id)
        current = slot.status
        if not await self.slots.release_hold(slot_id, hold_token):
            await self.session.rollback()
            raise SlotUnavailable(slot_id, current)
        await OutboxService(self.session).enqueue("SLOT_RELEASED", "slot", slot_id, {})
        await self.session.commit()
        await self.session.refresh(slot)
        return slot

    # ---- Appointments ----
    async def create_appointment(self, creator_id: uuid.UUID, payload: AppointmentCreate) -> Appointment:
        """Direct scheduling without a slot. Conflict-checked, but no slot is locked."""
        interval = Interval(payload.scheduled_start, payload.scheduled_end)
        result = await self.detector.has_conflict(interval, payload.professional_id)
        if result.conflict:
            raise ValidationFailed("Requested time overlaps an existing appointment or blocked period", conflicts=result.describe())

        zone = resolve_zone(payload.timezone or settings.DEFAULT_TIMEZONE)
        data = payload.model_dump(exclude={"client_id", "timezone"})
        appt = await self.appts.create(
            client_id=payload.client_id or creator_id,
            timezone=zone.zone_id,
            status="scheduled",
            created_by=creator_id,
            **data,
        )
        await OutboxService(self.session).enqueue("APPOINTMENT_CREATED", "appointment", appt.id, _event_payload(appt))
        await self.session.commit()
        return appt

    async def get(self, appt_id: uuid.UUID) -> Appointment:
        obj = await self.appts.get(appt_id)
        if not obj:
            raise NotFound("appointment", appt_id)
        return obj

    async def list_appointments(
        self,
        *,
        professional_id: uuid.UUID | None = None,
        client_id: uuid.UUID | None = None,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ):
        return await self.appts.list(
            professional_id=professional_id, client_id=client_id, status=status,
            start=start, end=end, limit=limit, offset=offset,
        )

    async def cancel_appointment(
        self,
        appointment_id: uuid.UUID,
        actor_id: uuid.UUID,
        reason: str | None = None,
        *,
        now: datetime | None = None,
    ) -> Appointment:
        obj = await self.appts.get(appointment_id, for_update=True)
        if not obj:
            raise NotFound("appointment", appointment_id)
        if "cancelled" not in VALID_NEXT.get(obj.status, set()):
            raise InvalidTransition("appointment", obj.status, "cancelled")

        prev = obj.status
        obj.status = "cancelled"
        obj.cancelled_at = now or utcnow()
        obj.cancelled_by = actor_id
        obj.cancel_reason = reason
        obj.version += 1
        # the slot goes back on offer in the same commit
        if obj.slot_id:
            await self.slots.release_booked(obj.slot_id)
        await OutboxService(self.session).enqueue(
            "APPOINTMENT_CANCELLED", "appointment", obj.id,
            {**_event_payload(obj), "from": prev, "reason": reason}
        )
        await self.session.commit()
        logger.info(f"Appointment {obj.id} cancelled by {actor_id}")
        return obj

    async def change_status(self, appointment_id: uuid.UUID, new_status: str, actor_id: uuid.UUID, reason: str | None = None) -> Appointment:
        if new_status == "cancelled":
            return await self.cancel_appointment(appointment_id, actor_id, reason)
        obj = await self.appts.get(appointment_id, for_update=True)
        if not obj:
            raise NotFound("appointment", appointment_id)
        if new_status not in VALID_NEXT.get(obj.status, set()):
            raise InvalidTransition("appointment", obj.status, new_status)
        prev = obj.status
        obj.status = new_status
        obj.version += 1
        await OutboxService(self.session).enqueue(
            "APPOINTMENT_STATUS_CHANGED", "appointment", obj.id,
            {"from": prev, "to": new_status, "by": str(actor_id)}
        )
        await self.session.commit()
        return obj

    async def reschedule_appointment(
        self,
        appointment_id: uuid.UUID,
        new_start: datetime,
        new_end: datetime,
        actor_id: uuid.UUID,
        reason: str | None = None,
    ) -> Appointment:
        obj = await self.appts.get(appointment_id, for_update=True)
        if not obj:
            raise NotFound("appointment", appointment_id)
        if obj.status not in {"scheduled", "confirmed"}:
            raise InvalidTransition("appointment", obj.status, "rescheduled")

        interval = Interval(new_start, new_end)
        result = await self.detector.has_conflict(interval, obj.professional_id, exclude_appointment_id=obj.id)
        if result.conflict:
            raise ValidationFailed("New time overlaps an existing appointment or blocked period", conflicts=result.describe())

        old = {"start": obj.scheduled_start.isoformat(), "end": obj.scheduled_end.isoformat(), "slot_id": str(obj.slot_id) if obj.slot_id else None}
        if obj.slot_id:
            # the old slot no longer matches the appointment's time
            await self.slots.release_booked(obj.slot_id)
            obj.slot_id = None
        obj.scheduled_start = new_start
        obj.scheduled_end = new_end
        obj.reschedule_count += 1
        obj.version += 1
        await OutboxService(self.session).enqueue(
            "APPOINTMENT_RESCHEDULED", "appointment", obj.id,
            {**_event_payload(obj), "previous": old, "by": str(actor_id), "reason": reason}
        )
        await self.session.commit()
        return obj
