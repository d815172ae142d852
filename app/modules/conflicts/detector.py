"""
Conflict detection.

``overlaps`` is the single definition of two intervals colliding. Slot
generation uses it directly on prefetched rows; booking goes through
``ConflictDetector`` which reads the store and then applies the same rule.
"""

import uuid
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.intervals import Interval
from app.modules.conflicts.repository import ConflictRepository
from app.modules.timezones.service import resolve_zone, validate_slot_window


def overlaps(a: Interval, b: Interval) -> bool:
    """Half-open overlap: touching intervals do not collide."""
    return a.start < b.end and a.end > b.start


def appointment_interval(appt) -> Interval:
    return Interval(appt.scheduled_start, appt.scheduled_end)


def block_interval(block) -> Interval:
    return Interval(block.start_time, block.end_time)


@dataclass
class ConflictResult:
    conflicting_appointments: list = field(default_factory=list)
    conflicting_blocks: list = field(default_factory=list)

    @property
    def conflict(self) -> bool:
        return bool(self.conflicting_appointments or self.conflicting_blocks)

    def describe(self) -> list[dict]:
        out = []
        for a in self.conflicting_appointments:
            out.append({
                "type": "appointment",
                "id": str(a.id),
                "start": a.scheduled_start.isoformat(),
                "end": a.scheduled_end.isoformat(),
                "status": a.status,
                "title": a.title,
            })
        for b in self.conflicting_blocks:
            out.append({
                "type": "blocked_period",
                "id": str(b.id),
                "start": b.start_time.isoformat(),
                "end": b.end_time.isoformat(),
                "reason": b.reason,
            })
        return out


def find_conflicts(interval: Interval, appointments: Iterable, blocks: Iterable) -> ConflictResult:
    return ConflictResult(
        conflicting_appointments=[
            a for a in appointments
            if a.status != "cancelled" and overlaps(interval, appointment_interval(a))
        ],
        conflicting_blocks=[
            b for b in blocks
            if b.is_active and overlaps(interval, block_interval(b))
        ],
    )


class ConflictDetector:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = ConflictRepository(session)

    async def has_conflict(
        self,
        interval: Interval,
        professional_id: uuid.UUID,
        *,
        exclude_appointment_id: uuid.UUID | None = None,
    ) -> ConflictResult:
        appts = await self.repo.active_appointments_overlapping(
            professional_id, interval.start, interval.end, exclude_appointment_id=exclude_appointment_id
        )
        blocks = await self.repo.active_blocks_overlapping(professional_id, interval.start, interval.end)
        return find_conflicts(interval, appts, blocks)

    async def check(
        self,
        interval: Interval,
        professional_id: uuid.UUID,
        *,
        zone_id: str | None = None,
        exclude_appointment_id: uuid.UUID | None = None,
    ) -> dict:
        """Conflicts plus advisory warnings about the window itself."""
        result = await self.has_conflict(interval, professional_id, exclude_appointment_id=exclude_appointment_id)
        zone = resolve_zone(zone_id or settings.DEFAULT_TIMEZONE)
        warnings = [str(zone.warning)] if zone.warning else []
        window = validate_slot_window(interval.start, interval.end, zone.zone_id)
        warnings.extend(i.message for i in window.issues)
        return {
            "valid": not result.conflict,
            "conflicts": result.describe(),
            "warnings": warnings,
        }
