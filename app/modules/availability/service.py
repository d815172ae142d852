import uuid
import logging
from collections import Counter
from datetime import date, datetime, timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.base import utcnow
from app.core.errors import InvalidConfiguration, InvalidTransition, NotFound, ValidationFailed
from app.core.intervals import Interval
from app.modules.appointments.repository import AppointmentRepository
from app.modules.availability.models import AvailabilityConfig, Slot, BlockedPeriod
from app.modules.availability.recurrence import expand
from app.modules.availability.repository import AvailabilityRepository
from app.modules.availability.rules import filter_candidates
from app.modules.availability.schemas import BlockCreate, ConfigCreate, ConfigUpdate, GenerationResult, SlotUpdate
from app.modules.conflicts.detector import ConflictDetector, find_conflicts
from app.modules.events.outbox import OutboxService
from app.modules.timezones.service import local_day_bounds, resolve_zone, to_local

logger = logging.getLogger(__name__)

_RULE_FIELDS = ("buffer_minutes", "max_slots_per_day", "min_advance_minutes", "max_advance_days")
# the only config columns an update may set to null
_NULLABLE_FIELDS = {"description", "valid_until", "meta"}


def _range_bounds(range_start: date, range_end: date, zone_id: str) -> tuple[datetime, datetime]:
    # padded by a day so DST-stretched slots at the edges are still seen
    lo = local_day_bounds(range_start, zone_id).start - timedelta(days=1)
    hi = local_day_bounds(range_end, zone_id).start + timedelta(days=1)
    return lo, hi


class AvailabilityService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = AvailabilityRepository(session)
        self.appts = AppointmentRepository(session)
        self.detector = ConflictDetector(session)

    # ---- Configs ----
    async def create_config(self, professional_id: uuid.UUID, payload: ConfigCreate) -> AvailabilityConfig:
        zone = resolve_zone(payload.timezone)
        data = payload.model_dump(exclude={"professional_id", "rules", "recurrence", "timezone"})
        obj = await self.repo.create_config(
            professional_id=professional_id,
            recurrence=payload.recurrence,
            timezone=zone.zone_id,
            **payload.rules.model_dump(),
            **data,
        )
        await OutboxService(self.session).enqueue(
            "AVAILABILITY_CONFIG_CREATED", "availability_config", obj.id,
            {"professional_id": str(professional_id), "kind": payload.recurrence.kind}
        )
        await self.session.commit()
        if zone.warning:
            logger.warning(f"Config {obj.id} stored with fallback zone: {zone.warning}")
        return obj

    async def get_config(self, config_id: uuid.UUID) -> AvailabilityConfig:
        obj = await self.repo.get_config(config_id)
        if not obj:
            raise NotFound("availability_config", config_id)
        return obj

    async def list_configs(self, professional_id: uuid.UUID, include_inactive: bool = False):
        return await self.repo.list_configs(professional_id, include_inactive=include_inactive)

    async def update_config(self, config_id: uuid.UUID, payload: ConfigUpdate) -> AvailabilityConfig:
        obj = await self.get_config(config_id)
        cleared = sorted(
            k for k in payload.model_fields_set - _NULLABLE_FIELDS
            if getattr(payload, k) is None
        )
        if cleared:
            raise InvalidConfiguration("Fields cannot be set to null", fields=cleared)
        data = payload.model_dump(exclude_unset=True, exclude={"rules", "recurrence"})
        if "timezone" in data:
            data["timezone"] = resolve_zone(data["timezone"]).zone_id
        if payload.recurrence is not None:
            obj.recurrence = payload.recurrence
        if payload.rules is not None:
            for k in _RULE_FIELDS:
                setattr(obj, k, getattr(payload.rules, k))
        for k, v in data.items():
            setattr(obj, k, v)

        if obj.end_time <= obj.start_time:
            raise InvalidConfiguration("end_time must be after start_time")
        if obj.valid_until is not None and obj.valid_until < obj.valid_from:
            raise InvalidConfiguration("valid_until must not be before valid_from")
        obj.version += 1
        await OutboxService(self.session).enqueue(
            "AVAILABILITY_CONFIG_UPDATED", "availability_config", obj.id, {"fields": sorted(payload.model_fields_set)}
        )
        await self.session.commit()
        return obj

    async def delete_config(self, config_id: uuid.UUID) -> AvailabilityConfig:
        # soft-disable; already generated slots stay as they are
        obj = await self.get_config(config_id)
        obj.is_active = False
        obj.version += 1
        await OutboxService(self.session).enqueue("AVAILABILITY_CONFIG_DISABLED", "availability_config", obj.id, {})
        await self.session.commit()
        return obj

    # ---- Generation ----
    async def generate_slots(
        self,
        config_id: uuid.UUID,
        range_start: date,
        range_end: date,
        force_regenerate: bool = False,
        *,
        now: datetime | None = None,
    ) -> GenerationResult:
        """
        Materialize slots for local dates ``[range_start, range_end)``.

        Without ``force_regenerate`` days that already hold slots of this config
        are skipped, so repeating a call adds nothing. With it, the config's
        still-available slots in range are replaced; held and booked slots are
        never touched.
        """
        now = now or utcnow()
        config = await self.get_config(config_id)
        if not config.is_active:
            raise InvalidConfiguration("Configuration is inactive", config_id=str(config_id))

        zone = resolve_zone(config.timezone)
        warnings = [str(zone.warning)] if zone.warning else []
        candidates = expand(config, range_start, range_end)

        deleted = 0
        populated: set[date] = set()
        if force_regenerate:
            deleted = await self.repo.delete_available_slots(config.id, range_start, range_end)
        else:
            populated = await self.repo.populated_dates(config.id, range_start, range_end)

        lo, hi = _range_bounds(range_start, range_end, zone.zone_id)
        appts = await self.detector.repo.active_appointments_overlapping(config.professional_id, lo, hi)
        blocks = await self.detector.repo.active_blocks_overlapping(config.professional_id, lo, hi)
        existing = await self.repo.slots_overlapping(config.professional_id, lo, hi)
        # booked and held slots survive a forced regeneration and keep their share of the cap
        kept_per_day = Counter(
            s.local_date for s in existing
            if s.config_id == config.id and s.status != "cancelled"
        )

        fresh = (c for c in candidates if c.local_date not in populated)
        new_slots = []
        survivors = filter_candidates(
            fresh, config.rules, now=now,
            blocked=blocks, appointments=appts, existing=existing, already_per_day=kept_per_day,
        )
        for c in survivors:
            if c.advisory:
                warnings.append(c.advisory)
            new_slots.append(Slot(
                config_id=config.id,
                professional_id=config.professional_id,
                start_time=c.start,
                end_time=c.end,
                local_date=c.local_date,
                local_start=c.local_start,
                local_end=c.local_end,
                timezone=zone.zone_id,
                status="available",
            ))

        professional_id = config.professional_id
        try:
            await self.repo.add_slots(new_slots)
            await OutboxService(self.session).enqueue(
                "SLOTS_GENERATED", "availability_config", config.id,
                {"range_start": range_start.isoformat(), "range_end": range_end.isoformat(), "generated": len(new_slots), "deleted": deleted}
            )
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.warning(f"Concurrent slot generation for professional {professional_id}; nothing written")
            raise ValidationFailed("Slots were generated concurrently for this professional; retry", config_id=str(config_id))

        logger.info(f"Generated {len(new_slots)} slots (deleted {deleted}) for config {config.id} over {range_start}..{range_end}")
        return GenerationResult(
            generated_count=len(new_slots),
            deleted_count=deleted,
            skipped_days=sorted(populated),
            warnings=warnings,
        )

    # ---- Slots ----
    async def query_slots(
        self,
        professional_id: uuid.UUID,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        status: str | None = None,
        config_id: uuid.UUID | None = None,
        display_zone: str | None = None,
        limit: int = 200,
        offset: int = 0,
    ) -> list[dict]:
        rows = await self.repo.list_slots(
            professional_id, start=start, end=end, status=status, config_id=config_id, limit=limit, offset=offset
        )
        zone = resolve_zone(display_zone).zone_id if display_zone else None
        out = []
        for s in rows:
            item = {c: getattr(s, c) for c in (
                "id", "config_id", "professional_id", "start_time", "end_time", "local_date", "local_start",
                "local_end", "timezone", "status", "booked_by", "booked_at", "held_by", "hold_expires_at", "meta",
            )}
            if zone:
                item["display_timezone"] = zone
                item["display_start"] = to_local(s.start_time, zone)
                item["display_end"] = to_local(s.end_time, zone)
            out.append(item)
        return out

    async def get_slot(self, slot_id: uuid.UUID) -> Slot:
        obj = await self.repo.get_slot(slot_id)
        if not obj:
            raise NotFound("slot", slot_id)
        return obj

    async def update_slot(self, slot_id: uuid.UUID, payload: SlotUpdate) -> Slot:
        """Admin edit: metadata, or toggling between available and cancelled."""
        obj = await self.repo.get_slot_for_update(slot_id)
        if not obj:
            raise NotFound("slot", slot_id)
        if payload.status and payload.status != obj.status:
            if obj.status not in {"available", "cancelled"}:
                raise InvalidTransition("slot", obj.status, payload.status)
            obj.status = payload.status
        if "meta" in payload.model_fields_set:
            obj.meta = payload.meta
        obj.version += 1
        await self.session.commit()
        return obj

    # ---- Blocked periods ----
    async def create_block(self, professional_id: uuid.UUID, payload: BlockCreate) -> BlockedPeriod:
        span = Interval(payload.start_time, payload.end_time)
        if not payload.allow_override:
            appts = await self.detector.repo.active_appointments_overlapping(professional_id, span.start, span.end)
            clash = find_conflicts(span, appts, [])
            if clash.conflict:
                raise ValidationFailed(
                    "Blocked period overlaps existing appointments; pass allow_override to force",
                    conflicts=clash.describe(),
                )
        obj = await self.repo.create_block(
            professional_id=professional_id,
            **payload.model_dump(exclude={"professional_id", "allow_override"}),
        )
        await OutboxService(self.session).enqueue(
            "BLOCKED_PERIOD_CREATED", "blocked_period", obj.id,
            {"professional_id": str(professional_id), "start": span.start.isoformat(), "end": span.end.isoformat(), "override": payload.allow_override}
        )
        await self.session.commit()
        return obj

    async def list_blocks(self, professional_id: uuid.UUID, start: datetime | None = None, end: datetime | None = None, include_inactive: bool = False):
        return await self.repo.list_blocks(professional_id, start=start, end=end, include_inactive=include_inactive)

    async def deactivate_block(self, block_id: uuid.UUID) -> BlockedPeriod:
        obj = await self.repo.get_block(block_id)
        if not obj:
            raise NotFound("blocked_period", block_id)
        obj.is_active = False
        obj.version += 1
        await OutboxService(self.session).enqueue("BLOCKED_PERIOD_REMOVED", "blocked_period", obj.id, {})
        await self.session.commit()
        return obj

    # ---- Stats ----
    async def stats(self, professional_id: uuid.UUID, start: datetime | None = None, end: datetime | None = None) -> dict:
        counts = await self.repo.count_slots_by_status(professional_id, start, end)
        blocks = await self.repo.list_blocks(professional_id, start=start, end=end)
        appointments = await self.appts.count_active(professional_id, start, end)
        total = sum(counts.values())
        booked = counts.get("booked", 0)
        offered = total - counts.get("cancelled", 0)
        return {
            "total_slots": total,
            "available_slots": counts.get("available", 0),
            "held_slots": counts.get("held", 0),
            "booked_slots": booked,
            "cancelled_slots": counts.get("cancelled", 0),
            "active_blocks": len(blocks),
            "appointments": appointments,
            "utilization_rate": round(booked / offered * 100, 2) if offered else 0.0,
        }
