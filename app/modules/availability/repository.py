import uuid
from datetime import date, datetime
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, and_, or_, func
from app.modules.availability.models import AvailabilityConfig, Slot, BlockedPeriod


def bookable_clause(now: datetime, hold_token: str | None = None):
    """SQL form of "this slot can be claimed right now"."""
    cond = [
        Slot.status == "available",
        and_(Slot.status == "held", Slot.hold_expires_at <= now),
    ]
    if hold_token:
        cond.append(and_(Slot.status == "held", Slot.hold_token == hold_token, Slot.hold_expires_at > now))
    return and_(Slot.deleted_at.is_(None), or_(*cond))


def is_bookable(slot: Slot, now: datetime, hold_token: str | None = None) -> bool:
    """Python mirror of bookable_clause for a row already in hand."""
    if slot.deleted_at is not None:
        return False
    if slot.status == "available":
        return True
    if slot.status != "held" or slot.hold_expires_at is None:
        return False
    if slot.hold_expires_at <= now:
        return True
    return hold_token is not None and slot.hold_token == hold_token


_CLEAR_HOLD = {"held_by": None, "hold_token": None, "hold_expires_at": None}


class AvailabilityRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # configs
    async def create_config(self, **data) -> AvailabilityConfig:
        obj = AvailabilityConfig(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get_config(self, config_id: uuid.UUID) -> AvailabilityConfig | None:
        res = await self.session.execute(select(AvailabilityConfig).where(
            AvailabilityConfig.id == config_id,
            AvailabilityConfig.deleted_at.is_(None),
        ))
        return res.scalar_one_or_none()

    async def list_configs(self, professional_id: uuid.UUID, *, include_inactive: bool = False) -> Sequence[AvailabilityConfig]:
        cond = [AvailabilityConfig.professional_id == professional_id, AvailabilityConfig.deleted_at.is_(None)]
        if not include_inactive:
            cond.append(AvailabilityConfig.is_active.is_(True))
        res = await self.session.execute(select(AvailabilityConfig).where(and_(*cond)).order_by(AvailabilityConfig.created_at.asc()))
        return res.scalars().all()

    # slots
    async def get_slot(self, slot_id: uuid.UUID) -> Slot | None:
        res = await self.session.execute(select(Slot).where(Slot.id == slot_id, Slot.deleted_at.is_(None)))
        return res.scalar_one_or_none()

    async def get_slot_for_update(self, slot_id: uuid.UUID) -> Slot | None:
        # SELECT ... FOR UPDATE; sqlite ignores the lock and relies on the CAS below
        q = select(Slot).where(Slot.id == slot_id, Slot.deleted_at.is_(None)).with_for_update()
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_slots(
        self,
        professional_id: uuid.UUID,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        status: str | None = None,
        config_id: uuid.UUID | None = None,
        limit: int = 200,
        offset: int = 0,
    ) -> Sequence[Slot]:
        cond = [Slot.professional_id == professional_id, Slot.deleted_at.is_(None)]
        if start:
            cond.append(Slot.end_time > start)
        if end:
            cond.append(Slot.start_time < end)
        if status:
            cond.append(Slot.status == status)
        if config_id:
            cond.append(Slot.config_id == config_id)
        q = select(Slot).where(and_(*cond)).order_by(Slot.start_time.asc()).limit(limit).offset(offset)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def slots_overlapping(self, professional_id: uuid.UUID, start: datetime, end: datetime) -> Sequence[Slot]:
        # every status, cancelled included: a cancelled slot still owns its start time
        res = await self.session.execute(select(Slot).where(
            Slot.professional_id == professional_id,
            Slot.deleted_at.is_(None),
            Slot.start_time < end,
            Slot.end_time > start,
        ))
        return res.scalars().all()

    async def populated_dates(self, config_id: uuid.UUID, range_start: date, range_end: date) -> set[date]:
        res = await self.session.execute(select(Slot.local_date).distinct().where(
            Slot.config_id == config_id,
            Slot.deleted_at.is_(None),
            Slot.local_date >= range_start,
            Slot.local_date < range_end,
        ))
        return set(res.scalars().all())

    async def delete_available_slots(self, config_id: uuid.UUID, range_start: date, range_end: date) -> int:
        # booked and held slots are never touched by regeneration
        stmt = delete(Slot).where(
            Slot.config_id == config_id,
            Slot.status == "available",
            Slot.local_date >= range_start,
            Slot.local_date < range_end,
        ).execution_options(synchronize_session=False)
        res = await self.session.execute(stmt)
        return res.rowcount or 0

    async def add_slots(self, slots: list[Slot]):
        self.session.add_all(slots)
        await self.session.flush()

    async def claim_slot(self, slot_id: uuid.UUID, requester_id: uuid.UUID, now: datetime, hold_token: str | None = None) -> bool:
        """Compare-and-set to booked. False when another writer got there first."""
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, bookable_clause(now, hold_token))
            .values(status="booked", booked_by=requester_id, booked_at=now, version=Slot.version + 1, **_CLEAR_HOLD)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(stmt)
        return res.rowcount == 1

    async def hold_slot(self, slot_id: uuid.UUID, requester_id: uuid.UUID, token: str, expires_at: datetime, now: datetime) -> bool:
        # a live lease (anyone's) blocks a new hold
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, bookable_clause(now))
            .values(status="held", held_by=requester_id, hold_token=token, hold_expires_at=expires_at, version=Slot.version + 1)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(stmt)
        return res.rowcount == 1

    async def release_hold(self, slot_id: uuid.UUID, token: str) -> bool:
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, Slot.status == "held", Slot.hold_token == token)
            .values(status="available", version=Slot.version + 1, **_CLEAR_HOLD)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(stmt)
        return res.rowcount == 1

    async def release_booked(self, slot_id: uuid.UUID) -> bool:
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, Slot.status == "booked")
            .values(status="available", booked_by=None, booked_at=None, version=Slot.version + 1)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(stmt)
        return res.rowcount == 1

    async def count_slots_by_status(self, professional_id: uuid.UUID, start: datetime | None, end: datetime | None) -> dict[str, int]:
        cond = [Slot.professional_id == professional_id, Slot.deleted_at.is_(None)]
        if start:
            cond.append(Slot.start_time >= start)
        if end:
            cond.append(Slot.start_time < end)
        res = await self.session.execute(select(Slot.status, func.count()).where(and_(*cond)).group_by(Slot.status))
        return {status: count for status, count in res.all()}

    # blocked periods
    async def create_block(self, **data) -> BlockedPeriod:
        obj = BlockedPeriod(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get_block(self, block_id: uuid.UUID) -> BlockedPeriod | None:
        res = await self.session.execute(select(BlockedPeriod).where(
            BlockedPeriod.id == block_id, BlockedPeriod.deleted_at.is_(None)
        ))
        return res.scalar_one_or_none()

    async def list_blocks(self, professional_id: uuid.UUID, *, start: datetime | None = None, end: datetime | None = None, include_inactive: bool = False) -> Sequence[BlockedPeriod]:
        cond = [BlockedPeriod.professional_id == professional_id, BlockedPeriod.deleted_at.is_(None)]
        if not include_inactive:
            cond.append(BlockedPeriod.is_active.is_(True))
        if start:
            cond.append(BlockedPeriod.end_time > start)
        if end:
            cond.append(BlockedPeriod.start_time < end)
        res = await self.session.execute(select(BlockedPeriod).where(and_(*cond)).order_by(BlockedPeriod.start_time.asc()))
        return res.scalars().all()
