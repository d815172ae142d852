import asyncio
import uuid
from datetime import date, datetime, time, timezone

import pytest
from sqlalchemy import select

from app.core.errors import InvalidConfiguration, NotFound, RangeTooLarge, ValidationFailed
from app.modules.appointments.schemas import AppointmentCreate
from app.modules.appointments.service import AppointmentService
from app.modules.availability.recurrence import WeeklyRule
from app.modules.availability.schemas import BlockCreate, BusinessRules, ConfigUpdate
from app.modules.availability.service import AvailabilityService
from app.modules.events.outbox import EventOutbox


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


async def test_generate_persists_one_day_of_slots(make_config, generate, list_slots) -> None:
    config = await make_config()

    result = await generate(config.id, date(2027, 1, 4), date(2027, 1, 5))

    assert result.generated_count == 8
    assert result.deleted_count == 0
    slots = await list_slots()
    assert [s.local_start for s in slots] == ['09:00', '10:00', '11:00', '12:00', '13:00', '14:00', '15:00', '16:00']
    assert all(s.status == 'available' and s.config_id == config.id for s in slots)
    assert slots[0].start_time == utc(2027, 1, 4, 9)


async def test_generate_twice_adds_nothing(make_config, generate, list_slots) -> None:
    config = await make_config()
    await generate(config.id, date(2027, 1, 4), date(2027, 1, 6))

    again = await generate(config.id, date(2027, 1, 4), date(2027, 1, 7))

    assert again.generated_count == 8
    assert again.skipped_days == [date(2027, 1, 4), date(2027, 1, 5)]
    assert len(await list_slots()) == 24


async def test_force_regenerate_replaces_only_available_slots(make_config, generate, list_slots, session_factory) -> None:
    config = await make_config()
    await generate(config.id, date(2027, 1, 4), date(2027, 1, 5))
    first = (await list_slots())[0]
    async with session_factory() as s:
        await AppointmentService(s).book_slot(first.id, uuid.uuid4(), now=utc(2027, 1, 1))
    async with session_factory() as s:
        await AvailabilityService(s).update_config(config.id, ConfigUpdate(end_time=time(13, 0)))

    result = await generate(config.id, date(2027, 1, 4), date(2027, 1, 5), force_regenerate=True)

    assert result.deleted_count == 7
    assert result.generated_count == 3
    slots = await list_slots()
    assert [(s.local_start, s.status) for s in slots] == [
        ('09:00', 'booked'), ('10:00', 'available'), ('11:00', 'available'), ('12:00', 'available'),
    ]
    assert slots[0].id == first.id


async def test_force_regenerate_counts_booked_slots_toward_daily_cap(make_config, generate, list_slots, session_factory) -> None:
    config = await make_config(
        rules=BusinessRules(buffer_minutes=0, max_slots_per_day=4, min_advance_minutes=0, max_advance_days=365),
    )
    await generate(config.id, date(2027, 1, 4), date(2027, 1, 5))
    first, second = (await list_slots())[:2]
    async with session_factory() as s:
        await AppointmentService(s).book_slot(first.id, uuid.uuid4(), now=utc(2027, 1, 1))
    async with session_factory() as s:
        await AppointmentService(s).book_slot(second.id, uuid.uuid4(), now=utc(2027, 1, 1))

    result = await generate(config.id, date(2027, 1, 4), date(2027, 1, 5), force_regenerate=True)

    assert result.deleted_count == 2
    assert result.generated_count == 2
    assert [(s.local_start, s.status) for s in await list_slots()] == [
        ('09:00', 'booked'), ('10:00', 'booked'), ('11:00', 'available'), ('12:00', 'available'),
    ]


async def test_concurrent_generation_writes_each_slot_once(make_config, generate, list_slots) -> None:
    config = await make_config()

    results = await asyncio.gather(
        *(generate(config.id, date(2027, 1, 4), date(2027, 1, 10)) for _ in range(4)),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert all(isinstance(f, ValidationFailed) for f in failures)
    # a late runner may instead find every day populated and add nothing
    produced = [r.generated_count for r in results if not isinstance(r, Exception) and r.generated_count]
    assert produced == [48]
    slots = await list_slots()
    assert len(slots) == 48
    assert len({s.start_time for s in slots}) == 48


async def test_update_rejects_null_for_required_fields(make_config, session_factory) -> None:
    config = await make_config(description='walk-ins welcome')

    async with session_factory() as s:
        with pytest.raises(InvalidConfiguration) as exc:
            await AvailabilityService(s).update_config(config.id, ConfigUpdate(start_time=None, title='Renamed'))
    assert exc.value.details['fields'] == ['start_time']

    async with session_factory() as s:
        stored = await AvailabilityService(s).get_config(config.id)
        assert (stored.title, stored.start_time, stored.version) == ('Consultations', time(9, 0), config.version)

        cleared = await AvailabilityService(s).update_config(config.id, ConfigUpdate(description=None))
    assert cleared.description is None
    assert cleared.start_time == time(9, 0)


async def test_generation_skips_blocked_and_booked_time(make_config, generate, list_slots, session_factory, professional_id) -> None:
    config = await make_config()
    async with session_factory() as s:
        await AvailabilityService(s).create_block(
            professional_id, BlockCreate(start_time=utc(2027, 1, 4, 12), end_time=utc(2027, 1, 4, 14), reason='training'),
        )
    async with session_factory() as s:
        await AppointmentService(s).create_appointment(uuid.uuid4(), AppointmentCreate(
            professional_id=professional_id, scheduled_start=utc(2027, 1, 4, 15, 30), scheduled_end=utc(2027, 1, 4, 16),
        ))

    result = await generate(config.id, date(2027, 1, 4), date(2027, 1, 5))

    assert result.generated_count == 5
    assert [s.local_start for s in await list_slots()] == ['09:00', '10:00', '11:00', '14:00', '16:00']


async def test_generation_applies_daily_cap_and_weekly_pattern(make_config, generate, list_slots) -> None:
    config = await make_config(
        recurrence=WeeklyRule(weekdays={1, 3}),
        rules=BusinessRules(buffer_minutes=0, max_slots_per_day=2, min_advance_minutes=0, max_advance_days=365),
    )

    result = await generate(config.id, date(2027, 1, 4), date(2027, 1, 11))

    assert result.generated_count == 4
    slots = await list_slots()
    assert [(s.local_date, s.local_start) for s in slots] == [
        (date(2027, 1, 4), '09:00'), (date(2027, 1, 4), '10:00'),
        (date(2027, 1, 6), '09:00'), (date(2027, 1, 6), '10:00'),
    ]


async def test_two_configs_never_produce_overlapping_slots(make_config, generate, list_slots) -> None:
    morning = await make_config(end_time=time(12, 0))
    # same professional, half-hour offset grid over the same morning
    shifted = await make_config(start_time=time(9, 30), end_time=time(12, 30))

    await generate(morning.id, date(2027, 1, 4), date(2027, 1, 5))
    result = await generate(shifted.id, date(2027, 1, 4), date(2027, 1, 5))

    assert result.generated_count == 0
    slots = await list_slots()
    for a, b in zip(slots, slots[1:]):
        assert a.end_time <= b.start_time


async def test_dst_day_generation_reports_advisory(make_config, generate, list_slots) -> None:
    config = await make_config(
        timezone='America/New_York', start_time=time(1, 0), end_time=time(3, 0), duration_minutes=120,
        valid_from=date(2027, 3, 1),
    )

    result = await generate(config.id, date(2027, 3, 14), date(2027, 3, 15))

    assert result.generated_count == 1
    assert result.warnings
    [slot] = await list_slots()
    assert (slot.start_time, slot.end_time) == (utc(2027, 3, 14, 6), utc(2027, 3, 14, 8))


async def test_unknown_zone_is_stored_as_default_zone(make_config, generate) -> None:
    config = await make_config(timezone='Atlantis/Capital')

    result = await generate(config.id, date(2027, 1, 4), date(2027, 1, 5))

    assert config.timezone == 'America/Buenos_Aires'
    assert result.generated_count == 8


async def test_range_too_large_is_rejected_before_writing(make_config, generate, list_slots) -> None:
    config = await make_config()

    with pytest.raises(RangeTooLarge):
        await generate(config.id, date(2027, 1, 1), date(2027, 3, 1))

    assert await list_slots() == []


async def test_inactive_or_missing_config_cannot_generate(make_config, generate, session_factory) -> None:
    config = await make_config()
    async with session_factory() as s:
        await AvailabilityService(s).delete_config(config.id)

    with pytest.raises(InvalidConfiguration):
        await generate(config.id, date(2027, 1, 4), date(2027, 1, 5))
    with pytest.raises(NotFound):
        await generate(uuid.uuid4(), date(2027, 1, 4), date(2027, 1, 5))


async def test_generation_records_an_outbox_event(make_config, generate, session_factory) -> None:
    config = await make_config()

    await generate(config.id, date(2027, 1, 4), date(2027, 1, 5))

    async with session_factory() as s:
        rows = (await s.execute(select(EventOutbox).where(EventOutbox.event_type == 'SLOTS_GENERATED'))).scalars().all()
    assert len(rows) == 1
    assert rows[0].subject_id == str(config.id)
    assert rows[0].payload['generated'] == 8
    assert rows[0].status == 'pending'


async def test_stats_count_slots_by_status(make_config, generate, list_slots, session_factory, professional_id) -> None:
    config = await make_config(end_time=time(13, 0))
    await generate(config.id, date(2027, 1, 4), date(2027, 1, 5))
    slots = await list_slots()
    async with session_factory() as s:
        await AppointmentService(s).book_slot(slots[0].id, uuid.uuid4(), now=utc(2027, 1, 1))

    async with session_factory() as s:
        stats = await AvailabilityService(s).stats(professional_id)

    assert stats['total_slots'] == 4
    assert stats['booked_slots'] == 1
    assert stats['available_slots'] == 3
    assert stats['appointments'] == 1
    assert stats['utilization_rate'] == 25.0
