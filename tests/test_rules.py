from datetime import date, datetime, time, timedelta, timezone
from types import SimpleNamespace

from app.core.intervals import Interval
from app.modules.availability.recurrence import Candidate, DailyRule, expand
from app.modules.availability.rules import filter_candidates
from app.modules.availability.schemas import BusinessRules
from app.modules.conflicts.detector import find_conflicts, overlaps

NOW = datetime(2027, 1, 1, tzinfo=timezone.utc)
OPEN_RULES = BusinessRules(buffer_minutes=0, max_slots_per_day=8, min_advance_minutes=0, max_advance_days=365)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def candidate(start: datetime, minutes: int = 60) -> Candidate:
    end = start + timedelta(minutes=minutes)
    return Candidate(start, end, start.date(), f'{start:%H:%M}', f'{end:%H:%M}')


def appointment(start: datetime, end: datetime, status: str = 'scheduled') -> SimpleNamespace:
    return SimpleNamespace(scheduled_start=start, scheduled_end=end, status=status)


def block(start: datetime, end: datetime, is_active: bool = True) -> SimpleNamespace:
    return SimpleNamespace(start_time=start, end_time=end, is_active=is_active)


def day_of_slots(day: date) -> list[Candidate]:
    config = SimpleNamespace(
        id=None, recurrence=DailyRule(), start_time=time(9, 0), end_time=time(17, 0), duration_minutes=60,
        buffer_minutes=0, timezone='UTC', dst_handling='auto', valid_from=date(2027, 1, 1), valid_until=None,
    )
    return list(expand(config, day, day + timedelta(days=1)))


def test_overlaps_is_half_open() -> None:
    a = Interval(utc(2027, 1, 4, 9), utc(2027, 1, 4, 10))

    assert overlaps(a, Interval(utc(2027, 1, 4, 9, 30), utc(2027, 1, 4, 10, 30)))
    assert overlaps(a, Interval(utc(2027, 1, 4, 8), utc(2027, 1, 4, 11)))
    assert not overlaps(a, Interval(utc(2027, 1, 4, 10), utc(2027, 1, 4, 11)))
    assert not overlaps(a, Interval(utc(2027, 1, 4, 8), utc(2027, 1, 4, 9)))


def test_find_conflicts_ignores_cancelled_and_inactive() -> None:
    span = Interval(utc(2027, 1, 4, 9), utc(2027, 1, 4, 10))
    live = appointment(utc(2027, 1, 4, 9, 30), utc(2027, 1, 4, 10, 30))

    result = find_conflicts(
        span,
        [live, appointment(utc(2027, 1, 4, 9), utc(2027, 1, 4, 10), status='cancelled')],
        [block(utc(2027, 1, 4, 8), utc(2027, 1, 4, 12), is_active=False)],
    )

    assert result.conflict
    assert result.conflicting_appointments == [live]
    assert result.conflicting_blocks == []


def test_find_conflicts_reports_blocks() -> None:
    span = Interval(utc(2027, 1, 4, 9), utc(2027, 1, 4, 10))
    vacation = block(utc(2027, 1, 4), utc(2027, 1, 5))

    result = find_conflicts(span, [], [vacation])

    assert result.conflicting_blocks == [vacation]


def test_candidate_beyond_max_advance_is_dropped() -> None:
    rules = OPEN_RULES.model_copy(update={'max_advance_days': 30})
    near = candidate(NOW + timedelta(days=10))
    far = candidate(NOW + timedelta(days=40))

    assert filter_candidates([near, far], rules, now=NOW) == [near]


def test_candidate_inside_min_advance_is_dropped() -> None:
    rules = OPEN_RULES.model_copy(update={'min_advance_minutes': 24 * 60})
    soon = candidate(NOW + timedelta(hours=2))
    later = candidate(NOW + timedelta(hours=30))

    assert filter_candidates([soon, later], rules, now=NOW) == [later]


def test_blocked_and_booked_times_are_dropped() -> None:
    slots = day_of_slots(date(2027, 1, 4))
    lunch = block(utc(2027, 1, 4, 12), utc(2027, 1, 4, 13))
    booked = appointment(utc(2027, 1, 4, 14, 30), utc(2027, 1, 4, 15))
    freed = appointment(utc(2027, 1, 4, 9), utc(2027, 1, 4, 10), status='cancelled')

    kept = filter_candidates(slots, OPEN_RULES, now=NOW, blocked=[lunch], appointments=[booked, freed])

    assert [c.local_start for c in kept] == ['09:00', '10:00', '11:00', '13:00', '15:00', '16:00']


def test_per_day_cap_keeps_earliest() -> None:
    rules = OPEN_RULES.model_copy(update={'max_slots_per_day': 3})
    slots = day_of_slots(date(2027, 1, 4)) + day_of_slots(date(2027, 1, 5))

    kept = filter_candidates(reversed(slots), rules, now=NOW)

    assert [(c.local_date.day, c.local_start) for c in kept] == [
        (4, '09:00'), (4, '10:00'), (4, '11:00'),
        (5, '09:00'), (5, '10:00'), (5, '11:00'),
    ]


def test_cap_counts_only_survivors_of_earlier_steps() -> None:
    rules = OPEN_RULES.model_copy(update={'max_slots_per_day': 2})
    morning_off = block(utc(2027, 1, 4, 9), utc(2027, 1, 4, 11))

    kept = filter_candidates(day_of_slots(date(2027, 1, 4)), rules, now=NOW, blocked=[morning_off])

    assert [c.local_start for c in kept] == ['11:00', '12:00']


def test_existing_slots_are_dropped_and_fill_the_cap() -> None:
    rules = OPEN_RULES.model_copy(update={'max_slots_per_day': 4})
    booked = [
        SimpleNamespace(start_time=utc(2027, 1, 4, 9), end_time=utc(2027, 1, 4, 10)),
        SimpleNamespace(start_time=utc(2027, 1, 4, 10), end_time=utc(2027, 1, 4, 11)),
    ]

    kept = filter_candidates(
        day_of_slots(date(2027, 1, 4)) + day_of_slots(date(2027, 1, 5)), rules, now=NOW,
        existing=booked, already_per_day={date(2027, 1, 4): 2},
    )

    assert [(c.local_date.day, c.local_start) for c in kept] == [
        (4, '11:00'), (4, '12:00'),
        (5, '09:00'), (5, '10:00'), (5, '11:00'), (5, '12:00'),
    ]
