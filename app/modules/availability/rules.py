"""
Business rule filter for generated candidates.

Applied in a fixed order:
1. advance window: now + min_advance_minutes <= start <= now + max_advance_days
2. active blocked periods
3. non-cancelled appointments
4. slots already on the calendar (any status)
5. per local day cap, earliest first; ``already_per_day`` counts slots the
   day already holds

Dropped candidates are not reported.
"""

from collections import Counter
from datetime import date, datetime, timedelta
from typing import Iterable, Mapping, Sequence

from app.core.intervals import Interval
from app.modules.availability.recurrence import Candidate
from app.modules.availability.schemas import BusinessRules
from app.modules.conflicts.detector import appointment_interval, block_interval, overlaps


def filter_candidates(
    candidates: Iterable[Candidate],
    rules: BusinessRules,
    *,
    now: datetime,
    blocked: Sequence = (),
    appointments: Sequence = (),
    existing: Sequence = (),
    already_per_day: Mapping[date, int] | None = None,
) -> list[Candidate]:
    earliest = now + timedelta(minutes=rules.min_advance_minutes)
    latest = now + timedelta(days=rules.max_advance_days)
    blocks = [block_interval(b) for b in blocked if b.is_active]
    busy = [appointment_interval(a) for a in appointments if a.status != "cancelled"]
    occupied = [Interval(s.start_time, s.end_time) for s in existing]

    kept = []
    for c in candidates:
        if not earliest <= c.start <= latest:
            continue
        span = c.interval
        if any(overlaps(span, b) for b in blocks):
            continue
        if any(overlaps(span, a) for a in busy):
            continue
        if any(overlaps(span, s) for s in occupied):
            continue
        kept.append(c)

    kept.sort(key=lambda c: c.start)
    per_day: Counter = Counter(already_per_day or {})
    out = []
    for c in kept:
        if per_day[c.local_date] >= rules.max_slots_per_day:
            continue
        per_day[c.local_date] += 1
        out.append(c)
    return out
