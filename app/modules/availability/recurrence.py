"""
Recurrence rules and their expansion into candidate slots.

A config's recurrence is one of a closed set of variants, tagged by ``kind``:

    none     one slot spanning the window on ``valid_from``
    daily    every local calendar day
    weekly   selected ISO weekdays (1=Mon .. 7=Sun)
    monthly  one day of month (or the last day); short months are skipped

Every variant carries ``include_dates`` / ``exclude_dates``. An included date
always expands, even when excluded or skipped by the pattern.

``expand`` validates its inputs up front and hands back a lazy iterator of
``Candidate`` slots in UTC, tiled over each day's local window.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Annotated, Iterator, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from app.core.config import settings
from app.core.errors import InvalidConfiguration, RangeTooLarge
from app.core.intervals import Interval
from app.modules.timezones.service import adjust_for_dst_crossing, resolve_zone, to_absolute, to_local

log = logging.getLogger(__name__)


class RecurrenceRule(BaseModel):
    include_dates: frozenset[date] = frozenset()
    exclude_dates: frozenset[date] = frozenset()


class OneOffRule(RecurrenceRule):
    kind: Literal["none"] = "none"


class DailyRule(RecurrenceRule):
    kind: Literal["daily"] = "daily"


class WeeklyRule(RecurrenceRule):
    kind: Literal["weekly"] = "weekly"
    weekdays: frozenset[int] = Field(min_length=1)

    @field_validator("weekdays")
    @classmethod
    def _iso_weekdays(cls, v: frozenset[int]):
        bad = sorted(d for d in v if not 1 <= d <= 7)
        if bad:
            raise ValueError(f"weekdays must be ISO weekdays 1..7, got {bad}")
        return v


class MonthlyRule(RecurrenceRule):
    kind: Literal["monthly"] = "monthly"
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    last_day: bool = False

    @model_validator(mode="after")
    def _one_anchor(self):
        if self.last_day == (self.day_of_month is not None):
            raise ValueError("monthly recurrence needs exactly one of day_of_month or last_day")
        return self


Recurrence = Annotated[
    Union[OneOffRule, DailyRule, WeeklyRule, MonthlyRule],
    Field(discriminator="kind"),
]
RecurrenceAdapter: TypeAdapter[Recurrence] = TypeAdapter(Recurrence)


def parse_recurrence(value) -> RecurrenceRule:
    if isinstance(value, RecurrenceRule):
        return value
    try:
        return RecurrenceAdapter.validate_python(value)
    except ValueError as e:
        raise InvalidConfiguration(f"Malformed recurrence: {e}") from e


@dataclass(frozen=True)
class Candidate:
    """A generated slot before it is persisted."""
    start: datetime
    end: datetime
    local_date: date
    local_start: str
    local_end: str
    advisory: str | None = None

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)


def occurs_on(rule: RecurrenceRule, day: date, anchor: date) -> bool:
    """Whether ``rule`` puts a window on local ``day``; ``anchor`` is the config's valid_from."""
    if day in rule.include_dates:
        return True
    if day in rule.exclude_dates:
        return False
    match rule:
        case OneOffRule():
            return day == anchor
        case DailyRule():
            return True
        case WeeklyRule(weekdays=weekdays):
            return day.isoweekday() in weekdays
        case MonthlyRule(last_day=True):
            return day.day == calendar.monthrange(day.year, day.month)[1]
        case MonthlyRule(day_of_month=dom):
            return day.day == dom
        case _:
            raise InvalidConfiguration(f"Unsupported recurrence {rule!r}")


def _in_validity(config, day: date) -> bool:
    if day < config.valid_from:
        return False
    return config.valid_until is None or day <= config.valid_until


def _tile(config, zone_id: str, day: date, duration: timedelta, step: timedelta) -> Iterator[Candidate]:
    dst_mode = config.dst_handling or "auto"
    window_end = datetime.combine(day, config.end_time)

    cur = datetime.combine(day, config.start_time)
    last_end: datetime | None = None
    while cur + duration <= window_end:
        start = to_absolute(cur, zone_id, dst_mode)
        end = to_absolute(cur + duration, zone_id, dst_mode)
        advisory = None
        if end <= start:
            # both ends fell into the same spring-forward gap
            end = start + duration
            advisory = f"Slot at {cur:%H:%M} on {day} falls in a DST gap; moved to {to_local(start, zone_id):%H:%M}"
        else:
            adj = adjust_for_dst_crossing(Interval(start, end), zone_id, duration)
            end, advisory = adj.interval.end, adj.advisory

        # a shifted slot may swallow the next wall-clock one
        if last_end is None or start >= last_end:
            yield Candidate(
                start=start,
                end=end,
                local_date=day,
                local_start=to_local(start, zone_id).strftime("%H:%M"),
                local_end=to_local(end, zone_id).strftime("%H:%M"),
                advisory=advisory,
            )
            last_end = end
        cur += step


def _expand(config, zone_id: str, range_start: date, range_end: date) -> Iterator[Candidate]:
    rule = parse_recurrence(config.recurrence)
    if isinstance(rule, OneOffRule):
        # the whole window is one slot
        duration = datetime.combine(date.min, config.end_time) - datetime.combine(date.min, config.start_time)
        step = duration
    else:
        duration = timedelta(minutes=config.duration_minutes)
        step = duration + timedelta(minutes=config.buffer_minutes or 0)

    day = range_start
    while day < range_end:
        if _in_validity(config, day) and occurs_on(rule, day, config.valid_from):
            yield from _tile(config, zone_id, day, duration, step)
        day += timedelta(days=1)


def expand(config, range_start: date, range_end: date, *, max_span_days: int | None = None) -> Iterator[Candidate]:
    """
    Expand ``config`` over local dates ``[range_start, range_end)``.

    ``config`` is an AvailabilityConfig (or anything with the same attributes).
    Range and window problems raise here, before iteration starts; the returned
    iterator is lazy and calling ``expand`` again with the same inputs yields
    the same candidates.
    """
    max_days = max_span_days or settings.MAX_GENERATION_RANGE_DAYS
    if range_end <= range_start:
        raise InvalidConfiguration(
            "range_end must be after range_start",
            range_start=range_start.isoformat(),
            range_end=range_end.isoformat(),
        )
    span = (range_end - range_start).days
    if span > max_days:
        raise RangeTooLarge(span, max_days)
    if config.end_time <= config.start_time:
        raise InvalidConfiguration("Window end_time must be after start_time")
    if config.duration_minutes <= 0:
        raise InvalidConfiguration("duration_minutes must be positive")
    if (config.buffer_minutes or 0) < 0:
        raise InvalidConfiguration("buffer_minutes cannot be negative")

    zone = resolve_zone(config.timezone)
    log.debug(f"Expanding config {getattr(config, 'id', None)} over {range_start}..{range_end} in {zone.zone_id}")
    return _expand(config, zone.zone_id, range_start, range_end)
