"""
Time & Zone utilities

Pure functions for moving between a professional's wall-clock time and
absolute instants:
- zone resolution with alias lookup and fallback (never fails hard)
- local <-> absolute conversion with explicit DST gap/overlap policy
- DST transition listing and duration-preserving interval adjustment
- business-hour checks

Everything here is computation over pytz tables; nothing blocks or touches
the store.
"""

import bisect
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Literal

import pytz

from app.core.config import settings
from app.core.errors import TimezoneUnrecognized
from app.core.intervals import Interval

log = logging.getLogger(__name__)

DSTMode = Literal["auto", "fixed"]

# Common spellings people type instead of IANA ids
ZONE_ALIASES = {
    "Buenos Aires": "America/Buenos_Aires",
    "Buenos_Aires": "America/Buenos_Aires",
    "Argentina": "America/Buenos_Aires",
    "Santiago": "America/Santiago",
    "Chile": "America/Santiago",
    "Lima": "America/Lima",
    "Peru": "America/Lima",
    "Bogota": "America/Bogota",
    "Colombia": "America/Bogota",
    "Mexico City": "America/Mexico_City",
    "Mexico": "America/Mexico_City",
    "New York": "America/New_York",
    "NYC": "America/New_York",
    "Los Angeles": "America/Los_Angeles",
    "LA": "America/Los_Angeles",
    "Madrid": "Europe/Madrid",
    "Spain": "Europe/Madrid",
    "London": "Europe/London",
    "UK": "Europe/London",
    "Tokyo": "Asia/Tokyo",
    "Japan": "Asia/Tokyo",
    "Sydney": "Australia/Sydney",
    "Australia": "Australia/Sydney",
}


@dataclass(frozen=True)
class ZoneResolution:
    zone_id: str
    tz: pytz.BaseTzInfo
    warning: TimezoneUnrecognized | None = None


@dataclass(frozen=True)
class Transition:
    """A UTC instant at which the zone's offset changes."""
    at: datetime
    offset_before: timedelta
    offset_after: timedelta

    @property
    def delta(self) -> timedelta:
        return self.offset_after - self.offset_before

    @property
    def starts_dst(self) -> bool:
        return self.delta > timedelta(0)


@dataclass(frozen=True)
class DSTAdjustment:
    interval: Interval
    advisory: str | None = None

    @property
    def adjusted(self) -> bool:
        return self.advisory is not None


@dataclass(frozen=True)
class BusinessHours:
    start: time = time(8, 0)
    end: time = time(20, 0)
    working_days: frozenset[int] = frozenset({1, 2, 3, 4, 5})  # ISO weekdays


DEFAULT_BUSINESS_HOURS = BusinessHours()


@dataclass(frozen=True)
class WindowIssue:
    type: str
    message: str
    severity: Literal["error", "warning", "info"]


@dataclass
class WindowValidation:
    issues: list[WindowIssue] = field(default_factory=list)

    @property
    def errors(self) -> list[WindowIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> list[WindowIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    @property
    def valid(self) -> bool:
        return not self.errors


def resolve_zone(zone_id: str | None, default: str | None = None) -> ZoneResolution:
    """
    Resolve a zone identifier, falling back instead of failing.

    Known IANA ids (any case) and the aliases above resolve to their canonical
    id. Anything else resolves to ``default`` (the configured default zone when
    omitted) and carries a TimezoneUnrecognized warning.
    """
    fallback = default or settings.DEFAULT_TIMEZONE
    if zone_id and zone_id.strip():
        candidate = zone_id.strip()
        candidate = ZONE_ALIASES.get(candidate, candidate)
        try:
            tz = pytz.timezone(candidate)
            return ZoneResolution(tz.zone, tz)
        except pytz.UnknownTimeZoneError:
            pass

    warning = TimezoneUnrecognized(zone_id, fallback)
    log.warning(warning.message)
    return ZoneResolution(fallback, pytz.timezone(fallback), warning)


def _tz(zone_id: str) -> pytz.BaseTzInfo:
    return resolve_zone(zone_id).tz


def _standard_offset(tz: pytz.BaseTzInfo, local: datetime) -> timedelta:
    aware = tz.localize(local, is_dst=False)
    return aware.utcoffset() - (aware.dst() or timedelta(0))


def to_absolute(local: datetime, zone_id: str, dst_mode: DSTMode = "auto") -> datetime:
    """
    Convert a wall-clock time in ``zone_id`` to an absolute UTC instant.

    auto:
        ambiguous times (clocks fall back) take the first occurrence;
        non-existent times (clocks spring forward) move forward by the gap.
    fixed:
        the zone's standard offset applies all year, DST is ignored.

    Aware inputs are already absolute and are only normalized to UTC.
    """
    if local.tzinfo is not None:
        return local.astimezone(timezone.utc)

    tz = _tz(zone_id)
    if dst_mode == "fixed":
        offset = _standard_offset(tz, local)
        return (local - offset).replace(tzinfo=timezone.utc)

    try:
        aware = tz.localize(local, is_dst=None)
    except pytz.AmbiguousTimeError:
        aware = tz.localize(local, is_dst=True)
    except pytz.NonExistentTimeError:
        aware = tz.normalize(tz.localize(local, is_dst=False))
    return aware.astimezone(timezone.utc)


def to_local(instant: datetime, zone_id: str) -> datetime:
    """Absolute instant -> aware wall-clock datetime in ``zone_id``. Naive input is UTC."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(_tz(zone_id))


def convert_timezone(instant: datetime, from_zone: str, to_zone: str) -> datetime:
    """
    Re-express ``instant`` in ``to_zone``.

    A naive ``instant`` is read as wall-clock time in ``from_zone``; an aware one
    already pins the moment and ``from_zone`` is ignored.
    """
    absolute = to_absolute(instant, from_zone) if instant.tzinfo is None else instant
    return to_local(absolute, to_zone)


def is_within_business_hours(instant: datetime, zone_id: str, hours: BusinessHours = DEFAULT_BUSINESS_HOURS) -> bool:
    local = to_local(instant, zone_id)
    if local.isoweekday() not in hours.working_days:
        return False
    return hours.start <= local.time() < hours.end


def _transitions_between(tz: pytz.BaseTzInfo, start: datetime, end: datetime) -> list[Transition]:
    """Offset-changing transitions in (start, end]."""
    # pytz internals: DstTzInfo keeps naive-UTC transition instants and
    # (utcoffset, dst, tzname) tuples in parallel lists. StaticTzInfo has neither.
    times = getattr(tz, "_utc_transition_times", None)
    info = getattr(tz, "_transition_info", None)
    if not times or not info:
        return []
    naive_start = start.astimezone(timezone.utc).replace(tzinfo=None)
    naive_end = end.astimezone(timezone.utc).replace(tzinfo=None)
    lo = max(bisect.bisect_right(times, naive_start), 1)
    hi = bisect.bisect_right(times, naive_end)
    out = []
    for i in range(lo, hi):
        before, after = info[i - 1][0], info[i][0]
        if before == after:
            continue
        out.append(Transition(times[i].replace(tzinfo=timezone.utc), before, after))
    return out


def transitions_in_year(zone_id: str, year: int) -> list[Transition]:
    """Ordered DST transitions (UTC instants) for ``zone_id`` during ``year``."""
    tz = _tz(zone_id)
    start = datetime(year, 1, 1, tzinfo=timezone.utc) - timedelta(microseconds=1)
    end = datetime(year + 1, 1, 1, tzinfo=timezone.utc) - timedelta(microseconds=1)
    return _transitions_between(tz, start, end)


def crosses_dst_transition(start: datetime, end: datetime, zone_id: str) -> bool:
    return bool(_transitions_between(_tz(zone_id), start, end))


def adjust_for_dst_crossing(interval: Interval, zone_id: str, wall_duration: timedelta | None = None) -> DSTAdjustment:
    """
    Preserve wall-clock duration for an interval that spans a DST transition.

    When the interval crosses an offset change its absolute length no longer
    matches the wall-clock span it was built from. The end instant is moved by
    the offset delta (or straight to ``start + wall_duration`` when the
    wall-clock duration is known) and an advisory is returned.
    """
    crossed = _transitions_between(_tz(zone_id), interval.start, interval.end)
    if not crossed:
        return DSTAdjustment(interval)

    if wall_duration is not None:
        new_end = interval.start + wall_duration
    else:
        new_end = interval.end + sum((t.delta for t in crossed), timedelta(0))
    if new_end == interval.end:
        return DSTAdjustment(interval)

    shift = new_end - interval.end
    advisory = (
        f"Interval crosses DST transition at {crossed[0].at.isoformat()}; "
        f"end moved by {int(shift.total_seconds() // 60)} min to keep wall-clock duration"
    )
    return DSTAdjustment(Interval(interval.start, new_end), advisory)


def validate_slot_window(
    start: datetime,
    end: datetime,
    zone_id: str,
    hours: BusinessHours = DEFAULT_BUSINESS_HOURS,
    min_minutes: int = 30,
    max_minutes: int = 480,
) -> WindowValidation:
    result = WindowValidation()
    minutes = (end - start).total_seconds() / 60
    if minutes < min_minutes:
        result.issues.append(WindowIssue(
            "duration_too_short",
            f"Duration ({minutes:g} min) is less than minimum ({min_minutes} min)",
            "error",
        ))
    if minutes > max_minutes:
        result.issues.append(WindowIssue(
            "duration_too_long",
            f"Duration ({minutes:g} min) exceeds maximum ({max_minutes} min)",
            "warning",
        ))
    if not is_within_business_hours(start, zone_id, hours):
        result.issues.append(WindowIssue("outside_business_hours", "Starts outside business hours", "warning"))
    # the end instant itself is exclusive
    if not is_within_business_hours(end - timedelta(microseconds=1), zone_id, hours):
        result.issues.append(WindowIssue("outside_business_hours", "Ends outside business hours", "warning"))
    if crosses_dst_transition(start, end, zone_id):
        result.issues.append(WindowIssue("dst_transition", "Crosses a DST transition; wall-clock times may shift", "info"))
    return result


def zone_info(zone_id: str, at: datetime | None = None) -> dict:
    resolved = resolve_zone(zone_id)
    local = to_local(at or datetime.now(timezone.utc), resolved.zone_id)
    offset = local.utcoffset() or timedelta(0)
    total = int(offset.total_seconds() // 60)
    sign = "+" if total >= 0 else "-"
    hh, mm = divmod(abs(total), 60)
    return {
        "identifier": resolved.zone_id,
        "name": resolved.zone_id.split("/")[-1].replace("_", " "),
        "abbreviation": local.tzname(),
        "offset_minutes": total,
        "offset_string": f"{sign}{hh:02d}:{mm:02d}",
        "is_dst": bool(local.dst()),
    }


def list_supported_zones() -> list[str]:
    return [z for z in settings.SUPPORTED_TIMEZONES if z in pytz.all_timezones_set]


def local_day_bounds(day: date, zone_id: str) -> Interval:
    """Absolute [start, end) covering one local calendar day."""
    start = to_absolute(datetime.combine(day, time.min), zone_id)
    end = to_absolute(datetime.combine(day + timedelta(days=1), time.min), zone_id)
    return Interval(start, end)
