from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.errors import TimezoneUnrecognized
from app.core.intervals import Interval
from app.modules.timezones.service import (
    BusinessHours,
    adjust_for_dst_crossing,
    convert_timezone,
    crosses_dst_transition,
    is_within_business_hours,
    list_supported_zones,
    local_day_bounds,
    resolve_zone,
    to_absolute,
    to_local,
    transitions_in_year,
    validate_slot_window,
    zone_info,
)

NY = 'America/New_York'


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_resolve_zone_passes_known_ids_through() -> None:
    resolved = resolve_zone('Europe/Madrid')

    assert resolved.zone_id == 'Europe/Madrid'
    assert resolved.warning is None


def test_resolve_zone_maps_aliases() -> None:
    assert resolve_zone('NYC').zone_id == NY
    assert resolve_zone('Buenos Aires').zone_id == 'America/Buenos_Aires'


def test_resolve_zone_falls_back_with_warning() -> None:
    resolved = resolve_zone('Mars/Olympus_Mons')

    assert resolved.zone_id == 'America/Buenos_Aires'
    assert resolved.warning == TimezoneUnrecognized('Mars/Olympus_Mons', 'America/Buenos_Aires')
    assert 'Mars/Olympus_Mons' in str(resolved.warning)


def test_to_absolute_plain_winter_time() -> None:
    assert to_absolute(datetime(2027, 1, 15, 9, 0), NY) == utc(2027, 1, 15, 14, 0)


def test_to_absolute_shifts_gap_times_forward() -> None:
    # 02:30 does not exist on 2027-03-14; it lands on 03:30 EDT
    instant = to_absolute(datetime(2027, 3, 14, 2, 30), NY)

    assert instant == utc(2027, 3, 14, 7, 30)
    assert to_local(instant, NY).strftime('%H:%M') == '03:30'


def test_to_absolute_picks_first_occurrence_of_ambiguous_time() -> None:
    # 01:30 happens twice on 2027-11-07; the EDT one comes first
    assert to_absolute(datetime(2027, 11, 7, 1, 30), NY) == utc(2027, 11, 7, 5, 30)


def test_to_absolute_fixed_mode_ignores_dst() -> None:
    summer = datetime(2027, 7, 1, 9, 0)

    assert to_absolute(summer, NY) == utc(2027, 7, 1, 13, 0)
    assert to_absolute(summer, NY, dst_mode='fixed') == utc(2027, 7, 1, 14, 0)


def test_to_absolute_keeps_aware_instants() -> None:
    aware = utc(2027, 7, 1, 9, 0)

    assert to_absolute(aware, NY) == aware


def test_convert_timezone_reads_naive_input_in_source_zone() -> None:
    # Buenos Aires is UTC-3 all year, Madrid UTC+1 in January
    local = convert_timezone(datetime(2027, 1, 15, 9, 0), 'America/Buenos_Aires', 'Europe/Madrid')

    assert local.strftime('%Y-%m-%d %H:%M') == '2027-01-15 13:00'
    assert local.utcoffset() == timedelta(hours=1)


def test_transitions_in_year_lists_offset_changes() -> None:
    transitions = transitions_in_year(NY, 2027)

    assert [t.at for t in transitions] == [utc(2027, 3, 14, 7, 0), utc(2027, 11, 7, 6, 0)]
    assert transitions[0].starts_dst
    assert transitions[0].delta == timedelta(hours=1)
    assert transitions[1].delta == timedelta(hours=-1)


@pytest.mark.parametrize('zone_id', ['UTC', 'Asia/Tokyo', 'America/Buenos_Aires'])
def test_transitions_in_year_empty_for_zones_without_dst(zone_id) -> None:
    assert transitions_in_year(zone_id, 2027) == []


def test_adjust_for_dst_crossing_preserves_wall_duration() -> None:
    # 01:00-03:00 on spring-forward day is only 60 absolute minutes
    start = to_absolute(datetime(2027, 3, 14, 1, 0), NY)
    end = to_absolute(datetime(2027, 3, 14, 3, 0), NY)
    assert end - start == timedelta(minutes=60)

    result = adjust_for_dst_crossing(Interval(start, end), NY, timedelta(minutes=120))

    assert result.adjusted
    assert result.interval.start == utc(2027, 3, 14, 6, 0)
    assert result.interval.end == utc(2027, 3, 14, 8, 0)
    assert result.interval.duration == timedelta(minutes=120)


def test_adjust_for_dst_crossing_without_wall_duration_uses_offset_delta() -> None:
    # fall back: 00:30-02:30 local is 180 absolute minutes
    start = to_absolute(datetime(2027, 11, 7, 0, 30), NY)
    end = to_absolute(datetime(2027, 11, 7, 2, 30), NY)

    result = adjust_for_dst_crossing(Interval(start, end), NY)

    assert result.interval.duration == timedelta(minutes=120)


def test_adjust_for_dst_crossing_leaves_ordinary_intervals() -> None:
    span = Interval(utc(2027, 1, 15, 14, 0), utc(2027, 1, 15, 15, 0))

    result = adjust_for_dst_crossing(span, NY, timedelta(minutes=60))

    assert result.interval == span
    assert result.advisory is None


def test_crosses_dst_transition() -> None:
    assert crosses_dst_transition(utc(2027, 3, 14, 6, 0), utc(2027, 3, 14, 8, 0), NY)
    assert not crosses_dst_transition(utc(2027, 3, 15, 6, 0), utc(2027, 3, 15, 8, 0), NY)


def test_is_within_business_hours() -> None:
    # 2027-01-18 is a Monday
    assert is_within_business_hours(utc(2027, 1, 18, 15, 0), NY)
    assert not is_within_business_hours(utc(2027, 1, 16, 15, 0), NY)  # Saturday
    assert not is_within_business_hours(utc(2027, 1, 19, 2, 0), NY)  # 21:00 Monday local
    weekend_shop = BusinessHours(working_days=frozenset({6, 7}))
    assert is_within_business_hours(utc(2027, 1, 16, 15, 0), NY, weekend_shop)


def test_validate_slot_window_flags_short_and_out_of_hours() -> None:
    result = validate_slot_window(utc(2027, 1, 18, 3, 0), utc(2027, 1, 18, 3, 15), NY)

    assert not result.valid
    assert [i.type for i in result.errors] == ['duration_too_short']
    assert {i.type for i in result.warnings} == {'outside_business_hours'}


def test_zone_info_reports_offset() -> None:
    info = zone_info('America/Buenos_Aires', utc(2027, 1, 15, 12, 0))

    assert info['identifier'] == 'America/Buenos_Aires'
    assert info['name'] == 'Buenos Aires'
    assert info['offset_minutes'] == -180
    assert info['offset_string'] == '-03:00'
    assert info['is_dst'] is False


def test_list_supported_zones_only_known_ids() -> None:
    zones = list_supported_zones()

    assert 'America/Buenos_Aires' in zones
    assert 'UTC' in zones


def test_local_day_bounds_follow_the_zone() -> None:
    spring = local_day_bounds(date(2027, 3, 14), NY)
    winter = local_day_bounds(date(2027, 1, 4), NY)

    assert spring == Interval(utc(2027, 3, 14, 5), utc(2027, 3, 15, 4))
    assert spring.end - spring.start == timedelta(hours=23)
    assert winter.end - winter.start == timedelta(hours=24)
