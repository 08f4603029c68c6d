# tests/test_clinic_time.py
from datetime import date, datetime, timedelta, timezone

import pytest

from backoffice.core.clinic_time import (
    add_days,
    at_noon_utc,
    civil_date_of,
    day_range,
    days_between,
    enumerate_days,
    parse_civil_date,
    range_bounds,
)
from backoffice.exceptions import InvalidInputError


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_ordinary_day_in_sao_paulo():
    start, end = day_range("2026-02-20", "America/Sao_Paulo")
    assert start == utc(2026, 2, 20, 3, 0)
    assert end == utc(2026, 2, 21, 3, 0)


@pytest.mark.parametrize(
    "civil, tz, hours",
    [
        ("2018-11-04", "America/Sao_Paulo", 23),   # spring forward at local midnight
        ("2019-02-16", "America/Sao_Paulo", 25),   # fall back into the 16th
        ("2026-03-08", "America/New_York", 23),
        ("2026-11-01", "America/New_York", 25),
        ("2026-03-29", "Europe/Lisbon", 23),
        ("2026-06-15", "UTC", 24),
    ],
)
def test_day_range_across_dst(civil, tz, hours):
    start, end = day_range(civil, tz)
    assert start < end
    assert end - start == timedelta(hours=hours)
    samples = [start, start + (end - start) / 2, end - timedelta(microseconds=1)]
    for instant in samples:
        assert civil_date_of(instant, tz) == civil
    assert civil_date_of(end, tz) == add_days(civil, 1)


def test_spring_forward_day_starts_at_first_existing_instant():
    start, _ = day_range("2018-11-04", "America/Sao_Paulo")
    # 00:00 local does not exist that day; the clock reads 01:00 -02
    assert start == utc(2018, 11, 4, 3, 0)


def test_fall_back_new_york_boundaries():
    start, end = day_range("2026-11-01", "America/New_York")
    assert start == utc(2026, 11, 1, 4, 0)
    assert end == utc(2026, 11, 2, 5, 0)


def test_adjacent_days_share_a_boundary():
    for civil in ("2018-11-03", "2019-02-15", "2026-03-07", "2026-10-31"):
        tz = "America/Sao_Paulo" if civil.startswith(("2018", "2019")) else "America/New_York"
        _, end = day_range(civil, tz)
        next_start, _ = day_range(add_days(civil, 1), tz)
        assert end == next_start


def test_civil_date_of_near_local_midnight():
    # 02:30 UTC is still the previous evening in Sao Paulo
    assert civil_date_of(utc(2026, 2, 18, 2, 30), "America/Sao_Paulo") == "2026-02-17"
    assert civil_date_of(utc(2026, 2, 18, 3, 0), "America/Sao_Paulo") == "2026-02-18"


def test_civil_date_of_treats_naive_as_utc():
    assert civil_date_of(datetime(2026, 2, 18, 2, 30), "America/Sao_Paulo") == "2026-02-17"


def test_enumerate_days_is_inclusive_and_crosses_months():
    assert enumerate_days("2026-02-27", "2026-03-02") == [
        "2026-02-27", "2026-02-28", "2026-03-01", "2026-03-02",
    ]
    assert enumerate_days("2026-02-20", "2026-02-20") == ["2026-02-20"]
    assert enumerate_days("2026-02-21", "2026-02-20") == []


def test_at_noon_utc_stays_on_the_same_civil_day():
    noon = at_noon_utc("2026-02-20", "America/Sao_Paulo")
    assert noon == utc(2026, 2, 20, 15, 0)
    assert civil_date_of(noon, "America/Sao_Paulo") == "2026-02-20"
    for tz in ("Pacific/Kiritimati", "Pacific/Pago_Pago", "Asia/Kolkata"):
        assert civil_date_of(at_noon_utc("2026-02-20", tz), tz) == "2026-02-20"


def test_range_bounds_covers_inclusive_civil_range():
    window = range_bounds("2026-02-01", "2026-02-28", "America/Sao_Paulo")
    assert window.start_utc == utc(2026, 2, 1, 3, 0)
    assert window.end_utc == utc(2026, 3, 1, 3, 0)


def test_range_bounds_rejects_reversed_range():
    with pytest.raises(InvalidInputError):
        range_bounds("2026-02-20", "2026-02-19", "America/Sao_Paulo")


@pytest.mark.parametrize("value", ["2026-2-20", "20260220", "2026-02-30", "2026-13-01", "", "yesterday", "2026-02-20T10:00"])
def test_malformed_dates_fail_fast(value):
    with pytest.raises(InvalidInputError) as exc:
        day_range(value, "America/Sao_Paulo")
    assert exc.value.status_code == 400


def test_instants_are_not_civil_dates():
    with pytest.raises(InvalidInputError):
        parse_civil_date(datetime(2026, 2, 20, 10, 0))
    assert parse_civil_date(date(2026, 2, 20)) == date(2026, 2, 20)


def test_unknown_timezone_is_a_validation_error():
    with pytest.raises(InvalidInputError):
        day_range("2026-02-20", "Mars/Olympus_Mons")


def test_days_between_uses_calendar_days():
    assert days_between("2026-01-31", "2026-02-20") == 20
    assert days_between("2026-02-20", "2026-02-17") == -3
