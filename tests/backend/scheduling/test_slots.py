from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from backend.scheduling.slots import (
    BusinessHours,
    BusyPeriod,
    apply_if_nonempty,
    filter_by_date,
    filter_by_time_of_day,
    format_display_full,
    format_display_time,
    format_slot_for_voice,
    generate_slots,
    matches_date,
)

NEW_YORK = 'America/New_York'
NY = ZoneInfo(NEW_YORK)
WEEKDAYS = {1, 2, 3, 4, 5}
NINE_TO_FIVE = BusinessHours(open_time=time(9, 0), close_time=time(17, 0))
ONE_HOUR = timedelta(minutes=60)
MONDAY = date(2026, 1, 5)
SUNDAY_BEFORE = datetime(2026, 1, 4, 12, 0, tzinfo=timezone.utc)


def local(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=NY)


def slots_for(day: date = MONDAY, busy=(), now: datetime = SUNDAY_BEFORE, **overrides):
    options = {
        'business_hours': NINE_TO_FIVE,
        'business_days': WEEKDAYS,
        'duration': ONE_HOUR,
    }
    options.update(overrides)
    return generate_slots(
        day,
        day,
        options['business_hours'],
        options['business_days'],
        options['duration'],
        NEW_YORK,
        busy,
        now=now,
    )


def test_full_free_day_yields_eight_hourly_slots() -> None:
    slots = slots_for()

    assert [slot.start for slot in slots] == [local(MONDAY, hour) for hour in range(9, 17)]
    assert all(slot.end - slot.start == ONE_HOUR for slot in slots)
    assert slots[-1].end == local(MONDAY, 17)


def test_slots_inside_minimum_lead_time_are_excluded() -> None:
    now = local(MONDAY, 10, 30)

    slots = slots_for(now=now)

    assert [slot.start.hour for slot in slots] == [12, 13, 14, 15, 16]
    assert all(slot.start >= now + timedelta(hours=1) for slot in slots)


def test_slot_exactly_at_lead_time_boundary_is_kept() -> None:
    slots = slots_for(now=local(MONDAY, 10))

    assert slots[0].start == local(MONDAY, 11)


def test_busy_period_covering_one_slot_removes_only_that_slot() -> None:
    busy = [BusyPeriod(start=local(MONDAY, 10), end=local(MONDAY, 11))]

    slots = slots_for(busy=busy)

    assert len(slots) == 7
    assert local(MONDAY, 10) not in [slot.start for slot in slots]
    assert local(MONDAY, 9) in [slot.start for slot in slots]
    assert local(MONDAY, 11) in [slot.start for slot in slots]


def test_partial_busy_period_blocks_the_slot_it_touches() -> None:
    busy = [BusyPeriod(start=local(MONDAY, 13, 30), end=local(MONDAY, 13, 45))]

    slots = slots_for(busy=busy)

    assert [slot.start.hour for slot in slots] == [9, 10, 11, 12, 14, 15, 16]


def test_busy_periods_in_utc_are_compared_as_instants() -> None:
    busy = [BusyPeriod(
        start=datetime(2026, 1, 5, 14, 0, tzinfo=timezone.utc),
        end=datetime(2026, 1, 5, 15, 0, tzinfo=timezone.utc),
    )]

    slots = slots_for(busy=busy)

    assert local(MONDAY, 9) not in [slot.start for slot in slots]
    assert len(slots) == 7


def test_non_business_days_produce_no_slots() -> None:
    saturday = date(2026, 1, 3)

    assert slots_for(day=saturday, now=datetime(2026, 1, 1, tzinfo=timezone.utc)) == []


def test_trailing_partial_window_is_dropped() -> None:
    slots = slots_for(duration=timedelta(minutes=90))

    assert [slot.start for slot in slots] == [
        local(MONDAY, 9),
        local(MONDAY, 10, 30),
        local(MONDAY, 12),
        local(MONDAY, 13, 30),
        local(MONDAY, 15),
    ]


def test_multi_day_range_is_chronological_and_non_overlapping() -> None:
    busy = [
        BusyPeriod(start=local(MONDAY, 9), end=local(MONDAY, 12)),
        BusyPeriod(start=local(date(2026, 1, 7), 15, 15), end=local(date(2026, 1, 8), 10)),
    ]
    now = local(MONDAY, 8)

    slots = generate_slots(MONDAY, date(2026, 1, 11), NINE_TO_FIVE, WEEKDAYS, ONE_HOUR, NEW_YORK, busy, now=now)

    assert slots == sorted(slots, key=lambda slot: slot.start)
    for earlier, later in zip(slots, slots[1:]):
        assert earlier.end <= later.start
    for slot in slots:
        assert slot.end - slot.start == ONE_HOUR
        assert slot.start >= now + timedelta(hours=1)
        for period in busy:
            assert not (slot.start < period.end and slot.end > period.start)
    assert {slot.start.date() for slot in slots} == {date(2026, 1, day) for day in (5, 6, 7, 8, 9)}


def test_daylight_saving_switch_keeps_exact_durations() -> None:
    spring_forward = date(2026, 3, 8)
    night_hours = BusinessHours(open_time=time(1, 0), close_time=time(4, 0))

    slots = generate_slots(
        spring_forward,
        spring_forward,
        night_hours,
        {7},
        ONE_HOUR,
        NEW_YORK,
        now=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )

    assert len(slots) == 2
    assert all(slot.end.astimezone(timezone.utc) - slot.start.astimezone(timezone.utc) == ONE_HOUR for slot in slots)
    assert [slot.start.hour for slot in slots] == [1, 3]


def test_non_positive_duration_is_rejected() -> None:
    with pytest.raises(ValueError):
        slots_for(duration=timedelta(0))


def test_display_strings_use_business_timezone() -> None:
    slot = slots_for()[0]

    assert slot.display_date == 'Monday, January 5'
    assert slot.display_time == '9:00 AM'
    assert slot.display_full == 'Monday, January 5 at 9:00 AM'


@pytest.mark.parametrize(
    ('hour', 'minute', 'expected'),
    [(0, 0, '12:00 AM'), (9, 5, '9:05 AM'), (12, 0, '12:00 PM'), (16, 30, '4:30 PM')],
)
def test_format_display_time(hour: int, minute: int, expected: str) -> None:
    assert format_display_time(local(MONDAY, hour, minute)) == expected


def test_format_slot_for_voice_numbers_the_option() -> None:
    slot = slots_for()[2]

    assert format_slot_for_voice(slot, 3) == 'Option 3: Monday, January 5 at 11:00 AM'
    assert format_display_full(slot.start) == slot.display_full


def test_filter_by_date_keeps_matching_day() -> None:
    slots = generate_slots(MONDAY, date(2026, 1, 6), NINE_TO_FIVE, WEEKDAYS, ONE_HOUR, NEW_YORK, now=SUNDAY_BEFORE)

    tuesday_slots = filter_by_date(slots, date(2026, 1, 6))

    assert len(tuesday_slots) == 8
    assert {slot.start.date() for slot in tuesday_slots} == {date(2026, 1, 6)}


def test_filter_by_date_without_matches_returns_input_unchanged() -> None:
    slots = slots_for()

    assert filter_by_date(slots, date(2026, 1, 10)) == slots


@pytest.mark.parametrize(
    ('period', 'expected_hours'),
    [
        ('morning', [9, 10, 11]),
        ('afternoon', [12, 13, 14, 15, 16]),
        ('any', [9, 10, 11, 12, 13, 14, 15, 16]),
        ('whenever', [9, 10, 11, 12, 13, 14, 15, 16]),
    ],
)
def test_filter_by_time_of_day(period: str, expected_hours: list[int]) -> None:
    assert [slot.start.hour for slot in filter_by_time_of_day(slots_for(), period)] == expected_hours


def test_evening_filter_degrades_to_all_slots_when_nothing_matches() -> None:
    slots = slots_for()

    assert filter_by_time_of_day(slots, 'evening') == slots


def test_apply_if_nonempty_reports_whether_it_narrowed() -> None:
    slots = slots_for()

    narrowed, applied = apply_if_nonempty(slots, matches_date(MONDAY))
    unchanged, skipped = apply_if_nonempty(slots, matches_date(date(2026, 2, 1)))

    assert applied is True
    assert narrowed == slots
    assert skipped is False
    assert unchanged == slots


def test_filters_on_empty_input_stay_empty() -> None:
    assert filter_by_date([], MONDAY) == []
    assert filter_by_time_of_day([], 'morning') == []
