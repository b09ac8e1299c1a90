"""Bookable time-slot generation.

Slots are built from the business-hour rules in the business timezone and
then removed when they start inside the minimum lead time or overlap a busy
period reported by the calendar. All comparisons run on UTC instants so a
DST switch inside the window cannot shift or duplicate a slot.
"""

from collections.abc import Callable, Iterable
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict

MIN_LEAD_TIME = timedelta(hours=1)
MAX_PRESENTED_SLOTS = 5

TIME_OF_DAY_HOURS: dict[str, tuple[int, int]] = {
    'morning': (6, 12),
    'afternoon': (12, 17),
    'evening': (17, 21),
}


class BusinessHours(BaseModel):
    model_config = ConfigDict(frozen=True)

    open_time: time
    close_time: time


class BusyPeriod(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime


class TimeSlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    display_date: str
    display_time: str
    display_full: str


def format_display_date(moment: datetime) -> str:
    return f'{moment:%A}, {moment:%B} {moment.day}'


def format_display_time(moment: datetime) -> str:
    hour = moment.hour % 12 or 12
    meridiem = 'AM' if moment.hour < 12 else 'PM'
    return f'{hour}:{moment.minute:02d} {meridiem}'


def format_display_full(moment: datetime) -> str:
    return f'{format_display_date(moment)} at {format_display_time(moment)}'


def build_slot(start: datetime, end: datetime, zone: ZoneInfo) -> TimeSlot:
    local_start = start.astimezone(zone)
    return TimeSlot(
        start=local_start,
        end=end.astimezone(zone),
        display_date=format_display_date(local_start),
        display_time=format_display_time(local_start),
        display_full=format_display_full(local_start),
    )


def overlaps(start: datetime, end: datetime, busy: BusyPeriod) -> bool:
    return (
        start.astimezone(timezone.utc) < busy.end.astimezone(timezone.utc)
        and end.astimezone(timezone.utc) > busy.start.astimezone(timezone.utc)
    )


def generate_slots(
    start_date: date,
    end_date: date,
    business_hours: BusinessHours,
    business_days: Iterable[int],
    duration: timedelta,
    timezone_name: str,
    busy_periods: Iterable[BusyPeriod] = (),
    now: datetime | None = None,
) -> list[TimeSlot]:
    """Return every free slot between ``start_date`` and ``end_date`` inclusive.

    ``business_days`` holds ISO weekdays (1 = Monday ... 7 = Sunday). A
    trailing window shorter than ``duration`` at the end of a day is dropped.
    """
    if duration <= timedelta(0):
        raise ValueError('Appointment duration must be positive.')

    zone = ZoneInfo(timezone_name)
    allowed_days = set(business_days)
    busy = list(busy_periods)
    current_time = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    earliest_start = current_time + MIN_LEAD_TIME

    slots: list[TimeSlot] = []
    current_day = start_date

    while current_day <= end_date:
        if current_day.isoweekday() in allowed_days:
            slot_start = datetime.combine(current_day, business_hours.open_time, tzinfo=zone).astimezone(timezone.utc)
            day_end = datetime.combine(current_day, business_hours.close_time, tzinfo=zone).astimezone(timezone.utc)

            while slot_start + duration <= day_end:
                slot_end = slot_start + duration

                if slot_start >= earliest_start and not any(
                    overlaps(slot_start, slot_end, period) for period in busy
                ):
                    slots.append(build_slot(slot_start, slot_end, zone))

                slot_start = slot_end

        current_day += timedelta(days=1)

    return slots


def apply_if_nonempty(
    slots: list[TimeSlot],
    predicate: Callable[[TimeSlot], bool],
) -> tuple[list[TimeSlot], bool]:
    """Narrow ``slots`` by ``predicate`` unless that would leave nothing.

    Returns the resulting list and whether the narrowing was applied. When
    every slot is rejected the input list comes back unchanged.
    """
    narrowed = [slot for slot in slots if predicate(slot)]
    if narrowed:
        return narrowed, True
    return list(slots), False


def matches_date(target_date: date) -> Callable[[TimeSlot], bool]:
    return lambda slot: slot.start.date() == target_date


def matches_time_of_day(period: str) -> Callable[[TimeSlot], bool]:
    hours = TIME_OF_DAY_HOURS.get(period)
    if hours is None:
        return lambda slot: True

    first_hour, last_hour = hours
    return lambda slot: first_hour <= slot.start.hour < last_hour


def filter_by_date(slots: list[TimeSlot], target_date: date) -> list[TimeSlot]:
    return apply_if_nonempty(slots, matches_date(target_date))[0]


def filter_by_time_of_day(slots: list[TimeSlot], period: str) -> list[TimeSlot]:
    return apply_if_nonempty(slots, matches_time_of_day(period))[0]


def format_slot_for_voice(slot: TimeSlot, index: int) -> str:
    return f'Option {index}: {slot.display_full}'
