"""Resolve spoken date references ("tomorrow", "next monday") to calendar dates."""

import re
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')
ISO_DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
RELATIVE_DAYS = {
    'today': 0,
    'tomorrow': 1,
    'day after tomorrow': 2,
}


def resolve(phrase: str | None, reference: datetime, timezone_name: str) -> date | None:
    """Map ``phrase`` to a date in the business timezone, or ``None`` for no preference.

    Weekday names resolve to the next occurrence strictly after the reference
    date; a phrase that also contains "next" moves one further week out.
    """
    if not phrase:
        return None

    normalized = ' '.join(phrase.lower().split())
    if not normalized:
        return None

    today = reference.astimezone(ZoneInfo(timezone_name)).date()

    if normalized in RELATIVE_DAYS:
        return today + timedelta(days=RELATIVE_DAYS[normalized])

    for weekday_index, weekday_name in enumerate(WEEKDAYS):
        if weekday_name in normalized:
            days_until = (weekday_index - today.weekday()) % 7 or 7
            resolved = today + timedelta(days=days_until)
            if 'next' in normalized:
                resolved += timedelta(weeks=1)
            return resolved

    if ISO_DATE_PATTERN.match(normalized):
        try:
            return date.fromisoformat(normalized)
        except ValueError:
            return None

    return None
