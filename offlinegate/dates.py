"""Local date normalization.

Dates exchanged with the origin app are calendar dates in the business's
local timezone. Formatting through UTC shifts them by a day for anyone east
of Greenwich (local midnight on 2024-01-04 in Jakarta is 2024-01-03 in UTC),
so every conversion here goes through the local zone instead.
"""

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Asia/Jakarta"

DATE_FORMAT = "%Y-%m-%d"


class DateError(ValueError):
    """Raised when a date string cannot be parsed."""

    pass


def _zone(tz: str | ZoneInfo) -> ZoneInfo:
    return tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)


def format_date_local(value: date | datetime, tz: str | ZoneInfo = DEFAULT_TIMEZONE) -> str:
    """Format a date as YYYY-MM-DD in the local zone.

    Aware datetimes are converted to the local zone first. Naive datetimes
    and plain dates are taken to be local already.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(_zone(tz))
        value = value.date()
    return value.strftime(DATE_FORMAT)


def parse_date_local(text: str, tz: str | ZoneInfo = DEFAULT_TIMEZONE) -> datetime:
    """Parse YYYY-MM-DD into local midnight of that day.

    Raises:
        DateError: If the text is not a valid calendar date.
    """
    try:
        day = datetime.strptime(text.strip(), DATE_FORMAT).date()
    except (AttributeError, ValueError):
        raise DateError(f"Invalid date '{text}', expected YYYY-MM-DD")
    return datetime.combine(day, time.min, tzinfo=_zone(tz))

