"""Time windows and timestamp parsing."""
import calendar
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any

from .errors import InvalidWindow
from .models import TimeWindow


# (days, months) subtracted from today for each named range
NAMED_RANGES: dict[str, tuple[int, int]] = {
    "last_7_days": (7, 0),
    "last_30_days": (30, 0),
    "last_3_months": (0, 3),
    "last_6_months": (0, 6),
    "last_year": (0, 12),
}

DateLike = date | str | None


def shift_months(day: date, months: int) -> date:
    """Move a date back by whole months, clamping to the month's last day."""
    index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def _shift_back(day: date, offset: tuple[int, int]) -> date:
    days, months = offset
    if months:
        day = shift_months(day, months)
    return day - timedelta(days=days)


def _coerce_date(value: DateLike, label: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except (ValueError, TypeError):
        raise InvalidWindow(f"cannot parse {label} date {value!r}") from None


def resolve_window(
    range_name: str | None = "last_30_days",
    start: DateLike = None,
    end: DateLike = None,
    today: date | None = None,
) -> TimeWindow:
    """Build a window from a named range or explicit inclusive bounds."""
    if start is not None or end is not None:
        if start is None or end is None:
            raise InvalidWindow("explicit windows need both start and end")
        return TimeWindow(
            start=_coerce_date(start, "start"),
            end=_coerce_date(end, "end"),
            range_name="custom",
        )

    name = (range_name or "").strip().lower()
    if name == "custom":
        raise InvalidWindow("custom range requires start and end dates")
    if name not in NAMED_RANGES:
        raise InvalidWindow(f"unknown time range {range_name!r}")

    today = today or date.today()
    return TimeWindow(start=_shift_back(today, NAMED_RANGES[name]), end=today, range_name=name)


def previous_window(window: TimeWindow) -> TimeWindow:
    """The period immediately before `window`, sized the same way."""
    end = window.start - timedelta(days=1)
    offset = NAMED_RANGES.get(window.range_name)
    if offset is None:
        start = window.start - timedelta(days=window.days)
    else:
        start = _shift_back(window.start, offset)
    return TimeWindow(start=start, end=end, range_name=window.range_name)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored point in time; None when absent or unusable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            return None
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        try:
            return datetime.fromtimestamp(float(seconds) + float(nanos) / 1e9, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None
    try:
        return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None


def to_local(moment: datetime, tz: tzinfo | None) -> datetime:
    """Convert to the operator's zone; naive values are already local."""
    if tz is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(tz)


def parse_date_key(key: str) -> date | None:
    """Parse a `YYYY-MM-DD` partition key."""
    try:
        return date.fromisoformat(key.strip())
    except (ValueError, AttributeError):
        return None
