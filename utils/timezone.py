"""UTC-everywhere time handling. Eliminates timezone bugs at the source."""

from datetime import date, datetime, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def today_utc() -> date:
    """Current calendar date in UTC. Used for sent/paid/payment dates."""
    return now_utc().date()


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 datetime string to UTC datetime.

    Raises ValueError if string has no timezone info.
    """
    dt = datetime.fromisoformat(iso_string)
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot parse naive datetime string. "
            "Include timezone offset (e.g., 'Z' or '+00:00')."
        )
    return to_utc(dt)


def parse_calendar_date(value: date | datetime | str) -> date:
    """
    Normalize a calendar date input to a date (YYYY-MM-DD, no time).

    Accepts a date, a datetime (aware datetimes are converted to UTC first),
    a 'YYYY-MM-DD' string, or a full ISO 8601 datetime string.

    Raises ValueError on anything else.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = to_utc(value)
        return value.date()

    if isinstance(value, date):
        return value

    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Date is empty")
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError(f"Invalid date: {value!r}. Expected YYYY-MM-DD")
        return parse_calendar_date(parsed)

    raise ValueError(f"Invalid date: {value!r}. Expected YYYY-MM-DD")
