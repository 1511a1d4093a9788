from datetime import date, datetime, time, timezone


def utcnow() -> datetime:
    # naive UTC, same as what the DB columns hold
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_date(value) -> date:
    """Normalize a datetime or date to a date; circulation works on calendar days."""
    if isinstance(value, datetime):
        return value.date()
    return value


def as_datetime(value) -> datetime:
    """Widen a bare date to midnight; DateTime columns reject dates on SQLite."""
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)
