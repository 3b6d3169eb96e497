from datetime import date, datetime, time, timedelta, timezone


def now_utc() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def today() -> date:
    return now_utc().date()


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_date(value) -> date | None:
    """Parse ``YYYY-MM-DD`` (or a longer ISO timestamp) into a date."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def parse_time(value) -> time | None:
    """Accept ``HH:MM`` or ``HH:MM:SS`` strings."""
    if value in (None, ""):
        return None
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value).strip())
    except ValueError:
        return None


def week_bounds(start: date) -> tuple[date, date]:
    return start, start + timedelta(days=6)


def month_key(value: date | datetime | None) -> str | None:
    if not value:
        return None
    return f"{value.year:04d}-{value.month:02d}"
