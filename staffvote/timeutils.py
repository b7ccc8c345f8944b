from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form both stores persist."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc(dt: datetime) -> datetime:
    """Convert naive or tz-aware datetime to naive UTC."""
    if dt.tzinfo is None:  # naive input is treated as UTC already
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)
