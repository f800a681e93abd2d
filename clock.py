from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt):
    """Normalize a stored timestamp to an aware UTC datetime.

    SQLite hands back naive datetimes (or plain strings when no result
    processor ran); both are stored in UTC by the engine.
    """
    if dt is None:
        return None
    if isinstance(dt, str):
        dt = datetime.fromisoformat(dt)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso_z(dt):
    """Convert a datetime to an RFC3339-like ISO string with trailing Z for UTC"""
    if not dt:
        return None
    return as_utc(dt).isoformat().replace('+00:00', 'Z')
