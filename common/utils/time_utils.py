from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP columns of the saga tables."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
