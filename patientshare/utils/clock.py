from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Naive UTC now; every expiry comparison in the engine goes through here."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_from_now(days: int) -> datetime:
    return utcnow() + timedelta(days=days)
