"""Calendar boundaries in UTC. Weeks start on Monday."""

from datetime import datetime, timedelta, timezone


def ensure_utc(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def start_of_day(now: datetime | None = None) -> datetime:
    return ensure_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(now: datetime | None = None) -> datetime:
    day = start_of_day(now)
    return day - timedelta(days=day.weekday())


def end_of_week(now: datetime | None = None) -> datetime:
    """Sunday 23:59:59.999999 of the current week."""
    return start_of_week(now) + timedelta(days=7) - timedelta(microseconds=1)


def start_of_month(now: datetime | None = None) -> datetime:
    return start_of_day(now).replace(day=1)
