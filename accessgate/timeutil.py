"""Time helpers shared by the contextual evaluators."""

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from accessgate.errors import PolicyMisconfiguration


DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def ensure_aware_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def localize(moment: datetime, tz_name: Optional[str]) -> datetime:
    """Convert to the named IANA zone; UTC when no zone is given."""
    moment = ensure_aware_utc(moment)
    if not tz_name:
        return moment.astimezone(timezone.utc)
    try:
        return moment.astimezone(ZoneInfo(tz_name))
    except (ZoneInfoNotFoundError, ValueError):
        raise PolicyMisconfiguration(f"Unknown timezone: {tz_name}") from None


def day_of_week(moment: datetime | date) -> int:
    """Day index with 0 = Sunday through 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def parse_hhmm(value: str) -> int:
    """Minutes since midnight for an "HH:MM" string."""
    try:
        hours, _, minutes = str(value).partition(":")
        return int(hours) * 60 + int(minutes or 0)
    except ValueError:
        raise PolicyMisconfiguration(f"Invalid time of day: {value!r}") from None
