"""Session and time-bucket labels — pure functions of the UTC hour."""

from datetime import datetime, timezone

ASIA = "ASIA"
LONDON = "LONDON"
OVERLAP = "OVERLAP"
NY = "NY"

SESSIONS: tuple[str, ...] = (ASIA, LONDON, OVERLAP, NY)


def get_session(utc_hour: int) -> str:
    """Return the trading session for *utc_hour*.

    Windows (inclusive start, exclusive end):
        00–08 ASIA, 08–13 LONDON, 13–16 OVERLAP, 16–24 NY.

    Raises ``ValueError`` for hours outside 0–23.
    """
    if not 0 <= utc_hour < 24:
        raise ValueError(f"utc_hour must be in 0..23, got {utc_hour}")
    if utc_hour < 8:
        return ASIA
    if utc_hour < 13:
        return LONDON
    if utc_hour < 16:
        return OVERLAP
    return NY


def get_time_bucket(utc_hour: int) -> str:
    """Return the 4-hour UTC band containing *utc_hour*, e.g. ``"12-16"``."""
    if not 0 <= utc_hour < 24:
        raise ValueError(f"utc_hour must be in 0..23, got {utc_hour}")
    start = (utc_hour // 4) * 4
    return f"{start}-{start + 4}"


def day_of_week(moment: datetime) -> int:
    """UTC day of week with Sunday as 0."""
    return (moment.astimezone(timezone.utc).weekday() + 1) % 7


def parse_timestamp(stamp: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    moment = datetime.fromisoformat(stamp.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
