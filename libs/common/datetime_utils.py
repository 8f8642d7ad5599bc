"""Timezone-aware UTC helpers.

Every timestamp column defaults to ``utc_now``; never store naive datetimes.
"""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def minutes_ago(minutes: int) -> datetime:
    """Return the aware UTC instant ``minutes`` before now."""
    return utc_now() - timedelta(minutes=minutes)
