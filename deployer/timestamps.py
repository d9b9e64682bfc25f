"""Timezone-aware UTC timestamp utilities.

Wall-clock timestamps (for logs and persisted status) come from here.
TTL and timeout arithmetic uses the monotonic clock instead, so a
system clock change never expires or revives cache items.
"""

import time
from datetime import datetime, timezone


def now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def isonow() -> str:
    """Return the current UTC time as an ISO 8601 string with +00:00 offset."""
    return now().isoformat()


def monotonic() -> float:
    """Seconds from the monotonic clock."""
    return time.monotonic()
