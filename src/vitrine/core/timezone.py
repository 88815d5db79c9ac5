"""UTC timezone enforcement.

Sets TZ=UTC for the process and provides the clock every timestamp is taken from.
Timestamps are stored as naive UTC datetimes in plain DateTime columns.
"""

import os
from datetime import datetime, timezone

# Set UTC timezone for the entire application
os.environ["TZ"] = "UTC"


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (matches stored column values)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
