# authgate/utils/clock.py
from datetime import datetime, timezone
from typing import Callable

# Every component that reasons about expiry takes one of these so tests can
# move time forward without sleeping.
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
