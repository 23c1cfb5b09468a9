"""Injectable wall clock.

Components that reason about windows or expiry take a ``Clock`` so tests can
move time forward without sleeping.
"""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)
