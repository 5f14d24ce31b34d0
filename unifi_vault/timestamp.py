"""Clock sources for the engine.

- The engine never reads wall clock time directly, the host passes a clock in
- All timestamps are UNIX seconds as `int`, same as a block timestamp
- Human readable values are naive UTC datetimes
"""

import calendar
import datetime
import time
from typing import Protocol


class Clock(Protocol):
    """Return the current execution timestamp as UNIX seconds."""

    def __call__(self) -> int: ...


class SystemClock:
    """Wall clock time, for live deployments."""

    def __call__(self) -> int:
        return int(time.time())


class ManualClock:
    """Clock that moves only when told to.

    - Used in tests and simulations to travel past redemption timelocks
    """

    def __init__(self, now: int = 1_700_000_000):
        assert type(now) == int, f"Got {type(now)}"
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int | datetime.timedelta) -> int:
        """Move time forward.

        :return:
            The new timestamp
        """
        if isinstance(seconds, datetime.timedelta):
            seconds = int(seconds.total_seconds())
        assert seconds >= 0, f"Clock cannot go backwards: {seconds}"
        self.now += seconds
        return self.now


def native_datetime_utc_fromtimestamp(timestamp: float) -> datetime.datetime:
    """Convert UNIX timestamp to a naive UTC datetime.

    Replacement for the deprecated `datetime.datetime.utcfromtimestamp()`.
    """
    return datetime.datetime.fromtimestamp(timestamp, tz=datetime.timezone.utc).replace(tzinfo=None)


def to_unix_timestamp(dt: datetime.datetime) -> int:
    """Convert a naive UTC datetime to UNIX seconds."""
    return calendar.timegm(dt.utctimetuple())
