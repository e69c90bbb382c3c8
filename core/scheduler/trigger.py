"""APScheduler trigger: fire now, then every ``interval``."""

from datetime import datetime, timedelta
from typing import Optional

from apscheduler.triggers.base import BaseTrigger


class ImmediateIntervalTrigger(BaseTrigger):
    """
    Fires once at registration time, then at fixed steps of ``interval``.

    Each next fire time is computed from the previous *scheduled* fire time,
    not from when the job finished, so a slow job body never shifts the
    timeline.
    """

    __slots__ = ("interval", "start_date")

    def __init__(self, interval: timedelta, start_date: Optional[datetime] = None):
        if interval.total_seconds() <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self.start_date = start_date

    def get_next_fire_time(self, previous_fire_time, now):
        if previous_fire_time is None:
            return self.start_date or now
        return previous_fire_time + self.interval

    def __str__(self):
        return f"immediate, then every {self.interval}"

    def __repr__(self):
        return f"<{self.__class__.__name__} (interval={self.interval!r})>"
