# SPDX-License-Identifier: Apache-2.0

"""
Time sources for the workflow services.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from ..models.base import utc_now


class Clock:
    """Source of the current time."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return utc_now()


class FixedClock(Clock):
    """Clock that only moves when told to. Used for tests and replays."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or utc_now()
        if self._now.tzinfo is None:
            self._now = self._now.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime) -> None:
        """Jump to a specific time."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        self._now = moment

    def advance(self, delta: timedelta = None, **kwargs) -> datetime:
        """Move forward by a timedelta or timedelta keyword arguments."""
        self._now = self._now + (delta if delta is not None else timedelta(**kwargs))
        return self._now
