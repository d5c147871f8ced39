"""Time sources for the submission engine.

Every elapsed-time calculation reads ``clock.now()`` so tests can drive the
timers with a ManualClock instead of sleeping.
"""

from datetime import datetime, timedelta
from datetime_utils import now_ist, ensure_aware


class SystemClock:
    """Wall clock in IST."""

    def now(self) -> datetime:
        return now_ist()


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime):
        self._now = ensure_aware(start)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        self._now = self._now + timedelta(seconds=seconds)
        return self._now
