from datetime import datetime, timezone

from mnemo.domain.ports import Clock


class SystemClock(Clock):
    """Production time source: the system clock, in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
