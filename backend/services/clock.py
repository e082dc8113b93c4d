from datetime import datetime, timezone


class Clock:
    """Injectable time source."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock pinned to a moment, advanced explicitly."""

    def __init__(self, moment: datetime):
        self.moment = moment

    def now(self) -> datetime:
        return self.moment

    def advance(self, delta) -> datetime:
        self.moment = self.moment + delta
        return self.moment
