"""Time and notification doubles shared by the test modules."""

from datetime import UTC, datetime, time, timedelta

# A Monday morning; every test runs "now" at this instant unless it moves the clock
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def notify(self, event_type, booking, student, teacher) -> None:
        self.sent.append((event_type, booking.id, student.id if student else None, teacher.id if teacher else None))


def slot(days: int = 1, hour: int = 10, minutes: int = 60) -> tuple[datetime, datetime]:
    """A class starting `days` after NOW at `hour`:00 UTC."""
    start = datetime.combine((NOW + timedelta(days=days)).date(), time(hour), tzinfo=UTC)
    return start, start + timedelta(minutes=minutes)
