"""
Pure helpers over instants and booking windows.

No database, no async, no FastAPI. Every booking window is half-open:
``[start, end)``. Hours are wall-clock hours in the rules' timezone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from scooter_bookings import settings


@dataclass(frozen=True)
class BookingRules:
    """Business hours, hand-back buffer and the offered durations."""

    opening_hour: int = settings.OPENING_HOUR
    closing_hour: int = settings.CLOSING_HOUR
    buffer_minutes: int = settings.BUFFER_MINUTES
    durations: tuple[int, ...] = settings.DURATIONS
    tz: ZoneInfo = field(default_factory=lambda: ZoneInfo(settings.TIMEZONE))

    def local(self, instant: datetime) -> datetime:
        return instant.astimezone(self.tz)

    def opening(self, day: date) -> datetime:
        return datetime(day.year, day.month, day.day, self.opening_hour, tzinfo=self.tz)

    def closing(self, day: date) -> datetime:
        return datetime(day.year, day.month, day.day, self.closing_hour, tzinfo=self.tz)

    def within_business_hours(self, start: datetime, duration: int) -> bool:
        """
        True if ``start`` lies in [opening, closing] and the whole window
        ends no later than closing, both on the start's local day.
        """
        local_start = self.local(start)
        day = local_start.date()
        if local_start < self.opening(day) or local_start > self.closing(day):
            return False
        return local_start + timedelta(minutes=duration) <= self.closing(day)

    def start_time_block(self, day: date, now: datetime) -> int:
        """
        First hour block slots may start at on ``day``.

        Today: the current hour, bumped by one once past the top of the hour,
        never earlier than opening. Any other day: the opening hour.
        """
        local_now = self.local(now)
        if day != local_now.date():
            return self.opening_hour
        if local_now.hour < self.opening_hour:
            return self.opening_hour
        if local_now != closest_hour_mark(local_now):
            return local_now.hour + 1
        return local_now.hour


def closest_hour_mark(instant: datetime) -> datetime:
    """Truncate minutes, seconds and microseconds."""
    return instant.replace(minute=0, second=0, microsecond=0)


def format_hour(hour: int) -> str:
    # end hours computed from durations can run past midnight
    if hour > 24:
        hour -= 24
    return f"{hour:02d}:00"


def format_slot(instant: datetime) -> str:
    return instant.strftime("%H:%M")


def buffered_window(
    start: datetime, duration: int, buffer_minutes: int
) -> tuple[datetime, datetime]:
    """``[start - buffer, start + duration + buffer]`` for store-side conflict queries."""
    buffer = timedelta(minutes=buffer_minutes)
    return start - buffer, start + timedelta(minutes=duration) + buffer


def overlaps_with_buffer(
    candidate_start: datetime,
    candidate_end: datetime,
    existing_start: datetime,
    existing_end: datetime,
    buffer_minutes: int,
) -> bool:
    """
    Expand the existing window by ``buffer_minutes`` on both sides and report
    whether the candidate starts inside it, ends inside it, or swallows it.
    """
    buffer = timedelta(minutes=buffer_minutes)
    lo = existing_start - buffer
    hi = existing_end + buffer
    return (
        (lo <= candidate_start < hi)
        or (lo < candidate_end <= hi)
        or (candidate_start <= lo and candidate_end >= hi)
    )


def overlaps_exact(
    candidate_start: datetime,
    candidate_end: datetime,
    existing_start: datetime,
    existing_end: datetime,
) -> bool:
    return overlaps_with_buffer(
        candidate_start, candidate_end, existing_start, existing_end, 0
    )


def day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Local midnight-to-midnight window ``[start, end)`` for ``day``."""
    start = datetime(day.year, day.month, day.day, tzinfo=tz)
    return start, start + timedelta(days=1)
