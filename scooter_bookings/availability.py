from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from uuid import UUID

from scooter_bookings.schemas import TimeSlot
from scooter_bookings.timewindow import (
    BookingRules,
    format_slot,
    overlaps_exact,
    overlaps_with_buffer,
)

SLOT_STEP = timedelta(hours=1)


@dataclass(frozen=True)
class BookedWindow:
    """A non-cancelled booking as seen by the calculator."""

    customer_id: UUID
    booking_date: datetime
    booking_end_date: datetime


@dataclass
class ScooterAgenda:
    """One scooter of a pool with its bookings touching the requested day."""

    scooter_id: UUID
    bookings: list[BookedWindow] = field(default_factory=list)


def calculate_available_time_slots(
    day: date,
    customer_id: UUID | None,
    agendas: list[ScooterAgenda],
    start_block: int,
    end_block: int,
    duration: int,
    rules: BookingRules,
) -> list[TimeSlot]:
    """
    Offerable start times on ``day`` for a ``duration``-minute booking.

    A slot is offerable when some scooter has room for the whole window
    before ``end_block`` with no buffered overlap. Independently a slot is
    flagged ``already_booked`` when the customer holds a booking overlapping
    it on any scooter of the pool, offerable there or not.
    """
    if start_block >= end_block:
        return []

    first = datetime(day.year, day.month, day.day, start_block, tzinfo=rules.tz)
    end = datetime(day.year, day.month, day.day, end_block, tzinfo=rules.tz)
    length = timedelta(minutes=duration)

    offerable: set[str] = set()
    already_booked: set[str] = set()

    for agenda in agendas:
        slot = first
        while slot < end:
            slot_end = slot + length
            label = format_slot(slot)

            if slot_end <= end and not any(
                overlaps_with_buffer(
                    slot,
                    slot_end,
                    b.booking_date,
                    b.booking_end_date,
                    rules.buffer_minutes,
                )
                for b in agenda.bookings
            ):
                offerable.add(label)

            if customer_id is not None and any(
                b.customer_id == customer_id
                and overlaps_exact(slot, slot_end, b.booking_date, b.booking_end_date)
                for b in agenda.bookings
            ):
                already_booked.add(label)

            slot += SLOT_STEP

    # HH:MM labels share one width, so lexical order is chronological
    return [
        TimeSlot(timeslot=label, already_booked=label in already_booked)
        for label in sorted(offerable)
    ]
