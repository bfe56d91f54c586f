"""
Availability queries: offerable time slots for a day, and which of the
configured durations can currently be booked.

The duration advisor has three mutually exclusive modes, picked by which
optional input is given:
  - booking id   → reschedule: the booking's own scooter, anchored at its start
  - booking date → the whole day through the availability calculator
  - neither      → right now, on any scooter of the pool
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from uuid import UUID

from loguru import logger

from scooter_bookings.allocator import check_duration
from scooter_bookings.availability import calculate_available_time_slots
from scooter_bookings.cache import get_slots_cache, set_slots_cache
from scooter_bookings.crud import booking_crud
from scooter_bookings.deps import CurrentUser, UsersClient
from scooter_bookings.errors import BookingError, ErrorCode, store_errors
from scooter_bookings.lifecycle import MUTABLE_STATUSES
from scooter_bookings.schemas import AvailableDuration, TimeSlot
from scooter_bookings.timewindow import (
    BookingRules,
    closest_hour_mark,
    day_bounds,
    format_hour,
)


def parse_booking_date(value: str, rules: BookingRules) -> date:
    """Accepts ``YYYY-MM-DD`` or a full ISO datetime; anything else is INVALID_INPUT."""
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise BookingError(ErrorCode.INVALID_INPUT) from None
    if parsed.tzinfo is not None:
        parsed = rules.local(parsed)
    return parsed.date()


async def _customer_id(
    caller: CurrentUser, users_client: UsersClient
) -> UUID | None:
    user = await users_client.find_user_by_id(caller.id, caller)
    return user.customer.id if user.customer else None


# ---------------------------------------------------------------------------
# Time slots
# ---------------------------------------------------------------------------


async def get_available_time_slots(
    caller: CurrentUser,
    pool_id: UUID,
    duration: int,
    booking_date: str,
    users_client: UsersClient,
    now: datetime,
    rules: BookingRules,
) -> list[TimeSlot]:
    day = parse_booking_date(booking_date, rules)
    check_duration(duration, rules)
    customer_id = await _customer_id(caller, users_client)
    if customer_id is None:
        return []

    start_block = rules.start_time_block(day, now)
    if start_block >= rules.closing_hour:
        return []

    cached = await get_slots_cache(pool_id, day, start_block, duration, customer_id)
    if cached is not None:
        logger.debug("Cache hit for slots: pool_id={} day={}", pool_id, day)
        return [TimeSlot(**s) for s in cached]

    logger.debug("Cache miss for slots: pool_id={} day={}", pool_id, day)
    day_start, day_end = day_bounds(day, rules.tz)
    async with store_errors():
        agendas = await booking_crud.list_pool_scooters_with_bookings(
            customer_id, pool_id, day_start, day_end
        )

    slots = calculate_available_time_slots(
        day,
        customer_id,
        agendas,
        start_block,
        rules.closing_hour,
        duration,
        rules,
    )
    await set_slots_cache(
        pool_id,
        day,
        start_block,
        duration,
        customer_id,
        [s.model_dump(mode="json") for s in slots],
    )
    return slots


# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------


async def current_time_durations(
    pool_id: UUID, now: datetime, rules: BookingRules
) -> list[AvailableDuration]:
    """Durations bookable on demand, starting at the top of the current hour."""
    start = closest_hour_mark(rules.local(now))
    result = []
    for duration in rules.durations:
        end_hour = start.hour + duration // 60
        available = False
        if rules.within_business_hours(start, duration):
            scooter = await booking_crud.find_available_scooter(
                pool_id, start.astimezone(UTC), duration, rules.buffer_minutes
            )
            available = scooter is not None
        result.append(
            AvailableDuration(
                duration=duration,
                starting_time=format_hour(start.hour),
                ending_time=format_hour(end_hour),
                available=available,
            )
        )
    return result


async def booking_date_durations(
    customer_id: UUID | None,
    pool_id: UUID,
    day: date,
    now: datetime,
    rules: BookingRules,
) -> list[AvailableDuration]:
    """A duration is available when at least one slot of the day offers it."""
    agendas = []
    if customer_id is not None:
        day_start, day_end = day_bounds(day, rules.tz)
        agendas = await booking_crud.list_pool_scooters_with_bookings(
            customer_id, pool_id, day_start, day_end
        )
    start_block = rules.start_time_block(day, now)

    return [
        AvailableDuration(
            duration=duration,
            # many slots may apply, so no single start/end to report
            starting_time="",
            ending_time="",
            available=bool(
                calculate_available_time_slots(
                    day,
                    customer_id,
                    agendas,
                    start_block,
                    rules.closing_hour,
                    duration,
                    rules,
                )
            ),
        )
        for duration in rules.durations
    ]


async def booking_id_durations(
    user_id: UUID, booking_id: UUID, rules: BookingRules
) -> list[AvailableDuration]:
    """Durations the caller's booking could be changed to, on its own scooter."""
    booking = await booking_crud.get_booking(booking_id, user_id=user_id)
    if booking is None:
        raise BookingError(ErrorCode.BOOKING_NOT_FOUND)

    start = rules.local(booking.booking_date)
    # only open bookings can be rescheduled
    mutable = booking.booking_status in MUTABLE_STATUSES
    result = []
    for duration in rules.durations:
        end_hour = start.hour + duration // 60
        available = False
        if mutable and rules.within_business_hours(start, duration):
            available = await booking_crud.is_scooter_free(
                booking.scooter_id,
                booking.booking_date,
                duration,
                rules.buffer_minutes,
                exclude_id=booking.id,
            )
        result.append(
            AvailableDuration(
                duration=duration,
                starting_time=format_hour(start.hour),
                ending_time=format_hour(end_hour),
                available=available,
            )
        )
    return result


async def get_available_durations(
    caller: CurrentUser,
    pool_id: UUID,
    users_client: UsersClient,
    now: datetime,
    rules: BookingRules,
    booking_date: str | None = None,
    booking_id: UUID | None = None,
) -> list[AvailableDuration]:
    customer_id = await _customer_id(caller, users_client)

    async with store_errors():
        if booking_id is not None:
            return await booking_id_durations(caller.id, booking_id, rules)
        if booking_date:
            day = parse_booking_date(booking_date, rules)
            return await booking_date_durations(
                customer_id, pool_id, day, now, rules
            )
        return await current_time_durations(pool_id, now, rules)
