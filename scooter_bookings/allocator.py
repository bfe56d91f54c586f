from datetime import UTC, datetime
from uuid import UUID

from fastapi import status
from loguru import logger

from scooter_bookings.cache import invalidate_slots_cache
from scooter_bookings.crud import booking_crud
from scooter_bookings.deps import CurrentUser, UsersClient
from scooter_bookings.errors import BookingError, ErrorCode, store_errors
from scooter_bookings.models import BookingType
from scooter_bookings.schemas import (
    BookingCreate,
    BookingResponse,
    DirectoryUser,
    UserStatus,
)
from scooter_bookings.timewindow import BookingRules, closest_hour_mark


async def resolve_customer(
    user_id: UUID, caller: CurrentUser, users_client: UsersClient
) -> DirectoryUser:
    """Directory record of an active customer, or USER_NOT_FOUND / INACTIVE_USER."""
    user = await users_client.find_user_by_id(user_id, caller)
    if user.customer is None:
        raise BookingError(ErrorCode.USER_NOT_FOUND)
    if user.status != UserStatus.ACTIVE:
        raise BookingError(ErrorCode.INACTIVE_USER)
    return user


def check_duration(duration: int, rules: BookingRules) -> int:
    if duration not in rules.durations:
        raise BookingError(ErrorCode.INVALID_INPUT)
    return duration


def validate_booking_hours(start: datetime, duration: int, rules: BookingRules) -> None:
    if not rules.within_business_hours(start, duration):
        raise BookingError(ErrorCode.INVALID_BOOKING_TIME)


def on_demand_start(now: datetime, rules: BookingRules) -> datetime:
    """On-demand bookings start at the top of the current local hour."""
    return closest_hour_mark(rules.local(now)).astimezone(UTC)


async def reserve(
    caller: CurrentUser,
    payload: BookingCreate,
    users_client: UsersClient,
    now: datetime,
    rules: BookingRules,
) -> BookingResponse:
    """
    Validate a booking request end to end and book one free scooter of the pool.

    Each step fails fast and nothing is written before the final create:
      1. duration is one of the offered options
      2. active customer
      3. on-demand start snapped to the current hour
      4. business hours
      5. pool access
      6. no identical-start booking of the same customer
      7-8. free scooter found and booked atomically
    """
    check_duration(payload.duration, rules)
    user = await resolve_customer(caller.id, caller, users_client)
    customer = user.customer

    start = payload.booking_date
    if payload.booking_type == BookingType.ON_DEMAND or start is None:
        start = on_demand_start(now, rules)

    validate_booking_hours(start, payload.duration, rules)

    async with store_errors():
        if not await booking_crud.has_pool_access(customer.id, payload.scooter_pool_id):
            logger.warning(
                "Customer {} has no access to scooter pool {}",
                customer.id,
                payload.scooter_pool_id,
            )
            raise BookingError(
                ErrorCode.INVALID_BOOKING_REQUEST, status.HTTP_400_BAD_REQUEST
            )

        if await booking_crud.has_duplicate(customer.id, start):
            raise BookingError(ErrorCode.DUPLICATE_BOOKING)

        booking = await booking_crud.reserve_scooter(
            pool_id=payload.scooter_pool_id,
            customer_id=customer.id,
            user_id=user.id,
            institution_id=customer.institution_id,
            start=start,
            duration=payload.duration,
            booking_type=payload.booking_type,
            buffer_minutes=rules.buffer_minutes,
        )

    logger.info(
        "Booking {} created: scooter={} start={} duration={}",
        booking.id,
        booking.scooter_id,
        booking.booking_date,
        booking.duration,
    )
    await invalidate_slots_cache(booking.scooter_pool_id)
    return booking
