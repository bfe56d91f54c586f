from uuid import UUID

from fastapi import status
from loguru import logger

from scooter_bookings.allocator import (
    check_duration,
    resolve_customer,
    validate_booking_hours,
)
from scooter_bookings.cache import invalidate_slots_cache
from scooter_bookings.crud import booking_crud
from scooter_bookings.deps import CurrentUser, UsersClient
from scooter_bookings.errors import BookingError, ErrorCode, store_errors
from scooter_bookings.models import BookingStatus
from scooter_bookings.schemas import (
    AccountType,
    BookingResponse,
    BookingUpdate,
    CancelResponse,
)
from scooter_bookings.timewindow import BookingRules

# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

_VALID_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.OPEN: {BookingStatus.CANCELLED, BookingStatus.ONGOING},
    BookingStatus.ONGOING: {BookingStatus.CLOSED},
    BookingStatus.CLOSED: set(),
    BookingStatus.CANCELLED: set(),
}

# Duration and end date only change while the scooter is still unpicked
MUTABLE_STATUSES = {BookingStatus.OPEN}


def _invalid_request() -> BookingError:
    return BookingError(ErrorCode.INVALID_BOOKING_REQUEST, status.HTTP_409_CONFLICT)


def assert_transition(old_status: BookingStatus, new_status: BookingStatus) -> None:
    """Raise INVALID_BOOKING_REQUEST (409) unless old → new is in the transition table."""
    if new_status not in _VALID_TRANSITIONS.get(old_status, set()):
        raise _invalid_request()


def assert_mutable(booking: BookingResponse) -> None:
    if booking.booking_status not in MUTABLE_STATUSES:
        raise _invalid_request()


# ---------------------------------------------------------------------------
# Institution scoping
# ---------------------------------------------------------------------------


async def institution_scope(
    caller: CurrentUser, users_client: UsersClient
) -> UUID | None:
    """
    None for admins (every booking is visible), otherwise the caller's
    institution id. Anyone else is UNAUTHORIZED.
    """
    if caller.is_admin:
        return None
    user = await users_client.find_user_by_id(caller.id, caller)
    if user.account_type == AccountType.ADMIN:
        return None
    if (
        user.account_type == AccountType.INSTITUTION_MEMBER
        and user.institution_member is not None
    ):
        return user.institution_member.institution_id
    raise BookingError(ErrorCode.UNAUTHORIZED)


async def get_administered_booking(
    booking_id: UUID, caller: CurrentUser, users_client: UsersClient
) -> BookingResponse:
    """Bookings of other institutions are reported as not found."""
    institution_id = await institution_scope(caller, users_client)
    async with store_errors():
        booking = await booking_crud.get_booking(
            booking_id, institution_id=institution_id
        )
    if booking is None:
        raise BookingError(ErrorCode.BOOKING_NOT_FOUND)
    return booking


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def _cancel(booking: BookingResponse, caller: CurrentUser) -> CancelResponse:
    assert_transition(booking.booking_status, BookingStatus.CANCELLED)

    async with store_errors():
        updated = await booking_crud.update_booking_status(
            booking.id,
            BookingStatus.CANCELLED,
            expected_status=booking.booking_status,
        )
    # lost a race against another status change
    if updated is None:
        raise _invalid_request()

    logger.info("Booking {} cancelled by {}", booking.id, caller.id)
    await invalidate_slots_cache(booking.scooter_pool_id)
    return CancelResponse()


async def cancel_booking(booking_id: UUID, caller: CurrentUser) -> CancelResponse:
    """Self-service cancel: only the booking's own customer, only while open."""
    async with store_errors():
        booking = await booking_crud.get_booking(booking_id, user_id=caller.id)
    if booking is None:
        raise BookingError(ErrorCode.BOOKING_NOT_FOUND)
    return await _cancel(booking, caller)


async def admin_cancel_booking(
    booking_id: UUID, caller: CurrentUser, users_client: UsersClient
) -> CancelResponse:
    booking = await get_administered_booking(booking_id, caller, users_client)
    return await _cancel(booking, caller)


async def update_booking(
    booking_id: UUID,
    payload: BookingUpdate,
    caller: CurrentUser,
    users_client: UsersClient,
    rules: BookingRules,
) -> BookingResponse:
    """
    Change the duration of an open booking, keeping its start.

    Business hours are re-checked for the new duration, then the scooter is
    re-checked for open or ongoing bookings colliding with the new window.
    """
    check_duration(payload.duration, rules)
    async with store_errors():
        booking = await booking_crud.get_booking(booking_id, user_id=caller.id)
    if booking is None:
        raise BookingError(ErrorCode.BOOKING_NOT_FOUND)
    assert_mutable(booking)

    await resolve_customer(caller.id, caller, users_client)
    validate_booking_hours(booking.booking_date, payload.duration, rules)

    async with store_errors():
        updated = await booking_crud.update_booking_duration(
            booking_id, payload.duration, rules.buffer_minutes
        )
    if updated is None:
        raise BookingError(ErrorCode.BOOKING_NOT_FOUND)

    logger.info(
        "Booking {} duration changed {} → {}",
        booking_id,
        booking.duration,
        updated.duration,
    )
    await invalidate_slots_cache(updated.scooter_pool_id)
    return updated
