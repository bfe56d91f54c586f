from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from scooter_bookings import advisor, allocator, lifecycle
from scooter_bookings.crud import booking_crud
from scooter_bookings.deps import (
    CurrentUser,
    UsersClient,
    can_administer_booking,
    can_cancel_booking,
    can_read_booking,
    can_write_booking,
    get_now,
    get_rules,
    get_users_client,
)
from scooter_bookings.errors import BookingError, ErrorCode, store_errors
from scooter_bookings.models import BookingStatus
from scooter_bookings.schemas import (
    AvailableDuration,
    BookingCreate,
    BookingFilters,
    BookingPage,
    BookingResponse,
    BookingUpdate,
    CancelResponse,
    TimeSlot,
)
from scooter_bookings.timewindow import BookingRules, closest_hour_mark

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _parse_statuses(raw: str | None) -> list[BookingStatus]:
    """Comma-separated statuses; unknown values are dropped. Defaults to open."""
    if raw is None:
        return [BookingStatus.OPEN]
    valid = {s.value for s in BookingStatus}
    return [BookingStatus(s) for s in (p.strip() for p in raw.split(",")) if s in valid]


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


@router.get(
    "/available-timeslots/{duration}/{scooter_pool_id}",
    response_model=list[TimeSlot],
)
async def get_available_time_slots(
    duration: int,
    scooter_pool_id: UUID,
    booking_date: str = Query(...),
    current_user: CurrentUser = Depends(can_read_booking),
    users_client: UsersClient = Depends(get_users_client),
    now: datetime = Depends(get_now),
    rules: BookingRules = Depends(get_rules),
) -> list[TimeSlot]:
    return await advisor.get_available_time_slots(
        current_user,
        scooter_pool_id,
        duration,
        booking_date,
        users_client,
        now,
        rules,
    )


@router.get(
    "/available-duration/{scooter_pool_id}",
    response_model=list[AvailableDuration],
)
async def get_available_durations(
    scooter_pool_id: UUID,
    booking_date: str | None = None,
    booking_id: UUID | None = None,
    current_user: CurrentUser = Depends(can_read_booking),
    users_client: UsersClient = Depends(get_users_client),
    now: datetime = Depends(get_now),
    rules: BookingRules = Depends(get_rules),
) -> list[AvailableDuration]:
    return await advisor.get_available_durations(
        current_user,
        scooter_pool_id,
        users_client,
        now,
        rules,
        booking_date=booking_date,
        booking_id=booking_id,
    )


# ---------------------------------------------------------------------------
# Admin / institution endpoints
# ---------------------------------------------------------------------------


@router.get("/admin", response_model=BookingPage)
async def list_administered_bookings(
    filters: BookingFilters = Depends(),
    current_user: CurrentUser = Depends(can_administer_booking),
    users_client: UsersClient = Depends(get_users_client),
) -> BookingPage:
    institution_id = await lifecycle.institution_scope(current_user, users_client)
    async with store_errors():
        return await booking_crud.list_bookings(
            filters=filters, institution_id=institution_id
        )


@router.get("/admin/{booking_id}", response_model=BookingResponse)
async def get_administered_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_administer_booking),
    users_client: UsersClient = Depends(get_users_client),
) -> BookingResponse:
    return await lifecycle.get_administered_booking(
        booking_id, current_user, users_client
    )


@router.post("/admin/{booking_id}/cancel", response_model=CancelResponse)
async def admin_cancel_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_administer_booking),
    users_client: UsersClient = Depends(get_users_client),
) -> CancelResponse:
    return await lifecycle.admin_cancel_booking(booking_id, current_user, users_client)


# ---------------------------------------------------------------------------
# Customer endpoints
# ---------------------------------------------------------------------------


@router.get("/", response_model=list[BookingResponse])
async def list_my_bookings(
    status_filter: str | None = Query(default=None, alias="status"),
    sort_order: Literal["asc", "desc"] = "asc",
    current_user: CurrentUser = Depends(can_read_booking),
    now: datetime = Depends(get_now),
) -> list[BookingResponse]:
    """Upcoming bookings of the caller, from the current hour on."""
    async with store_errors():
        return await booking_crud.list_customer_bookings(
            user_id=current_user.id,
            statuses=_parse_statuses(status_filter),
            since=closest_hour_mark(now),
            descending=sort_order == "desc",
        )


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    current_user: CurrentUser = Depends(can_write_booking),
    users_client: UsersClient = Depends(get_users_client),
    now: datetime = Depends(get_now),
    rules: BookingRules = Depends(get_rules),
) -> BookingResponse:
    return await allocator.reserve(current_user, payload, users_client, now, rules)


@router.get("/{booking_id}/info", response_model=BookingResponse)
async def get_my_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_booking),
) -> BookingResponse:
    async with store_errors():
        booking = await booking_crud.get_booking(booking_id, user_id=current_user.id)
    if booking is None:
        raise BookingError(ErrorCode.BOOKING_NOT_FOUND)
    return booking


@router.patch("/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: UUID,
    payload: BookingUpdate,
    current_user: CurrentUser = Depends(can_write_booking),
    users_client: UsersClient = Depends(get_users_client),
    rules: BookingRules = Depends(get_rules),
) -> BookingResponse:
    return await lifecycle.update_booking(
        booking_id, payload, current_user, users_client, rules
    )


@router.post("/{booking_id}/cancel", response_model=CancelResponse)
async def cancel_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_cancel_booking),
) -> CancelResponse:
    return await lifecycle.cancel_booking(booking_id, current_user)
