from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta
from uuid import UUID

from fastapi import status
from tortoise.expressions import Q
from tortoise.query_utils import Prefetch
from tortoise.transactions import in_transaction

from scooter_bookings.availability import BookedWindow, ScooterAgenda
from scooter_bookings.errors import BookingError, ErrorCode
from scooter_bookings.models import (
    Booking,
    BookingStatus,
    BookingType,
    PoolMembership,
    Scooter,
    ScooterStatus,
)
from scooter_bookings.schemas import BookingFilters, BookingPage, BookingResponse
from scooter_bookings.timewindow import buffered_window

# Cancelled and closed bookings never block a reschedule
_ACTIVE_STATUSES = [BookingStatus.OPEN, BookingStatus.ONGOING]


def _conflicts(start: datetime, duration: int, buffer_minutes: int) -> Q:
    """Non-cancelled bookings overlapping ``[start, start + duration)`` widened by the buffer."""
    lo, hi = buffered_window(start, duration, buffer_minutes)
    return Q(booking_date__lt=hi, booking_end_date__gt=lo) & ~Q(
        booking_status=BookingStatus.CANCELLED
    )


def _to_response(inst: Booking) -> BookingResponse:
    return BookingResponse.model_validate(inst, from_attributes=True)


class BookingCRUD:
    async def has_pool_access(self, customer_id: UUID, pool_id: UUID) -> bool:
        return await PoolMembership.filter(
            customer_id=customer_id, pool_id=pool_id
        ).exists()

    async def has_duplicate(self, customer_id: UUID, booking_date: datetime) -> bool:
        """Same customer, identical start instant, not cancelled."""
        return (
            await Booking.filter(customer_id=customer_id, booking_date=booking_date)
            .exclude(booking_status=BookingStatus.CANCELLED)
            .exists()
        )

    async def _pick_scooter(
        self,
        candidates: list[Scooter],
        start: datetime,
        duration: int,
        buffer_minutes: int,
    ) -> Scooter | None:
        if not candidates:
            return None
        busy = set(
            await Booking.filter(
                _conflicts(start, duration, buffer_minutes),
                scooter_id__in=[s.id for s in candidates],
            ).values_list("scooter_id", flat=True)
        )
        return next((s for s in candidates if s.id not in busy), None)

    async def find_available_scooter(
        self,
        pool_id: UUID,
        start: datetime,
        duration: int,
        buffer_minutes: int,
    ) -> Scooter | None:
        """Any scooter of the pool that is not unavailable and has room for the window."""
        candidates = (
            await Scooter.filter(pool_id=pool_id)
            .exclude(status=ScooterStatus.UNAVAILABLE)
            .order_by("id")
        )
        return await self._pick_scooter(candidates, start, duration, buffer_minutes)

    async def reserve_scooter(
        self,
        pool_id: UUID,
        customer_id: UUID,
        user_id: UUID,
        institution_id: UUID | None,
        start: datetime,
        duration: int,
        booking_type: BookingType,
        buffer_minutes: int,
    ) -> BookingResponse:
        """
        Find a free scooter and book it in one transaction.
        Raises NO_AVAILABLE_SCOOTER when the pool has no room for the window.
        """
        async with in_transaction():
            # Lock the pool's scooters first: concurrent reservations on the
            # same pool queue here and see each other's committed bookings.
            candidates = (
                await Scooter.filter(pool_id=pool_id)
                .exclude(status=ScooterStatus.UNAVAILABLE)
                .order_by("id")
                .select_for_update()
            )
            scooter = await self._pick_scooter(
                candidates, start, duration, buffer_minutes
            )
            if scooter is None:
                raise BookingError(ErrorCode.NO_AVAILABLE_SCOOTER)

            inst = await Booking.create(
                customer_id=customer_id,
                user_id=user_id,
                institution_id=institution_id,
                scooter_id=scooter.id,
                scooter_pool_id=pool_id,
                booking_date=start,
                booking_end_date=start + timedelta(minutes=duration),
                duration=duration,
                booking_type=booking_type,
            )

        return _to_response(inst)

    async def is_scooter_free(
        self,
        scooter_id: UUID,
        start: datetime,
        duration: int,
        buffer_minutes: int,
        exclude_id: UUID,
    ) -> bool:
        """Reschedule check on the booking's own scooter, ignoring the booking itself."""
        if not await Scooter.filter(id=scooter_id).exclude(
            status=ScooterStatus.UNAVAILABLE
        ).exists():
            return False
        return not await (
            Booking.filter(
                _conflicts(start, duration, buffer_minutes), scooter_id=scooter_id
            )
            .exclude(id=exclude_id)
            .exists()
        )

    async def has_conflict(
        self,
        scooter_id: UUID,
        start: datetime,
        duration: int,
        buffer_minutes: int,
        exclude_id: UUID,
    ) -> bool:
        """Open or ongoing bookings on the scooter that would collide with the window."""
        lo, hi = buffered_window(start, duration, buffer_minutes)
        return (
            await Booking.filter(
                scooter_id=scooter_id,
                booking_status__in=_ACTIVE_STATUSES,
                booking_date__lt=hi,
                booking_end_date__gt=lo,
            )
            .exclude(id=exclude_id)
            .exists()
        )

    async def list_pool_scooters_with_bookings(
        self,
        customer_id: UUID,
        pool_id: UUID,
        day_start: datetime,
        day_end: datetime,
    ) -> list[ScooterAgenda]:
        """
        Available scooters of the pool with their non-cancelled bookings that
        start or end inside ``[day_start, day_end)``. Empty when the customer
        has no access to the pool.
        """
        if not await self.has_pool_access(customer_id, pool_id):
            return []

        touching_day = (
            Booking.filter(
                Q(booking_date__gte=day_start, booking_date__lt=day_end)
                | Q(booking_end_date__gte=day_start, booking_end_date__lt=day_end)
            )
            .exclude(booking_status=BookingStatus.CANCELLED)
            .order_by("booking_date")
        )
        scooters = (
            await Scooter.filter(pool_id=pool_id)
            .exclude(status=ScooterStatus.UNAVAILABLE)
            .order_by("id")
            .prefetch_related(Prefetch("bookings", queryset=touching_day))
        )
        return [
            ScooterAgenda(
                scooter_id=s.id,
                bookings=[
                    BookedWindow(
                        customer_id=b.customer_id,
                        booking_date=b.booking_date,
                        booking_end_date=b.booking_end_date,
                    )
                    for b in s.bookings
                ],
            )
            for s in scooters
        ]

    async def get_booking(
        self,
        booking_id: UUID,
        user_id: UUID | None = None,
        institution_id: UUID | None = None,
    ) -> BookingResponse | None:
        if user_id is not None:
            inst = await Booking.get_or_none(id=booking_id, user_id=user_id)
        elif institution_id is not None:
            inst = await Booking.get_or_none(
                id=booking_id, institution_id=institution_id
            )
        else:
            inst = await Booking.get_or_none(id=booking_id)

        if not inst:
            return None
        return _to_response(inst)

    async def list_customer_bookings(
        self,
        user_id: UUID,
        statuses: list[BookingStatus],
        since: datetime,
        descending: bool = False,
    ) -> list[BookingResponse]:
        bookings = await Booking.filter(
            user_id=user_id,
            booking_status__in=statuses,
            booking_date__gte=since,
        ).order_by("-booking_date" if descending else "booking_date")
        return [_to_response(b) for b in bookings]

    async def list_bookings(
        self,
        filters: BookingFilters,
        institution_id: UUID | None = None,
    ) -> BookingPage:
        qs = Booking.all()

        if institution_id is not None:
            qs = qs.filter(institution_id=institution_id)
        if filters.status is not None:
            qs = qs.filter(booking_status=filters.status)
        if filters.search:
            try:
                scooter_id = UUID(filters.search.strip())
            except ValueError:
                return BookingPage(
                    page=filters.page,
                    page_size=filters.page_size,
                    page_count=0,
                    total_count=0,
                    data=[],
                )
            qs = qs.filter(Q(scooter_id=scooter_id))

        total = await qs.count()
        order = filters.sort_by if filters.sort_order == "asc" else f"-{filters.sort_by}"
        offset = (filters.page - 1) * filters.page_size
        bookings = await qs.order_by(order, "id").offset(offset).limit(filters.page_size)

        return BookingPage(
            page=filters.page,
            page_size=filters.page_size,
            page_count=math.ceil(total / filters.page_size),
            total_count=total,
            data=[_to_response(b) for b in bookings],
        )

    async def update_booking_status(
        self,
        booking_id: UUID,
        new_status: BookingStatus,
        expected_status: BookingStatus,
    ) -> BookingResponse | None:
        """
        Compare-and-set on the status column. None when the booking is gone
        or no longer in ``expected_status``.
        """
        updated = await Booking.filter(
            id=booking_id, booking_status=expected_status
        ).update(booking_status=new_status, updated_at=datetime.now(UTC))
        if not updated:
            return None
        return _to_response(await Booking.get(id=booking_id))

    async def update_booking_duration(
        self,
        booking_id: UUID,
        duration: int,
        buffer_minutes: int,
    ) -> BookingResponse | None:
        """
        Re-check the booking's scooter for conflicts and persist only
        ``duration`` and the recomputed ``booking_end_date``, atomically.
        """
        async with in_transaction():
            inst = await Booking.filter(id=booking_id).select_for_update().first()
            if not inst:
                return None
            if inst.booking_status != BookingStatus.OPEN:
                raise BookingError(
                    ErrorCode.INVALID_BOOKING_REQUEST, status.HTTP_409_CONFLICT
                )
            await Scooter.filter(id=inst.scooter_id).select_for_update()

            if await self.has_conflict(
                inst.scooter_id,
                inst.booking_date,
                duration,
                buffer_minutes,
                exclude_id=inst.id,
            ):
                raise BookingError(ErrorCode.UPDATE_BOOKING_SCOOTER_CONFLICT)

            inst.duration = duration
            inst.booking_end_date = inst.booking_date + timedelta(minutes=duration)
            await inst.save(
                update_fields=["duration", "booking_end_date", "updated_at"]
            )

        return _to_response(inst)


booking_crud = BookingCRUD()
