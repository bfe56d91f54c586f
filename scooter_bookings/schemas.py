from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from scooter_bookings.models import BookingStatus, BookingType


class UserStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AccountType(StrEnum):
    USER = "user"
    ADMIN = "admin"
    INSTITUTION_MEMBER = "institution_member"


class BookingCreate(BaseModel):
    scooter_pool_id: UUID
    booking_type: BookingType
    # Checked against the configured durations by the allocator
    duration: int
    # Ignored for on-demand bookings, which always start at the current hour
    booking_date: datetime | None = None

    @field_validator("booking_date", mode="after")
    @classmethod
    def require_timezone(cls, v: datetime | None) -> datetime | None:
        if v is None:
            return v
        if v.tzinfo is None:
            raise ValueError("datetime must be timezone-aware (include UTC offset)")
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def reservation_needs_date(self) -> BookingCreate:
        if self.booking_type == BookingType.RESERVATION and self.booking_date is None:
            raise ValueError("booking_date is required for reservations")
        return self


class BookingUpdate(BaseModel):
    """Only the duration of an open booking can change."""

    duration: int


class BookingResponse(BaseModel):
    id: UUID
    customer_id: UUID
    user_id: UUID
    institution_id: UUID | None
    scooter_id: UUID
    scooter_pool_id: UUID
    booking_date: datetime
    booking_end_date: datetime
    duration: int
    booking_type: BookingType
    booking_status: BookingStatus
    started_at: datetime | None = None
    returned_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class BookingPage(BaseModel):
    page: int
    page_size: int
    page_count: int
    total_count: int
    data: list[BookingResponse]


class CancelResponse(BaseModel):
    message: str = "Booking successfully cancelled"


class TimeSlot(BaseModel):
    timeslot: str  # HH:MM, local wall-clock
    already_booked: bool


class AvailableDuration(BaseModel):
    duration: int
    starting_time: str
    ending_time: str
    available: bool


class BookingFilters(BaseModel):
    """Bind to a FastAPI route via Depends(BookingFilters)."""

    status: BookingStatus | None = None
    # Scooter id; anything that is not a UUID matches no booking
    search: str | None = None

    # Sorting
    sort_by: Literal["booking_date", "created_at", "duration"] = "booking_date"
    sort_order: Literal["asc", "desc"] = "asc"

    # Pagination
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


# ---------------------------------------------------------------------------
# users-ms directory representation
# ---------------------------------------------------------------------------


class DirectoryCustomer(BaseModel):
    id: UUID
    institution_id: UUID | None = None


class DirectoryInstitutionMember(BaseModel):
    id: UUID
    institution_id: UUID


class DirectoryUser(BaseModel):
    id: UUID
    status: UserStatus
    account_type: AccountType = AccountType.USER
    customer: DirectoryCustomer | None = None
    institution_member: DirectoryInstitutionMember | None = None
