from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from enum import StrEnum

from fastapi import HTTPException, status
from loguru import logger
from tortoise.exceptions import BaseORMException


class ErrorCode(StrEnum):
    INVALID_INPUT = "INVALID_INPUT"
    UNAUTHORIZED = "UNAUTHORIZED"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INACTIVE_USER = "INACTIVE_USER"
    INVALID_BOOKING_TIME = "INVALID_BOOKING_TIME"
    INVALID_BOOKING_REQUEST = "INVALID_BOOKING_REQUEST"
    DUPLICATE_BOOKING = "DUPLICATE_BOOKING"
    NO_AVAILABLE_SCOOTER = "NO_AVAILABLE_SCOOTER"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    UPDATE_BOOKING_SCOOTER_CONFLICT = "UPDATE_BOOKING_SCOOTER_CONFLICT"
    INTERNAL_SERVER_ERROR = "INTERNAL_ERROR"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_INPUT: "Invalid input provided.",
    ErrorCode.UNAUTHORIZED: "Unauthorized access.",
    ErrorCode.USER_NOT_FOUND: "User not found.",
    ErrorCode.INACTIVE_USER: (
        "User is inactive. Please contact administrator for assistance."
    ),
    ErrorCode.INVALID_BOOKING_TIME: "Booking is outside of business hours.",
    ErrorCode.INVALID_BOOKING_REQUEST: (
        "Invalid booking request. Please contact support for assistance."
    ),
    ErrorCode.DUPLICATE_BOOKING: "Duplicate booking found.",
    ErrorCode.NO_AVAILABLE_SCOOTER: "No available scooter.",
    ErrorCode.BOOKING_NOT_FOUND: "Booking not found.",
    ErrorCode.UPDATE_BOOKING_SCOOTER_CONFLICT: (
        "Unable to update booking, the scooter is already reserved "
        "within the new timeslot."
    ),
    ErrorCode.INTERNAL_SERVER_ERROR: "Internal server error.",
}

_DEFAULT_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    ErrorCode.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorCode.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INACTIVE_USER: status.HTTP_403_FORBIDDEN,
    ErrorCode.INVALID_BOOKING_TIME: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_BOOKING_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorCode.DUPLICATE_BOOKING: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NO_AVAILABLE_SCOOTER: status.HTTP_404_NOT_FOUND,
    ErrorCode.BOOKING_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UPDATE_BOOKING_SCOOTER_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.INTERNAL_SERVER_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class BookingError(HTTPException):
    """
    Typed domain failure. The HTTP layer renders it as-is:
    ``{"detail": {"message": ..., "error_code": ...}}``.
    """

    def __init__(self, error_code: ErrorCode, status_code: int | None = None):
        self.error_code = error_code
        super().__init__(
            status_code=status_code or _DEFAULT_STATUS[error_code],
            detail={"message": ERROR_MESSAGES[error_code], "error_code": error_code},
        )


@asynccontextmanager
async def store_errors() -> AsyncIterator[None]:
    """Normalize unexpected ORM failures to INTERNAL_SERVER_ERROR."""
    try:
        yield
    except BaseORMException:
        logger.exception("Unexpected store failure")
        raise BookingError(ErrorCode.INTERNAL_SERVER_ERROR) from None
