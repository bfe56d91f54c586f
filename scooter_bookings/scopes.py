from enum import StrEnum


class BookingScope(StrEnum):
    # Customer scopes
    READ = "bookings:read"  # view own bookings and availability
    WRITE = "bookings:write"  # reserve a scooter, change own booking duration
    CANCEL = "bookings:cancel"  # cancel own booking

    # Institution member scope
    INSTITUTION = "bookings:institution"  # view / cancel own institution's bookings

    # Admin scope
    ADMIN = "admin:bookings"
