from enum import StrEnum

from tortoise import fields
from tortoise.models import Model


class BookingStatus(StrEnum):
    OPEN = "open"  # reserved, scooter not yet taken
    ONGOING = "ongoing"  # scooter picked up
    CLOSED = "closed"  # scooter returned
    CANCELLED = "cancelled"  # cancelled by customer or admin


class BookingType(StrEnum):
    ON_DEMAND = "on_demand"
    RESERVATION = "reservation"


class ScooterStatus(StrEnum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class ScooterPool(Model):
    id = fields.UUIDField(primary_key=True)
    name = fields.CharField(max_length=255, unique=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "scooter_pools"


class Scooter(Model):
    id = fields.UUIDField(primary_key=True)
    name = fields.CharField(max_length=255)
    pool = fields.ForeignKeyField(
        "models.ScooterPool", related_name="scooters", on_delete=fields.RESTRICT
    )
    status = fields.CharEnumField(ScooterStatus, default=ScooterStatus.AVAILABLE)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "scooters"


class PoolMembership(Model):
    """Access grant: a customer may book scooters of the pool."""

    id = fields.UUIDField(primary_key=True)
    customer_id = fields.UUIDField()
    pool = fields.ForeignKeyField(
        "models.ScooterPool", related_name="memberships", on_delete=fields.CASCADE
    )

    class Meta:  # type: ignore
        table = "pool_memberships"
        unique_together = (("customer_id", "pool"),)


class Booking(Model):
    id = fields.UUIDField(primary_key=True)

    customer_id = fields.UUIDField()
    user_id = fields.UUIDField()  # directory account behind the customer
    institution_id = fields.UUIDField(null=True)  # denormalized snapshot

    scooter = fields.ForeignKeyField(
        "models.Scooter", related_name="bookings", on_delete=fields.RESTRICT
    )
    scooter_pool_id = fields.UUIDField()  # denormalized from the scooter

    booking_date = fields.DatetimeField()  # inclusive start
    booking_end_date = fields.DatetimeField()  # exclusive end
    duration = fields.IntField()  # minutes

    booking_type = fields.CharEnumField(BookingType)
    booking_status = fields.CharEnumField(BookingStatus, default=BookingStatus.OPEN)

    started_at = fields.DatetimeField(null=True)
    returned_at = fields.DatetimeField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["booking_date"]
