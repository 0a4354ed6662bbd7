from datetime import datetime
from enum import StrEnum
from uuid import UUID

from tortoise import fields
from tortoise.models import Model

from app.timeutils import to_utc


class AbstractModel(Model):
    id = fields.UUIDField(primary_key=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        abstract = True


class HoldStatus(StrEnum):
    ACTIVE = "active"  # blocks the slot until expires_at
    RELEASED = "released"  # let go early by the shopper or staff
    EXPIRED = "expired"  # derived on read, never needs a sweeper
    CONSUMED = "consumed"  # converted into a paid booking


class BookingCategory(StrEnum):
    KARAOKE_SESSION = "karaoke_session"
    TICKET_ENTRY = "ticket_entry"
    VENUE_HIRE = "venue_hire"


class BookingStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentStatus(StrEnum):
    UNPAID = "unpaid"
    PAID = "paid"


class ChargeStatus(StrEnum):
    CAPTURED = "captured"  # money taken, bookings not yet written
    ALLOCATED = "allocated"  # funds one or more bookings
    REFUNDED = "refunded"  # booking write failed, refund went through
    ORPHANED = "orphaned"  # booking write failed and refund failed: paid, unbooked


class Booth(AbstractModel):
    """Read-only here; staff tooling owns create/edit."""

    name = fields.CharField(max_length=100)
    venue = fields.CharField(max_length=50, db_index=True)
    capacity = fields.IntField(default=1)
    hourly_rate = fields.DecimalField(max_digits=8, decimal_places=2, null=True)
    operating_hours_start = fields.CharField(max_length=5, default="10:00")
    operating_hours_end = fields.CharField(max_length=5, default="23:00")
    is_available = fields.BooleanField(default=True)  # false while under maintenance
    maintenance_notes = fields.TextField(null=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "booths"


class Hold(AbstractModel):
    booth = fields.ForeignKeyField("models.Booth", related_name="holds")
    venue = fields.CharField(max_length=50)
    booking_date = fields.DateField()
    start_time = fields.CharField(max_length=5)
    end_time = fields.CharField(max_length=5)

    session_id = fields.CharField(max_length=255, db_index=True)
    status = fields.CharEnumField(HoldStatus, default=HoldStatus.ACTIVE)
    expires_at = fields.DatetimeField()
    customer_email = fields.CharField(max_length=255, null=True)
    updated_at = fields.DatetimeField(auto_now=True)

    booth_id: UUID

    class Meta:  # type: ignore
        table = "booth_holds"
        indexes = (("booth_id", "booking_date", "status"),)

    def blocks_at(self, now: datetime) -> bool:
        """A hold blocks only while active and strictly before its expiry."""
        return self.status == HoldStatus.ACTIVE and to_utc(now) < to_utc(self.expires_at)

    def effective_status(self, now: datetime) -> HoldStatus:
        if self.status == HoldStatus.ACTIVE and not self.blocks_at(now):
            return HoldStatus.EXPIRED
        return self.status  # type: ignore


class Charge(AbstractModel):
    """One gateway payment; may fund several bookings (session + tickets)."""

    idempotency_key = fields.CharField(max_length=45, unique=True)
    transaction_id = fields.CharField(max_length=255, null=True, unique=True)
    hold = fields.ForeignKeyField("models.Hold", related_name="charges", null=True)
    amount = fields.DecimalField(max_digits=10, decimal_places=2)
    currency = fields.CharField(max_length=3)
    status = fields.CharEnumField(ChargeStatus, default=ChargeStatus.CAPTURED)
    failure_reason = fields.TextField(null=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "charges"
        ordering = ["-created_at"]


class Booking(AbstractModel):
    customer_name = fields.CharField(max_length=255)
    customer_email = fields.CharField(max_length=255, null=True)
    customer_phone = fields.CharField(max_length=50, null=True)

    category = fields.CharEnumField(BookingCategory)
    venue = fields.CharField(max_length=50)
    booth = fields.ForeignKeyField(
        "models.Booth", related_name="bookings", null=True
    )  # karaoke sessions only
    booking_date = fields.DateField()
    start_time = fields.CharField(max_length=5, null=True)
    end_time = fields.CharField(max_length=5, null=True)
    duration_hours = fields.DecimalField(max_digits=5, decimal_places=2, null=True)
    guest_count = fields.IntField(null=True)
    ticket_quantity = fields.IntField(null=True)

    status = fields.CharEnumField(BookingStatus, default=BookingStatus.PENDING)
    payment_status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.UNPAID)
    total_amount = fields.DecimalField(max_digits=10, decimal_places=2)
    transaction_id = fields.CharField(max_length=255, null=True, unique=True)
    charge = fields.ForeignKeyField("models.Charge", related_name="bookings", null=True)
    reference_code = fields.CharField(max_length=16, unique=True)
    staff_notes = fields.TextField(null=True)
    updated_at = fields.DatetimeField(auto_now=True)

    booth_id: UUID | None
    charge_id: UUID | None

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["-created_at"]


class Guest(AbstractModel):
    booking = fields.ForeignKeyField("models.Booking", related_name="guests")
    guest_name = fields.CharField(max_length=255)
    is_organiser = fields.BooleanField(default=False)

    class Meta:  # type: ignore
        table = "booking_guests"
