from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.timeutils import normalize_time


class HoldStatus(StrEnum):
    ACTIVE = "active"
    RELEASED = "released"
    EXPIRED = "expired"
    CONSUMED = "consumed"


class BlockedBy(StrEnum):
    BOOKING = "booking"
    HOLD = "hold"


class _TimeRange(BaseModel):
    start_time: str
    end_time: str

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def normalize(cls, v: str) -> str:
        return normalize_time(v)


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class BoothSummary(BaseModel):
    id: UUID
    name: str
    venue: str
    capacity: int
    hourly_rate: Decimal | None
    operating_hours_start: str
    operating_hours_end: str

    model_config = ConfigDict(from_attributes=True)


class SlotAvailability(BaseModel):
    start_time: str
    end_time: str
    available: bool
    blocked_by: BlockedBy | None = None


class VenueSlot(BaseModel):
    start_time: str
    end_time: str
    available: bool
    capacities: list[int] = Field(default_factory=list)


class BoothAvailability(BaseModel):
    booth_id: UUID
    booking_date: date
    granularity_minutes: int
    slots: list[SlotAvailability]


class VenueAvailability(BaseModel):
    venue: str
    booking_date: date
    granularity_minutes: int
    min_capacity: int
    slots: list[VenueSlot]


class BoothsForSlot(BaseModel):
    venue: str
    booking_date: date
    start_time: str
    end_time: str
    available_booths: list[BoothSummary]


class AvailabilityQuery(BaseModel):
    """Bind to a FastAPI route via Depends(AvailabilityQuery)."""

    booth_id: UUID | None = None
    venue: str | None = None
    booking_date: date
    granularity_minutes: int = 60
    min_capacity: int = Field(default=1, ge=1)


class BoothsForSlotQuery(BaseModel):
    """Query params; times are normalized by the route."""

    venue: str
    booking_date: date
    start_time: str
    end_time: str
    min_capacity: int = Field(default=1, ge=1)


# ---------------------------------------------------------------------------
# Holds
# ---------------------------------------------------------------------------


class HoldCreate(_TimeRange):
    booth_id: UUID
    venue: str = Field(min_length=1, max_length=50)
    booking_date: date
    session_id: str = Field(min_length=1, max_length=255)
    customer_email: str | None = Field(default=None, max_length=255)
    ttl_minutes: int | None = None


class HoldExtend(BaseModel):
    session_id: str = Field(min_length=1, max_length=255)
    ttl_minutes: int | None = None


class HoldRelease(BaseModel):
    session_id: str = Field(min_length=1, max_length=255)


class HoldResponse(BaseModel):
    id: UUID
    booth_id: UUID
    venue: str
    booking_date: date
    start_time: str
    end_time: str
    status: HoldStatus
    expires_at: datetime
    customer_email: str | None = None

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


class FinalizeRequest(BaseModel):
    """
    Booth, venue, date and times are deliberately absent: the hold is the
    only source for them. Extra fields a client sends are dropped.
    """

    hold_id: UUID
    customer_name: str = Field(min_length=1, max_length=255)
    customer_email: str | None = Field(default=None, max_length=255)
    customer_phone: str | None = Field(default=None, max_length=50)
    guest_count: int | None = Field(default=None, ge=1)
    payment_token: str = Field(min_length=1)
    ticket_quantity: int = Field(default=0, ge=0)

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="after")
    def strip_contact(self) -> FinalizeRequest:
        self.customer_name = self.customer_name.strip()
        if not self.customer_name:
            raise ValueError("customer_name must not be blank")
        self.customer_email = (self.customer_email or "").strip() or None
        self.customer_phone = (self.customer_phone or "").strip() or None
        return self


class BookingRef(BaseModel):
    id: UUID
    reference_code: str


class FinalizeResponse(BaseModel):
    booking_id: UUID
    reference_code: str
    transaction_id: str
    guest_list_token: str
    total_amount: Decimal
    karaoke_booking: BookingRef
    ticket_booking: BookingRef | None = None


class ChargeResponse(BaseModel):
    id: UUID
    idempotency_key: str
    transaction_id: str | None
    amount: Decimal
    currency: str
    status: str
    failure_reason: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GuestListTokenCheck(BaseModel):
    valid: bool
    booking_id: UUID | None = None
