"""
Pay-and-book: turn an active hold into paid, confirmed bookings.

Order of work:
  hold validation -> pricing -> gateway charge -> persistence.
The card is charged before any booking row exists and outside any database
transaction. If persistence then fails, the charge is refunded (or recorded
as orphaned for staff) and the caller gets a distinct error.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from loguru import logger
from tortoise.transactions import in_transaction

from app import settings
from app.cache import invalidate_availability_cache
from app.crud import booking_crud, booth_crud, charge_crud, hold_crud
from app.deps import PaymentsGateway
from app.exceptions import (
    BookingPersistenceFailed,
    HoldInactive,
    NotFound,
    ValidationFailed,
)
from app.models import (
    Booking,
    BookingCategory,
    BookingStatus,
    Booth,
    Charge,
    ChargeStatus,
    Guest,
    Hold,
    HoldStatus,
    PaymentStatus,
)
from app.reference import unique_reference_code
from app.schemas import BookingRef, FinalizeRequest, FinalizeResponse
from app.timeutils import duration_minutes, utcnow
from app.tokens import create_guest_list_token

IDEMPOTENCY_KEY_MAX_LENGTH = 45  # gateway limit
CENT = Decimal("0.01")


@dataclass(frozen=True)
class Quote:
    duration_minutes: int
    booth_amount: Decimal
    ticket_amount: Decimal

    @property
    def duration_hours(self) -> Decimal:
        return (Decimal(self.duration_minutes) / 60).quantize(CENT)

    @property
    def total(self) -> Decimal:
        return self.booth_amount + self.ticket_amount


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


def price_session(
    hourly_rate: Decimal | None,
    start_time: str,
    end_time: str,
    ticket_quantity: int,
    ticket_price: Decimal | None = None,
    max_hours: int | None = None,
) -> Quote:
    """Flat hourly booth rate plus a flat fee per entry ticket."""
    ticket_price = settings.TICKET_PRICE if ticket_price is None else ticket_price
    max_hours = settings.MAX_SESSION_HOURS if max_hours is None else max_hours

    if hourly_rate is None or Decimal(hourly_rate) <= 0:
        raise ValidationFailed("Invalid booth hourly rate")

    minutes = duration_minutes(start_time, end_time)
    if minutes <= 0:
        raise ValidationFailed("Invalid session time range")
    if minutes > max_hours * 60:
        raise ValidationFailed(f"Maximum session length is {max_hours} hours")

    booth_amount = (Decimal(hourly_rate) * Decimal(minutes) / 60).quantize(
        CENT, rounding=ROUND_HALF_UP
    )
    ticket_amount = (Decimal(ticket_quantity) * ticket_price).quantize(CENT)
    return Quote(minutes, booth_amount, ticket_amount)


def idempotency_key(
    hold_id: UUID,
    booth_id: UUID,
    booking_date,
    start_time: str,
    end_time: str,
    ticket_quantity: int,
) -> str:
    """Same hold and ticket count always yields the same key, so retries never double-charge."""
    raw = f"{hold_id}:{booth_id}:{booking_date}:{start_time}-{end_time}:t{ticket_quantity}"
    return hashlib.sha256(raw.encode()).hexdigest()[:IDEMPOTENCY_KEY_MAX_LENGTH]


def refund_key(key: str) -> str:
    return hashlib.sha256(f"refund:{key}".encode()).hexdigest()[:IDEMPOTENCY_KEY_MAX_LENGTH]


class PayAndBook:
    def __init__(self, gateway: PaymentsGateway) -> None:
        self.gateway = gateway

    async def finalize(self, session_id: str, payload: FinalizeRequest) -> FinalizeResponse:
        hold = await hold_crud.get_hold(payload.hold_id, session_id=session_id)
        if hold is None:
            raise NotFound("Hold")

        key = idempotency_key(
            hold.id,
            hold.booth_id,
            hold.booking_date,
            hold.start_time,
            hold.end_time,
            payload.ticket_quantity,
        )

        previous = await charge_crud.get_by_key(key)
        if previous is not None and previous.status == ChargeStatus.ALLOCATED:
            replay = await self._replay(previous)
            if replay is not None:
                logger.info("Replaying finalize for hold {} (key={})", hold.id, key)
                return replay
        if previous is not None and previous.status == ChargeStatus.REFUNDED:
            raise HoldInactive("Payment for this hold was refunded; place a new hold")

        # paid earlier but never booked: the hold may have lapsed since, the
        # slot itself is re-checked under the booth lock in _persist
        retrying = previous is not None and bool(previous.transaction_id)
        if not retrying and not hold.blocks_at(utcnow()):
            raise HoldInactive()

        booth = await booth_crud.get_booth(hold.booth_id)
        if booth is None:
            raise NotFound("Booth")

        quote = price_session(
            booth.hourly_rate, hold.start_time, hold.end_time, payload.ticket_quantity
        )

        if retrying:
            # retry the booking, not the charge
            transaction_id = previous.transaction_id
            logger.warning(
                "Retrying booking for unallocated charge {} (hold {})",
                transaction_id,
                hold.id,
            )
        else:
            # Gateway errors propagate from here: nothing written, hold untouched.
            transaction_id = await self.gateway.charge(
                amount_cents=to_cents(quote.total),
                currency=settings.CURRENCY,
                token=payload.payment_token,
                idempotency_key=key,
                location_id=settings.payments_location_id,
            )
            logger.info(
                "Charged {} {} for hold {} (transaction={})",
                quote.total,
                settings.CURRENCY,
                hold.id,
                transaction_id,
            )

        try:
            karaoke, tickets = await self._persist(
                hold, booth, payload, quote, key, transaction_id, previous
            )
        except Exception as exc:
            settled = await self._settled_elsewhere(key, transaction_id)
            if settled is not None:
                return settled
            raise await self._compensate(hold, quote, key, transaction_id, exc) from exc

        await self._add_organiser(karaoke, payload.customer_name)
        await invalidate_availability_cache(hold.venue)

        return self._response(karaoke, tickets, transaction_id)

    async def _persist(
        self,
        hold: Hold,
        booth: Booth,
        payload: FinalizeRequest,
        quote: Quote,
        key: str,
        transaction_id: str,
        charge: Charge | None = None,
    ) -> tuple[Booking, Booking | None]:
        async with in_transaction():
            # same lock hold creation takes: no hold can appear under our feet
            await Booth.filter(id=booth.id).select_for_update().first()
            await hold_crud.assert_slot_free(
                booth.id,
                hold.booking_date,
                hold.start_time,
                hold.end_time,
                utcnow(),
                exclude_hold_id=hold.id,
            )

            if charge is None:
                charge = await Charge.create(
                    idempotency_key=key,
                    transaction_id=transaction_id,
                    hold_id=hold.id,
                    amount=quote.total,
                    currency=settings.CURRENCY,
                    status=ChargeStatus.CAPTURED,
                )

            karaoke_code = await unique_reference_code()
            karaoke = await Booking.create(
                customer_name=payload.customer_name,
                customer_email=payload.customer_email,
                customer_phone=payload.customer_phone,
                category=BookingCategory.KARAOKE_SESSION,
                venue=hold.venue,
                booth_id=booth.id,
                booking_date=hold.booking_date,
                start_time=hold.start_time,
                end_time=hold.end_time,
                duration_hours=quote.duration_hours,
                guest_count=payload.guest_count,
                status=BookingStatus.CONFIRMED,
                payment_status=PaymentStatus.PAID,
                total_amount=quote.booth_amount,
                transaction_id=transaction_id,
                charge_id=charge.id,
                reference_code=karaoke_code,
            )

            tickets = None
            if payload.ticket_quantity > 0:
                tickets = await Booking.create(
                    customer_name=payload.customer_name,
                    customer_email=payload.customer_email,
                    customer_phone=payload.customer_phone,
                    category=BookingCategory.TICKET_ENTRY,
                    venue=hold.venue,
                    booking_date=hold.booking_date,
                    ticket_quantity=payload.ticket_quantity,
                    status=BookingStatus.CONFIRMED,
                    payment_status=PaymentStatus.PAID,
                    total_amount=quote.ticket_amount,
                    charge_id=charge.id,
                    # transaction_id is unique per booking; the charge row links both
                    staff_notes=f"transaction_id={transaction_id}",
                    reference_code=await unique_reference_code(taken={karaoke_code}),
                )

            hold.status = HoldStatus.CONSUMED  # type: ignore
            await hold.save(update_fields=["status", "updated_at"])

            charge.status = ChargeStatus.ALLOCATED  # type: ignore
            await charge.save(update_fields=["status", "updated_at"])

        logger.info(
            "Booking {} ({}) confirmed for hold {}",
            karaoke.id,
            karaoke.reference_code,
            hold.id,
        )
        return karaoke, tickets

    async def _settled_elsewhere(
        self, key: str, transaction_id: str
    ) -> FinalizeResponse | None:
        """
        Result of a concurrent finalize that already booked this payment.
        Two requests with one key get one payment id from the gateway; the
        loser must not refund what the winner allocated.
        """
        try:
            charge = await charge_crud.get_by_key(key)
        except Exception:
            logger.warning("Could not re-read charge {} before refund", key, exc_info=True)
            return None
        if (
            charge is None
            or charge.status != ChargeStatus.ALLOCATED
            or charge.transaction_id != transaction_id
        ):
            return None
        replay = await self._replay(charge)
        if replay is not None:
            logger.info(
                "Charge {} already funds booking {}, not refunding",
                transaction_id,
                replay.booking_id,
            )
        return replay

    async def _compensate(
        self,
        hold: Hold,
        quote: Quote,
        key: str,
        transaction_id: str,
        exc: Exception,
    ) -> BookingPersistenceFailed:
        """Paid but not booked: refund and record for reconciliation."""
        log = logger.bind(reconcile=True, transaction_id=transaction_id, idempotency_key=key)
        log.opt(exception=exc).critical(
            "Booking persistence failed after charge {} for hold {}",
            transaction_id,
            hold.id,
        )

        refunded = await self.gateway.refund(
            transaction_id=transaction_id,
            amount_cents=to_cents(quote.total),
            currency=settings.CURRENCY,
            idempotency_key=refund_key(key),
        )
        try:
            await charge_crud.record_failure(
                idempotency_key=key,
                transaction_id=transaction_id,
                hold_id=hold.id,
                amount=quote.total,
                currency=settings.CURRENCY,
                status=ChargeStatus.REFUNDED if refunded else ChargeStatus.ORPHANED,
                reason=f"{type(exc).__name__}: {exc}",
            )
        except Exception:
            log.exception("Could not record charge {} for reconciliation", transaction_id)

        return BookingPersistenceFailed(transaction_id, refunded=refunded)

    async def _add_organiser(self, booking: Booking, name: str) -> None:
        try:
            await Guest.create(booking_id=booking.id, guest_name=name, is_organiser=True)
        except Exception:
            # the booking is durable already; a missing guest row is not worth failing for
            logger.warning("Failed to insert organiser guest for booking {}", booking.id, exc_info=True)

    async def _replay(self, charge: Charge) -> FinalizeResponse | None:
        """Result of the earlier successful finalize funded by ``charge``."""
        bookings = await booking_crud.get_by_charge(charge.id)
        karaoke = next(
            (b for b in bookings if b.category == BookingCategory.KARAOKE_SESSION), None
        )
        if karaoke is None:
            return None
        tickets = next(
            (b for b in bookings if b.category == BookingCategory.TICKET_ENTRY), None
        )
        return self._response(karaoke, tickets, charge.transaction_id or "")

    def _response(
        self, karaoke: Booking, tickets: Booking | None, transaction_id: str
    ) -> FinalizeResponse:
        total = Decimal(karaoke.total_amount) + (
            Decimal(tickets.total_amount) if tickets is not None else Decimal("0")
        )
        return FinalizeResponse(
            booking_id=karaoke.id,
            reference_code=karaoke.reference_code,
            transaction_id=transaction_id,
            guest_list_token=create_guest_list_token(karaoke.id, karaoke.booking_date),
            total_amount=total,
            karaoke_booking=BookingRef(id=karaoke.id, reference_code=karaoke.reference_code),
            ticket_booking=(
                BookingRef(id=tickets.id, reference_code=tickets.reference_code)
                if tickets is not None
                else None
            ),
        )
