from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from loguru import logger
from tortoise.transactions import in_transaction

from app import settings
from app.availability import busy_intervals, first_conflict, operating_window
from app.exceptions import HoldInactive, NotFound, SlotConflict, ValidationFailed
from app.models import (
    Booking,
    BookingStatus,
    Booth,
    Charge,
    ChargeStatus,
    Hold,
    HoldStatus,
)
from app.schemas import BlockedBy
from app.timeutils import (
    absolute_interval,
    duration_minutes,
    utcnow,
    within_operating_hours,
)


def date_window(day: date) -> list[date]:
    """Dates whose bookings can reach into ``day`` (overnight sessions)."""
    return [day - timedelta(days=1), day, day + timedelta(days=1)]


def clamp_ttl(ttl_minutes: int | None) -> int:
    ttl = ttl_minutes if ttl_minutes is not None else settings.HOLD_TTL_MINUTES
    return max(1, min(settings.HOLD_MAX_TTL_MINUTES, ttl))


class BoothCRUD:
    async def get_booth(self, booth_id: UUID) -> Booth | None:
        return await Booth.get_or_none(id=booth_id)

    async def list_bookable(self, venue: str, min_capacity: int = 1) -> list[Booth]:
        return await Booth.filter(
            venue=venue, is_available=True, capacity__gte=min_capacity
        ).order_by("capacity", "name")


class BookingCRUD:
    async def list_blocking(self, booth_ids: list[UUID], day: date) -> list[Booking]:
        """Non-cancelled bookings on the given booths around ``day``."""
        if not booth_ids:
            return []
        return await Booking.filter(
            booth_id__in=booth_ids,
            booking_date__in=date_window(day),
        ).exclude(status=BookingStatus.CANCELLED)

    async def get_by_charge(self, charge_id: UUID) -> list[Booking]:
        return await Booking.filter(charge_id=charge_id).order_by("created_at")


class HoldCRUD:
    async def list_blocking(
        self, booth_ids: list[UUID], day: date, now: datetime | None = None
    ) -> list[Hold]:
        """Active, unexpired holds on the given booths around ``day``."""
        if not booth_ids:
            return []
        return await Hold.filter(
            booth_id__in=booth_ids,
            booking_date__in=date_window(day),
            status=HoldStatus.ACTIVE,
            expires_at__gt=now or utcnow(),
        )

    async def assert_slot_free(
        self,
        booth_id: UUID,
        day: date,
        start_time: str,
        end_time: str,
        now: datetime,
        exclude_hold_id: UUID | None = None,
    ) -> None:
        bookings = await Booking.filter(
            booth_id=booth_id, booking_date__in=date_window(day)
        ).exclude(status=BookingStatus.CANCELLED)
        holds_qs = Hold.filter(
            booth_id=booth_id,
            booking_date__in=date_window(day),
            status=HoldStatus.ACTIVE,
            expires_at__gt=now,
        )
        if exclude_hold_id is not None:
            holds_qs = holds_qs.exclude(id=exclude_hold_id)
        holds = await holds_qs

        busy = busy_intervals(bookings, holds).get(booth_id, [])
        blocker = first_conflict(*absolute_interval(day, start_time, end_time), busy)
        if blocker is not None:
            what = "booked" if blocker.cause == BlockedBy.BOOKING else "held"
            raise SlotConflict(f"Booth is already {what} for {start_time}-{end_time}")

    async def create_hold(
        self,
        booth_id: UUID,
        venue: str,
        booking_date: date,
        start_time: str,
        end_time: str,
        session_id: str,
        customer_email: str | None = None,
        ttl_minutes: int | None = None,
    ) -> Hold:
        """
        Reserve a booth slot for ``ttl_minutes``.

        The booth row is locked for the duration of the check and insert, so
        two shoppers racing for overlapping slots on one booth are serialized
        by the database and the second one sees the first one's hold.
        """
        minutes = duration_minutes(start_time, end_time)
        if minutes > settings.MAX_SESSION_HOURS * 60:
            raise ValidationFailed(
                f"Maximum session length is {settings.MAX_SESSION_HOURS} hours"
            )

        async with in_transaction():
            booth = await Booth.filter(id=booth_id).select_for_update().first()
            if booth is None or booth.venue != venue:
                raise NotFound("Booth")
            if not booth.is_available:
                raise SlotConflict("Booth is not available for booking")
            if not within_operating_hours(start_time, end_time, *operating_window(booth)):
                raise ValidationFailed("Requested time is outside the booth's operating hours")

            now = utcnow()
            await self.assert_slot_free(booth_id, booking_date, start_time, end_time, now)

            hold = await Hold.create(
                booth_id=booth_id,
                venue=venue,
                booking_date=booking_date,
                start_time=start_time,
                end_time=end_time,
                session_id=session_id,
                customer_email=customer_email,
                status=HoldStatus.ACTIVE,
                expires_at=now + timedelta(minutes=clamp_ttl(ttl_minutes)),
            )

        logger.info(
            "Hold {} created: booth={} date={} {}-{} expires_at={}",
            hold.id,
            booth_id,
            booking_date,
            start_time,
            end_time,
            hold.expires_at,
        )
        return hold

    async def get_hold(self, hold_id: UUID, session_id: str | None = None) -> Hold | None:
        if session_id is not None:
            return await Hold.get_or_none(id=hold_id, session_id=session_id)
        return await Hold.get_or_none(id=hold_id)

    async def extend_hold(
        self, hold_id: UUID, session_id: str, ttl_minutes: int | None = None
    ) -> Hold:
        async with in_transaction():
            hold = (
                await Hold.filter(id=hold_id, session_id=session_id)
                .select_for_update()
                .first()
            )
            if hold is None:
                raise NotFound("Hold")
            now = utcnow()
            if not hold.blocks_at(now):
                raise HoldInactive("Hold is not extendable")
            hold.expires_at = now + timedelta(minutes=clamp_ttl(ttl_minutes))
            await hold.save(update_fields=["expires_at", "updated_at"])

        logger.info("Hold {} extended until {}", hold.id, hold.expires_at)
        return hold

    async def _release(self, hold: Hold) -> Hold:
        if hold.status != HoldStatus.ACTIVE:
            return hold
        hold.status = HoldStatus.RELEASED  # type: ignore
        await hold.save(update_fields=["status", "updated_at"])
        return hold

    async def release_hold(self, hold_id: UUID, session_id: str) -> Hold:
        """Release early. Releasing a released/expired/consumed hold is a no-op."""
        hold = await Hold.get_or_none(id=hold_id, session_id=session_id)
        if hold is None:
            raise NotFound("Hold")
        hold = await self._release(hold)
        logger.info("Hold {} released by session", hold.id)
        return hold

    async def staff_release_hold(self, hold_id: UUID, released_by: UUID) -> Hold:
        hold = await Hold.get_or_none(id=hold_id)
        if hold is None:
            raise NotFound("Hold")
        hold = await self._release(hold)
        logger.info("Hold {} released by staff user {}", hold.id, released_by)
        return hold


class ChargeCRUD:
    async def get_by_key(self, idempotency_key: str) -> Charge | None:
        return await Charge.get_or_none(idempotency_key=idempotency_key)

    async def record_failure(
        self,
        *,
        idempotency_key: str,
        transaction_id: str,
        hold_id: UUID,
        amount: Decimal,
        currency: str,
        status: ChargeStatus,
        reason: str,
    ) -> Charge:
        """Upsert the charge row for a paid-but-unbooked checkout. Allocated rows stay as they are."""
        charge = await Charge.get_or_none(idempotency_key=idempotency_key)
        if charge is None:
            return await Charge.create(
                idempotency_key=idempotency_key,
                transaction_id=transaction_id,
                hold_id=hold_id,
                amount=amount,
                currency=currency,
                status=status,
                failure_reason=reason,
            )
        if charge.status == ChargeStatus.ALLOCATED:
            # funds a confirmed booking; never downgrade it
            logger.warning(
                "Charge {} is allocated, ignoring {} ({})", idempotency_key, status, reason
            )
            return charge
        charge.status = status  # type: ignore
        charge.failure_reason = reason
        await charge.save(update_fields=["status", "failure_reason", "updated_at"])
        return charge

    async def list_unreconciled(self) -> list[Charge]:
        return await Charge.filter(
            status__in=[ChargeStatus.CAPTURED, ChargeStatus.ORPHANED]
        ).order_by("-created_at")


booth_crud = BoothCRUD()
booking_crud = BookingCRUD()
hold_crud = HoldCRUD()
charge_crud = ChargeCRUD()
