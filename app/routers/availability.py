import asyncio

from fastapi import APIRouter, Depends

from app.availability import (
    booth_slots,
    busy_intervals,
    clamp_granularity,
    free_booths,
    venue_slots,
)
from app.cache import read_through
from app.crud import booking_crud, booth_crud, hold_crud
from app.exceptions import NotFound, ValidationFailed
from app.schemas import (
    AvailabilityQuery,
    BoothAvailability,
    BoothsForSlot,
    BoothsForSlotQuery,
    BoothSummary,
    VenueAvailability,
)
from app.timeutils import normalize_time, utcnow

router = APIRouter(prefix="/availability", tags=["availability"])


async def _busy_for(booth_ids, booking_date):
    # both reads go out together; the datastore errors fail the request
    bookings, holds = await asyncio.gather(
        booking_crud.list_blocking(booth_ids, booking_date),
        hold_crud.list_blocking(booth_ids, booking_date, now=utcnow()),
    )
    return busy_intervals(bookings, holds)


@router.get("", response_model=BoothAvailability | VenueAvailability)
async def get_availability(
    query: AvailabilityQuery = Depends(),
) -> BoothAvailability | VenueAvailability:
    """
    Slot grid for one booth (``booth_id``) or for a whole venue (``venue``).
    Results may be up to a few seconds stale; holds re-check before writing.
    """
    granularity = clamp_granularity(query.granularity_minutes)

    if query.booth_id is not None:
        booth = await booth_crud.get_booth(query.booth_id)
        if booth is None:
            raise NotFound("Booth")

        async def _load_booth() -> dict:
            busy = await _busy_for([booth.id], query.booking_date)
            slots = booth_slots(booth, query.booking_date, granularity, busy.get(booth.id, []))
            return BoothAvailability(
                booth_id=booth.id,
                booking_date=query.booking_date,
                granularity_minutes=granularity,
                slots=slots,
            ).model_dump(mode="json")

        payload = await read_through(
            booth.venue, ("booth", booth.id, query.booking_date, granularity), _load_booth
        )
        return BoothAvailability(**payload)

    if not query.venue:
        raise ValidationFailed("Either booth_id or venue is required")
    venue = query.venue

    async def _load_venue() -> dict:
        booths = await booth_crud.list_bookable(venue, query.min_capacity)
        busy = await _busy_for([b.id for b in booths], query.booking_date) if booths else {}
        return VenueAvailability(
            venue=venue,
            booking_date=query.booking_date,
            granularity_minutes=granularity,
            min_capacity=query.min_capacity,
            slots=venue_slots(booths, query.booking_date, granularity, busy),
        ).model_dump(mode="json")

    payload = await read_through(
        venue,
        ("venue", query.booking_date, query.min_capacity, granularity),
        _load_venue,
    )
    return VenueAvailability(**payload)


@router.get("/booths-for-slot", response_model=BoothsForSlot)
async def get_booths_for_slot(query: BoothsForSlotQuery = Depends()) -> BoothsForSlot:
    """Booths free for exactly this window; shown right before placing a hold."""
    try:
        start_time = normalize_time(query.start_time)
        end_time = normalize_time(query.end_time)
    except ValueError as exc:
        raise ValidationFailed(str(exc)) from None

    async def _load() -> dict:
        booths = await booth_crud.list_bookable(query.venue, query.min_capacity)
        busy = await _busy_for([b.id for b in booths], query.booking_date) if booths else {}
        free = free_booths(booths, query.booking_date, start_time, end_time, busy)
        return BoothsForSlot(
            venue=query.venue,
            booking_date=query.booking_date,
            start_time=start_time,
            end_time=end_time,
            available_booths=[BoothSummary.model_validate(b) for b in free],
        ).model_dump(mode="json")

    payload = await read_through(
        query.venue,
        ("booths-for-slot", query.booking_date, start_time, end_time, query.min_capacity),
        _load,
    )
    return BoothsForSlot(**payload)
