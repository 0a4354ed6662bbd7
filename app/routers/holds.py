from uuid import UUID

from fastapi import APIRouter, Depends, status

from app.cache import invalidate_availability_cache
from app.crud import hold_crud
from app.deps import CurrentUser, can_manage_holds
from app.exceptions import NotFound
from app.models import Hold
from app.schemas import HoldCreate, HoldExtend, HoldRelease, HoldResponse, HoldStatus
from app.timeutils import utcnow

router = APIRouter(prefix="/holds", tags=["holds"])


def _to_response(hold: Hold) -> HoldResponse:
    """Expose the effective status: an active hold past its expiry reads as expired."""
    response = HoldResponse.model_validate(hold, from_attributes=True)
    response.status = HoldStatus(hold.effective_status(utcnow()))
    return response


@router.post("", response_model=HoldResponse, status_code=status.HTTP_201_CREATED)
async def create_hold(payload: HoldCreate) -> HoldResponse:
    hold = await hold_crud.create_hold(
        booth_id=payload.booth_id,
        venue=payload.venue,
        booking_date=payload.booking_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        session_id=payload.session_id,
        customer_email=payload.customer_email,
        ttl_minutes=payload.ttl_minutes,
    )
    await invalidate_availability_cache(hold.venue)
    return _to_response(hold)


@router.get("/{hold_id}", response_model=HoldResponse)
async def get_hold(hold_id: UUID, session_id: str) -> HoldResponse:
    hold = await hold_crud.get_hold(hold_id, session_id=session_id)
    if hold is None:
        raise NotFound("Hold")
    return _to_response(hold)


@router.post("/{hold_id}/extend", response_model=HoldResponse)
async def extend_hold(hold_id: UUID, payload: HoldExtend) -> HoldResponse:
    hold = await hold_crud.extend_hold(hold_id, payload.session_id, payload.ttl_minutes)
    return _to_response(hold)


@router.post("/{hold_id}/release", response_model=HoldResponse)
async def release_hold(hold_id: UUID, payload: HoldRelease) -> HoldResponse:
    hold = await hold_crud.release_hold(hold_id, payload.session_id)
    await invalidate_availability_cache(hold.venue)
    return _to_response(hold)


@router.post("/{hold_id}/staff-release", response_model=HoldResponse)
async def staff_release_hold(
    hold_id: UUID,
    current_user: CurrentUser = Depends(can_manage_holds),
) -> HoldResponse:
    """Clear a stuck hold without the shopper's session."""
    hold = await hold_crud.staff_release_hold(hold_id, released_by=current_user.id)
    await invalidate_availability_cache(hold.venue)
    return _to_response(hold)
