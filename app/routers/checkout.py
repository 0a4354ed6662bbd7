from fastapi import APIRouter, Depends

from app.checkout import PayAndBook
from app.crud import charge_crud
from app.deps import (
    PaymentsGateway,
    can_reconcile_charges,
    get_payments_gateway,
    get_session_id,
)
from app.schemas import (
    ChargeResponse,
    FinalizeRequest,
    FinalizeResponse,
    GuestListTokenCheck,
)
from app.tokens import verify_guest_list_token

router = APIRouter(tags=["checkout"])


@router.post("/checkout/finalize", response_model=FinalizeResponse)
async def finalize(
    payload: FinalizeRequest,
    session_id: str = Depends(get_session_id),
    gateway: PaymentsGateway = Depends(get_payments_gateway),
) -> FinalizeResponse:
    """
    Charge the card and convert the caller's hold into a confirmed booking.
    Safe to retry: the same hold and ticket count never charge twice.
    """
    return await PayAndBook(gateway).finalize(session_id, payload)


@router.get(
    "/checkout/charges/unreconciled",
    response_model=list[ChargeResponse],
    dependencies=[Depends(can_reconcile_charges)],
)
async def list_unreconciled_charges() -> list[ChargeResponse]:
    """Charges taken from a card that never became a booking."""
    charges = await charge_crud.list_unreconciled()
    return [ChargeResponse.model_validate(c, from_attributes=True) for c in charges]


@router.get("/guest-list/verify", response_model=GuestListTokenCheck)
async def verify_guest_list(token: str) -> GuestListTokenCheck:
    booking_id = verify_guest_list_token(token)
    return GuestListTokenCheck(valid=booking_id is not None, booking_id=booking_id)
