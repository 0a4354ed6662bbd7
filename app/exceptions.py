"""
Domain errors. Each maps to its own HTTP status so callers can tell a
conflict from a declined card without parsing a ``success`` flag.
"""

from fastapi import HTTPException, status


class ValidationFailed(HTTPException):
    def __init__(self, detail: str = "Validation failed") -> None:
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class NotFound(HTTPException):
    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"{resource} not found")


class SlotConflict(HTTPException):
    def __init__(self, detail: str = "Slot is already held or booked") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class HoldInactive(HTTPException):
    def __init__(self, detail: str = "Hold expired or inactive") -> None:
        super().__init__(status_code=status.HTTP_410_GONE, detail=detail)


class PaymentDeclined(HTTPException):
    """Gateway answered and refused the charge. Nothing was written."""

    def __init__(self, detail: str = "Payment was declined") -> None:
        super().__init__(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=detail)


class UpstreamUnavailable(HTTPException):
    """Gateway unreachable or timed out. Outcome unknown; retry with the same key."""

    def __init__(self, service: str, detail: str | None = None) -> None:
        message = f"{service} is unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=message)


class DatastoreUnavailable(HTTPException):
    def __init__(self, detail: str = "Datastore is unavailable") -> None:
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


class BookingPersistenceFailed(HTTPException):
    """The card was charged but the booking could not be written."""

    def __init__(self, transaction_id: str, refunded: bool) -> None:
        outcome = "the payment has been refunded" if refunded else "staff have been alerted"
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=(
                f"Payment {transaction_id} succeeded but the booking could not be "
                f"saved; {outcome}"
            ),
        )
        self.transaction_id = transaction_id
        self.refunded = refunded
