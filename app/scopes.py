from enum import StrEnum


class BoothScope(StrEnum):
    # Venue staff scopes
    MANAGE_HOLDS = "holds:manage"  # clear a stuck hold regardless of session
    RECONCILE = "charges:reconcile"  # review paid-but-unbooked charges

    # Admin scopes
    ADMIN = "admin:holds"


BOOTH_SCOPE_DESCRIPTIONS: dict[str, str] = {
    BoothScope.MANAGE_HOLDS: "Release any booth hold on behalf of a shopper.",
    BoothScope.RECONCILE: "List charges that were taken but never turned into bookings.",
    BoothScope.ADMIN: "Full administrative access to holds and charges (admin).",
}
