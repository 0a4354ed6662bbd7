"""
Signed guest-list tokens.

Format: ``{booking_id}.{expiry_epoch_seconds}.{hex hmac-sha256}`` where the
MAC covers ``booking_id + expiry``. The guest-list page uses it in place of a
login, so the verifier lives here next to the signer.
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from app import settings

DEFAULT_VALIDITY = timedelta(days=7)


def _sign(message: str, secret: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def token_expiry(booking_date: date | str | None, now: datetime | None = None) -> int:
    """One day after the booking date, or a week from now if the date is unusable."""
    now = now or datetime.now(timezone.utc)
    try:
        if isinstance(booking_date, str):
            booking_date = date.fromisoformat(booking_date)
        if isinstance(booking_date, date):
            day_after = datetime.combine(
                booking_date + timedelta(days=1), time.min, tzinfo=timezone.utc
            )
            return int(day_after.timestamp())
    except ValueError:
        pass
    return int((now + DEFAULT_VALIDITY).timestamp())


def create_guest_list_token(
    booking_id: UUID | str,
    booking_date: date | str | None,
    secret: str | None = None,
    now: datetime | None = None,
) -> str:
    secret = secret or settings.GUEST_LIST_SECRET
    expiry = token_expiry(booking_date, now=now)
    signature = _sign(f"{booking_id}{expiry}", secret)
    return f"{booking_id}.{expiry}.{signature}"


def verify_guest_list_token(
    token: str,
    secret: str | None = None,
    now: datetime | None = None,
) -> UUID | None:
    """Return the booking id if the token is authentic and unexpired, else None."""
    secret = secret or settings.GUEST_LIST_SECRET
    parts = token.split(".")
    if len(parts) != 3:
        return None
    booking_id, expiry_raw, signature = parts
    try:
        expiry = int(expiry_raw)
        parsed_id = UUID(booking_id)
    except ValueError:
        return None

    expected = _sign(f"{booking_id}{expiry}", secret)
    if not hmac.compare_digest(expected, signature):
        return None

    now = now or datetime.now(timezone.utc)
    if now.timestamp() >= expiry:
        return None
    return parsed_id
