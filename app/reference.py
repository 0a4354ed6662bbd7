"""Human-facing booking reference codes, e.g. ``K-7HQ2MX``."""

import secrets

from loguru import logger

from app.models import Booking

REFERENCE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no I, O, 0, 1
REFERENCE_LENGTH = 6
REFERENCE_PREFIX = "K-"
MAX_ATTEMPTS = 5


def generate_reference_code() -> str:
    body = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH))
    return f"{REFERENCE_PREFIX}{body}"


async def unique_reference_code(taken: set[str] | None = None) -> str:
    """
    Generate a code not already stored. ``taken`` holds codes handed out
    earlier in the same transaction that are not visible to the query yet.
    The unique column is still the final arbiter.
    """
    taken = taken or set()
    code = generate_reference_code()
    for _ in range(MAX_ATTEMPTS):
        if code not in taken and not await Booking.filter(reference_code=code).exists():
            return code
        logger.debug("Reference code collision on {}, regenerating", code)
        code = generate_reference_code()
    return code
