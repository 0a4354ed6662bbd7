import os
from decimal import Decimal

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
users_ms_url = os.environ.get("USERS_MS_URL", "http://localhost:8000")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

# Card gateway (Square-compatible payments API)
payments_gateway_url = os.environ.get(
    "PAYMENTS_GATEWAY_URL", "https://connect.squareupsandbox.com"
)
payments_access_token = os.environ.get("PAYMENTS_ACCESS_TOKEN", "")
payments_location_id = os.environ.get("PAYMENTS_LOCATION_ID", "")
payments_api_version = os.environ.get("PAYMENTS_API_VERSION", "2023-10-18")
payments_timeout = float(os.environ.get("PAYMENTS_TIMEOUT", "10"))

CURRENCY = os.environ.get("CURRENCY", "AUD")
TICKET_PRICE = Decimal(os.environ.get("TICKET_PRICE", "10.00"))
MAX_SESSION_HOURS = int(os.environ.get("MAX_SESSION_HOURS", "2"))

HOLD_TTL_MINUTES = int(os.environ.get("HOLD_TTL_MINUTES", "10"))
HOLD_MAX_TTL_MINUTES = int(os.environ.get("HOLD_MAX_TTL_MINUTES", "60"))
AVAILABILITY_CACHE_TTL = int(os.environ.get("AVAILABILITY_CACHE_TTL", "10"))

GUEST_LIST_SECRET = os.environ.get("GUEST_LIST_SECRET", "guest-list-secret")

allowed_origins = [
    o.strip() for o in os.environ.get("ALLOWED_ORIGINS", "").split(",") if o.strip()
]

TORTOISE_ORM = {
    "connections": {"default": db_url},
    "apps": {"models": {"models": ["app.models"], "default_connection": "default"}},
    "use_tz": True,
    "timezone": "UTC",
}
