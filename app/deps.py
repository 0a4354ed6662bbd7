from dataclasses import dataclass, field
from functools import lru_cache
from urllib.parse import unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer, OAuth2PasswordBearer
from loguru import logger

from app import settings
from app.exceptions import PaymentDeclined, UpstreamUnavailable
from app.scopes import BOOTH_SCOPE_DESCRIPTIONS, BoothScope

# ---------------------------------------------------------------------------
# Staff identity (Traefik forwardAuth headers)
# ---------------------------------------------------------------------------


# Only documents the staff scopes in OpenAPI.
staff_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.users_ms_url}/auth/token",
    scopes=BOOTH_SCOPE_DESCRIPTIONS,
    auto_error=False,
)


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
) -> CurrentUser:
    """
    Reads the headers injected by Traefik after forwardAuth validation.
    The JWT has already been verified, so these headers are trusted as-is.
    NOTE: This only works behind Traefik. Run with that assumption.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    scopes = x_user_scopes.split(" ") if x_user_scopes else []

    return CurrentUser(id=user_id, username=unquote(x_username), scopes=scopes)


def require_any_scope(*accepted: str):
    """
    Factory that returns a dependency passing if the caller holds at least one
    of ``accepted``.

    Usage:
        @router.post("/holds/{id}/staff-release")
        async def route(user = Depends(require_any_scope("holds:manage"))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
        _token: str | None = Security(staff_oauth2, scopes=list(accepted)),
    ) -> CurrentUser:
        if not any(s in current_user.scopes for s in accepted):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of scopes: {', '.join(accepted)}",
            )
        return current_user

    return _dep


can_manage_holds = require_any_scope(BoothScope.MANAGE_HOLDS, BoothScope.ADMIN)
can_reconcile_charges = require_any_scope(BoothScope.RECONCILE, BoothScope.ADMIN)


# ---------------------------------------------------------------------------
# Shopper session (opaque bearer token, not a user account)
# ---------------------------------------------------------------------------

session_bearer = HTTPBearer(auto_error=False)


def get_session_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(session_bearer),
) -> str:
    if credentials is None or not credentials.credentials.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials.strip()


# ---------------------------------------------------------------------------
# PaymentsGateway: thin async wrapper around the card payments API
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_payments_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.payments_gateway_url,
        timeout=httpx.Timeout(settings.payments_timeout),
    )


def _error_detail(resp: httpx.Response, fallback: str) -> str:
    try:
        body = resp.json()
    except ValueError:
        return fallback
    errors = body.get("errors") or []
    if errors and isinstance(errors[0], dict):
        return errors[0].get("detail") or fallback
    return body.get("message") or fallback


class PaymentsGateway:
    """
    Thin async wrapper around the Square-compatible payments API.
    The gateway charges at most once per idempotency key, however many times
    the same key is submitted.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_payments_http_client()

    def _headers(self) -> dict[str, str]:
        return {
            "Square-Version": settings.payments_api_version,
            "Authorization": f"Bearer {settings.payments_access_token}",
            "Content-Type": "application/json",
        }

    async def charge(
        self,
        amount_cents: int,
        currency: str,
        token: str,
        idempotency_key: str,
        location_id: str,
    ) -> str:
        """
        Charge the card behind ``token`` and return the gateway payment id.
        Raises PaymentDeclined when the gateway refuses, UpstreamUnavailable
        when it cannot be reached or does not answer in time.
        """
        if not settings.payments_access_token:
            raise UpstreamUnavailable("Payment gateway", "not configured")
        try:
            resp = await self._client.post(
                "/v2/payments",
                headers=self._headers(),
                json={
                    "idempotency_key": idempotency_key,
                    "source_id": token,
                    "location_id": location_id,
                    "amount_money": {"amount": amount_cents, "currency": currency},
                },
            )
        except httpx.TimeoutException:
            raise UpstreamUnavailable(
                "Payment gateway", "timed out; retry with the same request"
            ) from None
        except httpx.RequestError as exc:
            raise UpstreamUnavailable("Payment gateway", str(exc)) from None

        if resp.status_code >= 500:
            raise UpstreamUnavailable("Payment gateway", f"returned {resp.status_code}")
        if resp.status_code >= 400:
            raise PaymentDeclined(_error_detail(resp, "Card charge failed"))

        payment_id = (resp.json().get("payment") or {}).get("id")
        if not payment_id:
            raise UpstreamUnavailable("Payment gateway", "missing payment id")
        return payment_id

    async def refund(
        self,
        transaction_id: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
    ) -> bool:
        """
        Refund a captured payment.
        Returns True on success, False on any error (logged, never raised).
        """
        try:
            resp = await self._client.post(
                "/v2/refunds",
                headers=self._headers(),
                json={
                    "idempotency_key": idempotency_key,
                    "payment_id": transaction_id,
                    "amount_money": {"amount": amount_cents, "currency": currency},
                },
            )
        except httpx.RequestError:
            logger.exception("Refund request for payment {} failed", transaction_id)
            return False
        if resp.status_code >= 400:
            logger.error(
                "Refund for payment {} rejected: {}",
                transaction_id,
                _error_detail(resp, str(resp.status_code)),
            )
            return False
        return True


_payments_gateway = PaymentsGateway()


def get_payments_gateway() -> PaymentsGateway:
    return _payments_gateway
