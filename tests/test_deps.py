"""
Tests for app/deps.py: get_current_user, scope checks, session bearer and
PaymentsGateway. These use the real dep functions (no overrides).
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from app import settings
from app.deps import (
    PaymentsGateway,
    get_current_user,
    get_payments_gateway,
    get_session_id,
)
from app.exceptions import PaymentDeclined, UpstreamUnavailable
from app.scopes import BOOTH_SCOPE_DESCRIPTIONS

from .factories import HOLD_ID, STAFF_ID, HoldRow

CRUD_PATH = "app.routers.holds.hold_crud"
INVALIDATE_PATH = "app.routers.holds.invalidate_availability_cache"
CLIENT_PATH = "app.deps._get_payments_http_client"


class TestGetCurrentUser:
    def _release(self, anon_app, headers):
        with (
            patch(CRUD_PATH) as mock_crud,
            patch(INVALIDATE_PATH, new_callable=AsyncMock),
        ):
            mock_crud.staff_release_hold = AsyncMock(return_value=HoldRow())
            with TestClient(anon_app) as c:
                return c.post(f"/holds/{HOLD_ID}/staff-release", headers=headers)

    def test_valid_headers_authenticate(self, anon_app):
        resp = self._release(
            anon_app,
            {
                "X-User-Id": str(STAFF_ID),
                "X-Username": "staff1",
                "X-User-Scopes": "holds:manage",
            },
        )
        assert resp.status_code == 200

    def test_invalid_user_id_returns_401(self, anon_app):
        resp = self._release(
            anon_app,
            {"X-User-Id": "not-a-uuid", "X-Username": "staff1", "X-User-Scopes": ""},
        )
        assert resp.status_code == 401

    def test_empty_scopes_string_forbids(self, anon_app):
        resp = self._release(
            anon_app,
            {"X-User-Id": str(STAFF_ID), "X-Username": "staff1", "X-User-Scopes": ""},
        )
        assert resp.status_code == 403

    def test_username_is_url_decoded(self):
        user = get_current_user(
            x_user_id=str(STAFF_ID), x_username="J%C3%BCrgen", x_user_scopes="a b"
        )
        assert user.username == "Jürgen"
        assert user.scopes == ["a", "b"]


class TestStaffScopesInOpenApi:
    def _schema(self, anon_app) -> dict:
        return TestClient(anon_app).get("/openapi.json").json()

    def test_scheme_lists_booth_scopes(self, anon_app):
        schemes = self._schema(anon_app)["components"]["securitySchemes"]
        scopes = schemes["OAuth2PasswordBearer"]["flows"]["password"]["scopes"]
        assert scopes == {str(k): v for k, v in BOOTH_SCOPE_DESCRIPTIONS.items()}

    def test_staff_release_declares_accepted_scopes(self, anon_app):
        op = self._schema(anon_app)["paths"]["/holds/{hold_id}/staff-release"]["post"]
        assert {"OAuth2PasswordBearer": ["holds:manage", "admin:holds"]} in op["security"]


class TestSessionBearer:
    def _app(self) -> FastAPI:
        app = FastAPI()

        @app.get("/whoami")
        async def whoami(session_id: str = Depends(get_session_id)):
            return {"session_id": session_id}

        return app

    def test_bearer_becomes_session_id(self):
        resp = TestClient(self._app()).get(
            "/whoami", headers={"Authorization": "Bearer sess-1"}
        )
        assert resp.json() == {"session_id": "sess-1"}

    def test_missing_header_is_401(self):
        resp = TestClient(self._app()).get("/whoami")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_wrong_scheme_is_401(self):
        resp = TestClient(self._app()).get(
            "/whoami", headers={"Authorization": "Basic abc"}
        )
        assert resp.status_code == 401


def _mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url="https://payments.test", transport=httpx.MockTransport(handler)
    )


def _charge(gateway: PaymentsGateway):
    return asyncio.run(
        gateway.charge(
            amount_cents=13000,
            currency="AUD",
            token="cnon:ok",
            idempotency_key="key-1",
            location_id="LOC1",
        )
    )


@pytest.fixture()
def configured(monkeypatch):
    monkeypatch.setattr(settings, "payments_access_token", "sq-token")
    monkeypatch.setattr(settings, "payments_api_version", "2023-10-18")


class TestPaymentsGatewayCharge:
    def test_success_returns_payment_id_and_sends_key(self, configured):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"payment": {"id": "pay_1", "status": "COMPLETED"}})

        with patch(CLIENT_PATH, return_value=_mock_client(handler)):
            assert _charge(PaymentsGateway()) == "pay_1"

        assert seen["path"] == "/v2/payments"
        assert seen["headers"]["authorization"] == "Bearer sq-token"
        assert seen["headers"]["square-version"] == "2023-10-18"
        assert seen["body"]["idempotency_key"] == "key-1"
        assert seen["body"]["amount_money"] == {"amount": 13000, "currency": "AUD"}
        assert seen["body"]["source_id"] == "cnon:ok"

    def test_decline_raises_payment_declined_with_gateway_detail(self, configured):
        def handler(request):
            return httpx.Response(
                402, json={"errors": [{"code": "CARD_DECLINED", "detail": "Card declined."}]}
            )

        with patch(CLIENT_PATH, return_value=_mock_client(handler)):
            with pytest.raises(PaymentDeclined) as exc_info:
                _charge(PaymentsGateway())

        assert exc_info.value.status_code == 402
        assert exc_info.value.detail == "Card declined."

    def test_server_error_is_upstream_unavailable(self, configured):
        with patch(
            CLIENT_PATH, return_value=_mock_client(lambda r: httpx.Response(503))
        ):
            with pytest.raises(UpstreamUnavailable):
                _charge(PaymentsGateway())

    def test_timeout_is_upstream_unavailable(self, configured):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with patch(CLIENT_PATH, return_value=_mock_client(handler)):
            with pytest.raises(UpstreamUnavailable) as exc_info:
                _charge(PaymentsGateway())

        assert exc_info.value.status_code == 502
        assert "timed out" in exc_info.value.detail

    def test_missing_payment_id_is_upstream_unavailable(self, configured):
        with patch(
            CLIENT_PATH, return_value=_mock_client(lambda r: httpx.Response(200, json={}))
        ):
            with pytest.raises(UpstreamUnavailable):
                _charge(PaymentsGateway())

    def test_unconfigured_gateway_refuses_to_charge(self, monkeypatch):
        monkeypatch.setattr(settings, "payments_access_token", "")
        with pytest.raises(UpstreamUnavailable, match="not configured"):
            _charge(PaymentsGateway())


class TestPaymentsGatewayRefund:
    def _refund(self, gateway):
        return asyncio.run(
            gateway.refund(
                transaction_id="pay_1",
                amount_cents=13000,
                currency="AUD",
                idempotency_key="refund-key",
            )
        )

    def test_success(self, configured):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"refund": {"id": "r1"}})

        with patch(CLIENT_PATH, return_value=_mock_client(handler)):
            assert self._refund(PaymentsGateway()) is True

        assert seen["path"] == "/v2/refunds"
        assert seen["body"]["payment_id"] == "pay_1"

    def test_rejected_returns_false(self, configured):
        with patch(
            CLIENT_PATH, return_value=_mock_client(lambda r: httpx.Response(400, json={}))
        ):
            assert self._refund(PaymentsGateway()) is False

    def test_network_error_returns_false(self, configured):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        with patch(CLIENT_PATH, return_value=_mock_client(handler)):
            assert self._refund(PaymentsGateway()) is False


class TestGetPaymentsGateway:
    def test_returns_gateway_instance(self):
        assert isinstance(get_payments_gateway(), PaymentsGateway)

    def test_same_instance_returned_each_time(self):
        assert get_payments_gateway() is get_payments_gateway()
