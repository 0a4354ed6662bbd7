"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files: pytest discovers this by convention.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from tortoise import Tortoise, connections

from app.deps import (
    can_manage_holds,
    can_reconcile_charges,
    get_current_user,
    get_payments_gateway,
)
from app.routers import availability, checkout, holds

from .factories import make_staff

# ---------------------------------------------------------------------------
# Default no-op gateway mock: no real HTTP calls in tests
# ---------------------------------------------------------------------------


def _noop_gateway():
    mock = MagicMock()
    mock.charge = AsyncMock(return_value="pay_test_1")
    mock.refund = AsyncMock(return_value=True)
    return mock


def _bare_app() -> FastAPI:
    app = FastAPI()
    app.include_router(availability.router)
    app.include_router(holds.router)
    app.include_router(checkout.router)
    return app


# ---------------------------------------------------------------------------
# App builder used by all client fixtures
# ---------------------------------------------------------------------------


def build_app(current_user, gateway=None) -> FastAPI:
    """
    Fresh FastAPI app with staff scope dependencies overridden to return
    `current_user` unconditionally. Shopper session auth is left real.
    """
    app = _bare_app()

    async def _user():
        return current_user

    for dep in (can_manage_holds, can_reconcile_charges, get_current_user):
        app.dependency_overrides[dep] = _user

    gw = gateway if gateway is not None else _noop_gateway()
    app.dependency_overrides[get_payments_gateway] = lambda: gw
    return app


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def client():
    """Client for public (shopper) endpoints; staff deps resolve to a staff user."""
    return TestClient(build_app(make_staff()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    Bare app with NO dependency overrides.
    Use this when you want real scope/auth deps to run so you can assert 401/403/422.
    """
    return _bare_app()


@pytest.fixture()
def client_factory():
    def _make(current_user, gateway=None) -> TestClient:
        return TestClient(
            build_app(current_user, gateway=gateway), raise_server_exceptions=True
        )

    return _make


# ---------------------------------------------------------------------------
# In-memory database for tests that need real filter semantics
# ---------------------------------------------------------------------------


async def _with_db(test_coro):
    await Tortoise.init(
        config={
            "connections": {"default": "sqlite://:memory:"},
            "apps": {"models": {"models": ["app.models"], "default_connection": "default"}},
            "use_tz": True,
            "timezone": "UTC",
        }
    )
    await Tortoise.generate_schemas()
    try:
        return await test_coro()
    finally:
        await connections.close_all()


@pytest.fixture()
def run_db():
    """
    Run an async test body against a fresh in-memory SQLite schema:

        def test_x(run_db):
            async def body(): ...
            run_db(body)
    """

    def _run(test_coro):
        return asyncio.run(_with_db(test_coro))

    return _run
