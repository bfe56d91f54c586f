"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files; pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from scooter_bookings.deps import (
    can_administer_booking,
    can_cancel_booking,
    can_read_booking,
    can_write_booking,
    get_current_user,
    get_now,
    get_rules,
    get_users_client,
)
from scooter_bookings.routers.booking import router

from .factories import (
    NOW,
    RULES,
    directory_user,
    make_admin,
    make_customer,
    make_institution_member,
)

# Every module that talks to the store holds the same singleton
CRUD_PATHS = (
    "scooter_bookings.routers.booking.booking_crud",
    "scooter_bookings.allocator.booking_crud",
    "scooter_bookings.advisor.booking_crud",
    "scooter_bookings.lifecycle.booking_crud",
)


# ---------------------------------------------------------------------------
# Default no-op collaborators: prevent real HTTP / Redis calls in tests
# ---------------------------------------------------------------------------


def users_client_returning(user) -> MagicMock:
    mock = MagicMock()
    mock.find_user_by_id = AsyncMock(return_value=user)
    return mock


@pytest.fixture(autouse=True)
def no_slots_cache():
    with (
        patch("scooter_bookings.advisor.get_slots_cache", AsyncMock(return_value=None)),
        patch("scooter_bookings.advisor.set_slots_cache", AsyncMock()),
        patch("scooter_bookings.allocator.invalidate_slots_cache", AsyncMock()),
        patch(
            "scooter_bookings.lifecycle.invalidate_slots_cache", AsyncMock()
        ) as invalidate,
    ):
        yield invalidate


@pytest.fixture()
def crud():
    """One MagicMock standing in for booking_crud everywhere it is imported."""
    mock = MagicMock()
    patchers = [patch(path, mock) for path in CRUD_PATHS]
    for p in patchers:
        p.start()
    yield mock
    for p in patchers:
        p.stop()


# ---------------------------------------------------------------------------
# App builder, used by all client fixtures
# ---------------------------------------------------------------------------


def build_app(current_user, users_client=None, now=NOW, rules=RULES) -> FastAPI:
    """
    Fresh FastAPI app with auth/scope dependencies overridden to return
    `current_user` unconditionally, a frozen clock and fixed booking rules.

    Pass `users_client` to inject a custom directory mock. Defaults to one
    returning an active customer.
    """
    app = FastAPI()
    app.include_router(router)

    async def _user():
        return current_user

    for dep in (
        can_read_booking,
        can_write_booking,
        can_cancel_booking,
        can_administer_booking,
        get_current_user,
    ):
        app.dependency_overrides[dep] = _user

    uc = users_client if users_client is not None else users_client_returning(
        directory_user()
    )
    app.dependency_overrides[get_users_client] = lambda: uc
    app.dependency_overrides[get_now] = lambda: now
    app.dependency_overrides[get_rules] = lambda: rules

    return app


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def customer_client():
    return TestClient(build_app(make_customer()), raise_server_exceptions=True)


@pytest.fixture()
def admin_client():
    return TestClient(build_app(make_admin()), raise_server_exceptions=True)


@pytest.fixture()
def member_client():
    return TestClient(build_app(make_institution_member()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    Bare app with NO dependency overrides.
    Use this when you want real scope/auth deps to run so you can assert 401/403/422.
    """
    app = FastAPI()
    app.include_router(router)
    return app


@pytest.fixture()
def client_factory():
    def _make(current_user, users_client=None, now=NOW, rules=RULES) -> TestClient:
        return TestClient(
            build_app(current_user, users_client=users_client, now=now, rules=rules),
            raise_server_exceptions=True,
        )

    return _make
