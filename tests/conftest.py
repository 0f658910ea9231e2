"""
Shared fixtures. Every app built here has the upstream clients replaced by
mocks, so no test ever reaches the network.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from bookings.deps import (
    can_admin_delete_booking,
    can_read_booking,
    can_report_payment,
    can_run_sweep,
    can_write_booking,
    get_children_client,
    get_current_user,
    get_notifications_client,
    get_payments_client,
    get_venues_client,
)
from bookings.main import register_error_handlers
from bookings.routers import booking, wizard

from .factories import (
    activity_dict,
    child_dict,
    make_admin,
    make_guardian,
    make_venue_owner,
    venue_dict,
)

AUTH_DEPS = (
    can_read_booking,
    can_write_booking,
    can_report_payment,
    can_run_sweep,
    can_admin_delete_booking,
    get_current_user,
)


def mocked(**returns) -> MagicMock:
    """MagicMock whose named coroutine methods resolve to the given values."""
    mock = MagicMock()
    for name, value in returns.items():
        setattr(mock, name, AsyncMock(return_value=value))
    return mock


# keyword -> (dependency, default mock factory)
CLIENT_DEPS = {
    "venues_client": (
        get_venues_client,
        lambda: mocked(
            get_venue=venue_dict(),
            get_activity=activity_dict(),
            get_unavailabilities=[],
            get_remaining_capacity=None,
        ),
    ),
    "children_client": (get_children_client, lambda: mocked(get_child=child_dict())),
    "payments_client": (get_payments_client, lambda: mocked(refund_booking=True)),
    "notifications_client": (get_notifications_client, lambda: mocked(publish=None)),
}


def _provide(client):
    def _dep():
        return client

    return _dep


def bare_app() -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)
    app.include_router(booking.router)
    app.include_router(wizard.router)
    return app


def build_app(current_user, **clients) -> FastAPI:
    """
    App where every auth dependency resolves to `current_user`.

    Upstream clients default to mocks that serve an active activity at an
    active venue, the guardian's own child, and accept every refund and
    event. Override one with e.g. `payments_client=mock_pc`.
    """
    unknown = set(clients) - set(CLIENT_DEPS)
    if unknown:
        raise TypeError(f"Unknown client override(s): {', '.join(sorted(unknown))}")

    app = bare_app()

    async def _user():
        return current_user

    for dep in AUTH_DEPS:
        app.dependency_overrides[dep] = _user

    for key, (dep, default) in CLIENT_DEPS.items():
        client = clients.get(key)
        if client is None:
            client = default()
        app.dependency_overrides[dep] = _provide(client)

    return app


@pytest.fixture()
def guardian_client():
    return TestClient(build_app(make_guardian()), raise_server_exceptions=True)


@pytest.fixture()
def owner_client():
    return TestClient(build_app(make_venue_owner()), raise_server_exceptions=True)


@pytest.fixture()
def admin_client():
    return TestClient(build_app(make_admin()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """No overrides at all: the real scope and header deps run."""
    return bare_app()


@pytest.fixture()
def client_factory():
    def _make(current_user, **clients) -> TestClient:
        return TestClient(build_app(current_user, **clients), raise_server_exceptions=True)

    return _make
