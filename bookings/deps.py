from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from functools import lru_cache
from urllib.parse import quote, unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status
from loguru import logger

from bookings import settings
from bookings.events import BookingEvent
from bookings.scopes import BookingScope


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)

    def has_any(self, *scopes: str) -> bool:
        return any(s in self.scopes for s in scopes)


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
) -> CurrentUser:
    """
    Identity of the caller as forwarded by the gateway.

    Tokens are verified upstream by forwardAuth; only the resulting
    `X-User-*` headers reach this service, so it must never be exposed directly.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    return CurrentUser(
        id=user_id,
        username=unquote(x_username),
        scopes=x_user_scopes.split(),
    )


def require_scopes(*required: str):
    """Dependency factory: every scope in `required` must be granted."""

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        missing = sorted(set(required).difference(current_user.scopes))
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(missing)}",
            )
        return current_user

    return _dep


def require_any_scope(*accepted: str):
    """Like require_scopes, but one of the listed scopes is enough."""

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if not current_user.has_any(*accepted):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of: {', '.join(accepted)}",
            )
        return current_user

    return _dep


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_write_booking = require_scopes(BookingScope.WRITE)
can_report_payment = require_any_scope(BookingScope.PAYMENTS, BookingScope.ADMIN_WRITE)
can_run_sweep = require_any_scope(BookingScope.SWEEP, BookingScope.ADMIN_WRITE)
can_admin_delete_booking = require_scopes(BookingScope.ADMIN_DELETE)
can_read_booking = require_any_scope(
    BookingScope.READ,
    BookingScope.MANAGE,
    BookingScope.ADMIN,
    BookingScope.ADMIN_READ,
)


# ---------------------------------------------------------------------------
# Upstream clients
# ---------------------------------------------------------------------------


def _user_headers(user: CurrentUser) -> dict[str, str]:
    """Forward the Traefik-injected identity so upstream auth deps work normally."""
    return {
        "X-User-Id": str(user.id),
        "X-Username": quote(user.username),
        "X-User-Scopes": " ".join(user.scopes),
    }


@lru_cache(maxsize=None)
def _get_http_client(base_url: str) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class VenuesClient:
    """
    Thin async wrapper around the venues-ms internal API: venues, their
    activities, unavailability windows and slot capacity.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_http_client(settings.venues_ms_url)

    async def _get_json(self, path: str, user: CurrentUser, **params) -> dict | list | None:
        resp = await self._client.get(path, params=params or None, headers=_user_headers(user))
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"venues-ms returned {resp.status_code} for {path}",
            )
        return resp.json()

    async def get_venue(self, venue_id: UUID, user: CurrentUser) -> dict | None:
        """Venue dict (including its cancellation policy overrides) or None if 404."""
        return await self._get_json(f"/venues/{venue_id}", user)

    async def get_activity(self, activity_id: UUID, user: CurrentUser) -> dict | None:
        return await self._get_json(f"/activities/{activity_id}", user)

    async def get_unavailabilities(self, venue_id: UUID, user: CurrentUser) -> list[dict]:
        """Returns list of unavailability windows for the venue."""
        return await self._get_json(f"/venues/{venue_id}/unavailabilities", user) or []

    async def get_remaining_capacity(
        self,
        activity_id: UUID,
        activity_date: date,
        start_time: time,
        user: CurrentUser,
    ) -> int | None:
        """Places left in a slot. None when venues-ms does not track capacity for it."""
        data = await self._get_json(
            f"/activities/{activity_id}/capacity",
            user,
            date=activity_date.isoformat(),
            start_time=start_time.isoformat(),
        )
        if not data:
            return None
        return data.get("remaining")


_venues_client = VenuesClient()


def get_venues_client() -> VenuesClient:
    return _venues_client


class ChildrenClient:
    """Child profiles live in users-ms next to their guardians."""

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_http_client(settings.users_ms_url)

    async def get_child(self, child_id: UUID, user: CurrentUser) -> dict | None:
        """Child dict if it belongs to ``user``, else None."""
        resp = await self._client.get(f"/children/{child_id}", headers=_user_headers(user))
        if resp.status_code in (403, 404):
            return None
        if resp.status_code >= 400:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"users-ms returned {resp.status_code} for child",
            )
        return resp.json()


_children_client = ChildrenClient()


def get_children_client() -> ChildrenClient:
    return _children_client


class PaymentsClient:
    """
    Thin async wrapper around payments-ms internal API.
    The booking core only computes amounts; payments-ms moves the money.
    A refund counts as executed only when payments-ms confirms it.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_http_client(settings.payments_ms_url)

    async def refund_booking(
        self,
        booking_id: UUID,
        amount: Decimal,
        currency: str,
        caller: CurrentUser,
    ) -> bool:
        """
        Ask payments-ms to refund ``amount`` to the original card.
        Returns True once payments-ms confirmed, False on any error.
        """
        try:
            resp = await self._client.post(
                f"/payments/booking/{booking_id}/refund",
                json={"amount": str(amount), "currency": currency},
                headers=_user_headers(caller),
            )
        except httpx.RequestError:
            logger.opt(exception=True).warning("Refund request failed: booking_id={}", booking_id)
            return False
        if resp.status_code >= 400:
            logger.warning(
                "Refund rejected by payments-ms: booking_id={} status={}",
                booking_id,
                resp.status_code,
            )
            return False
        return True


_payments_client = PaymentsClient()


def get_payments_client() -> PaymentsClient:
    return _payments_client


class NotificationsClient:
    """Fire-and-forget publisher for booking events. Delivery is never awaited on."""

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_http_client(settings.notifications_ms_url)

    async def publish(self, *events: BookingEvent) -> None:
        for event in events:
            try:
                await self._client.post("/events", json=event.model_dump(mode="json"))
            except httpx.RequestError:
                logger.opt(exception=True).warning(
                    "Event delivery failed: name={} subject_id={}", event.name, event.subject_id
                )
            else:
                logger.debug("Event published: name={} subject_id={}", event.name, event.subject_id)


_notifications_client = NotificationsClient()


def get_notifications_client() -> NotificationsClient:
    return _notifications_client
