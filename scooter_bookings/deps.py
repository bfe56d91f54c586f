from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import lru_cache
from urllib.parse import quote, unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status

from scooter_bookings import settings
from scooter_bookings.errors import BookingError, ErrorCode
from scooter_bookings.schemas import DirectoryUser
from scooter_bookings.scopes import BookingScope
from scooter_bookings.timewindow import BookingRules


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return BookingScope.ADMIN in self.scopes


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
) -> CurrentUser:
    """
    Reads the headers injected by the gateway after token validation.
    The JWT has already been verified; we just trust these headers.
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


def require_scopes(*required: str):
    """
    Factory that returns a dependency enforcing one or more scopes.

    Usage:
        @router.get("/protected")
        async def route(user = Depends(require_scopes("bookings:read"))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        missing = [s for s in required if s not in current_user.scopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(missing)}",
            )
        return current_user

    return _dep


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_read_booking = require_scopes(BookingScope.READ)
can_write_booking = require_scopes(BookingScope.WRITE)
can_cancel_booking = require_scopes(BookingScope.CANCEL)


async def can_administer_booking(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """
    Passes for admins and for institution members.
    - admin:bookings       → every booking
    - bookings:institution → bookings of the member's own institution
    """
    if not (
        BookingScope.ADMIN in current_user.scopes
        or BookingScope.INSTITUTION in current_user.scopes
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.ADMIN}' (admin) "
                f"or '{BookingScope.INSTITUTION}' (institution members)."
            ),
        )
    return current_user


# ---------------------------------------------------------------------------
# Clock and booking rules, overridable in tests
# ---------------------------------------------------------------------------


def get_now() -> datetime:
    return datetime.now(UTC)


@lru_cache(maxsize=1)
def get_rules() -> BookingRules:
    return BookingRules()


# ---------------------------------------------------------------------------
# UsersClient: thin async wrapper around the users-ms directory API
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_users_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.users_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class UsersClient:
    """
    Thin async wrapper around the users-ms directory API.
    Forwards gateway-injected user headers so users-ms auth deps work normally.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_users_http_client()

    def _headers(self, user: CurrentUser) -> dict[str, str]:
        return {
            "X-User-Id": str(user.id),
            "X-Username": quote(user.username),
            "X-User-Scopes": " ".join(user.scopes),
        }

    async def find_user_by_id(self, user_id: UUID, caller: CurrentUser) -> DirectoryUser:
        """Directory record with customer/institution membership. 404 → USER_NOT_FOUND."""
        resp = await self._client.get(
            f"/users/{user_id}/directory", headers=self._headers(caller)
        )
        if resp.status_code == 404:
            raise BookingError(ErrorCode.USER_NOT_FOUND)
        if resp.status_code >= 400:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"users-ms returned {resp.status_code}",
            )
        return DirectoryUser.model_validate(resp.json())


_users_client = UsersClient()


def get_users_client() -> UsersClient:
    return _users_client
