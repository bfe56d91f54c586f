"""
Booking lifecycle: cancel (self-service and admin), duration update and the
status transition table.
"""

from __future__ import annotations

from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from scooter_bookings.errors import BookingError, ErrorCode
from scooter_bookings.lifecycle import assert_mutable, assert_transition
from scooter_bookings.models import BookingStatus

from .conftest import users_client_returning
from .factories import (
    BOOKING_ID,
    INSTITUTION_ID,
    POOL_ID,
    RULES,
    USER_ID,
    at,
    booking_model,
    directory_member,
    directory_user,
    make_customer,
    make_institution_member,
)


def _error_code(resp) -> str:
    return resp.json()["detail"]["error_code"]


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestTransitions:
    @pytest.mark.parametrize(
        "old, new",
        [
            (BookingStatus.OPEN, BookingStatus.CANCELLED),
            (BookingStatus.OPEN, BookingStatus.ONGOING),
            (BookingStatus.ONGOING, BookingStatus.CLOSED),
        ],
    )
    def test_allowed(self, old, new):
        assert_transition(old, new)

    @pytest.mark.parametrize(
        "old, new",
        [
            (BookingStatus.ONGOING, BookingStatus.CANCELLED),
            (BookingStatus.CANCELLED, BookingStatus.OPEN),
            (BookingStatus.CANCELLED, BookingStatus.CANCELLED),
            (BookingStatus.CLOSED, BookingStatus.CANCELLED),
            (BookingStatus.CLOSED, BookingStatus.ONGOING),
            (BookingStatus.OPEN, BookingStatus.CLOSED),
        ],
    )
    def test_rejected(self, old, new):
        with pytest.raises(BookingError) as exc:
            assert_transition(old, new)
        assert exc.value.error_code == ErrorCode.INVALID_BOOKING_REQUEST
        assert exc.value.status_code == 409

    def test_only_open_bookings_are_mutable(self):
        assert_mutable(booking_model(booking_status="open"))
        for status in ("ongoing", "closed", "cancelled"):
            with pytest.raises(BookingError):
                assert_mutable(booking_model(booking_status=status))


# ---------------------------------------------------------------------------
# POST /bookings/{id}/cancel
# ---------------------------------------------------------------------------


class TestCancelBooking:
    def _url(self) -> str:
        return f"/bookings/{BOOKING_ID}/cancel"

    def test_open_booking_cancelled(self, customer_client, crud):
        crud.get_booking = AsyncMock(return_value=booking_model())
        crud.update_booking_status = AsyncMock(
            return_value=booking_model(booking_status="cancelled")
        )
        resp = customer_client.post(self._url())
        assert resp.status_code == 200
        assert resp.json() == {"message": "Booking successfully cancelled"}

    def test_status_update_is_compare_and_set(self, customer_client, crud):
        crud.get_booking = AsyncMock(return_value=booking_model())
        crud.update_booking_status = AsyncMock(
            return_value=booking_model(booking_status="cancelled")
        )
        customer_client.post(self._url())
        args, kwargs = crud.update_booking_status.call_args
        assert args == (BOOKING_ID, BookingStatus.CANCELLED)
        assert kwargs["expected_status"] == BookingStatus.OPEN

    def test_lookup_restricted_to_own_bookings(self, customer_client, crud):
        crud.get_booking = AsyncMock(return_value=None)
        customer_client.post(self._url())
        _, kwargs = crud.get_booking.call_args
        assert kwargs["user_id"] == USER_ID

    def test_slots_cache_invalidated(self, customer_client, crud, no_slots_cache):
        crud.get_booking = AsyncMock(return_value=booking_model())
        crud.update_booking_status = AsyncMock(
            return_value=booking_model(booking_status="cancelled")
        )
        customer_client.post(self._url())
        no_slots_cache.assert_awaited_once_with(POOL_ID)

    @pytest.mark.parametrize("status", ["cancelled", "closed", "ongoing"])
    def test_non_open_booking_is_invalid_request(self, customer_client, crud, status):
        crud.get_booking = AsyncMock(return_value=booking_model(booking_status=status))
        crud.update_booking_status = AsyncMock()
        resp = customer_client.post(self._url())
        assert resp.status_code == 409
        assert _error_code(resp) == ErrorCode.INVALID_BOOKING_REQUEST
        crud.update_booking_status.assert_not_called()

    def test_lost_race_is_invalid_request(self, customer_client, crud, no_slots_cache):
        crud.get_booking = AsyncMock(return_value=booking_model())
        crud.update_booking_status = AsyncMock(return_value=None)
        resp = customer_client.post(self._url())
        assert resp.status_code == 409
        assert _error_code(resp) == ErrorCode.INVALID_BOOKING_REQUEST
        no_slots_cache.assert_not_called()

    def test_unknown_booking_is_not_found(self, customer_client, crud):
        crud.get_booking = AsyncMock(return_value=None)
        resp = customer_client.post(self._url())
        assert resp.status_code == 404
        assert _error_code(resp) == ErrorCode.BOOKING_NOT_FOUND


# ---------------------------------------------------------------------------
# POST /bookings/admin/{id}/cancel
# ---------------------------------------------------------------------------


class TestAdminCancelBooking:
    def _url(self) -> str:
        return f"/bookings/admin/{BOOKING_ID}/cancel"

    def test_admin_cancels_any_booking(self, admin_client, crud):
        crud.get_booking = AsyncMock(return_value=booking_model())
        crud.update_booking_status = AsyncMock(
            return_value=booking_model(booking_status="cancelled")
        )
        resp = admin_client.post(self._url())
        assert resp.status_code == 200
        _, kwargs = crud.get_booking.call_args
        assert kwargs["institution_id"] is None

    def test_member_scoped_to_own_institution(self, client_factory, crud):
        crud.get_booking = AsyncMock(return_value=booking_model())
        crud.update_booking_status = AsyncMock(
            return_value=booking_model(booking_status="cancelled")
        )
        client = client_factory(
            make_institution_member(),
            users_client=users_client_returning(directory_member()),
        )
        resp = client.post(self._url())
        assert resp.status_code == 200
        _, kwargs = crud.get_booking.call_args
        assert kwargs["institution_id"] == INSTITUTION_ID

    def test_other_institution_booking_reported_as_not_found(self, client_factory, crud):
        # the store filters on institution and finds nothing
        crud.get_booking = AsyncMock(return_value=None)
        client = client_factory(
            make_institution_member(),
            users_client=users_client_returning(directory_member()),
        )
        resp = client.post(self._url())
        assert resp.status_code == 404
        assert _error_code(resp) == ErrorCode.BOOKING_NOT_FOUND

    def test_member_scope_without_membership_is_unauthorized(self, client_factory, crud):
        crud.get_booking = AsyncMock(return_value=booking_model())
        client = client_factory(
            make_institution_member(),
            users_client=users_client_returning(directory_user()),
        )
        resp = client.post(self._url())
        assert resp.status_code == 403
        assert _error_code(resp) == ErrorCode.UNAUTHORIZED
        crud.get_booking.assert_not_called()

    def test_directory_admin_sees_everything(self, client_factory, crud):
        crud.get_booking = AsyncMock(return_value=booking_model())
        crud.update_booking_status = AsyncMock(
            return_value=booking_model(booking_status="cancelled")
        )
        client = client_factory(
            make_institution_member(),
            users_client=users_client_returning(
                directory_user(account_type="admin", customer=None)
            ),
        )
        client.post(self._url())
        _, kwargs = crud.get_booking.call_args
        assert kwargs["institution_id"] is None

    def test_admin_cannot_cancel_closed_booking(self, admin_client, crud):
        crud.get_booking = AsyncMock(return_value=booking_model(booking_status="closed"))
        resp = admin_client.post(self._url())
        assert resp.status_code == 409
        assert _error_code(resp) == ErrorCode.INVALID_BOOKING_REQUEST


# ---------------------------------------------------------------------------
# PATCH /bookings/{id}
# ---------------------------------------------------------------------------


class TestUpdateBooking:
    def _url(self) -> str:
        return f"/bookings/{BOOKING_ID}"

    def test_duration_changed(self, customer_client, crud, no_slots_cache):
        crud.get_booking = AsyncMock(return_value=booking_model())
        crud.update_booking_duration = AsyncMock(
            return_value=booking_model(duration=120)
        )
        resp = customer_client.patch(self._url(), json={"duration": 120})
        assert resp.status_code == 200
        body = resp.json()
        assert body["duration"] == 120
        crud.update_booking_duration.assert_awaited_once_with(BOOKING_ID, 120, 60)
        no_slots_cache.assert_awaited_once_with(POOL_ID)

    def test_new_end_past_closing_is_invalid_time(self, customer_client, crud):
        crud.get_booking = AsyncMock(return_value=booking_model(booking_date=at(16)))
        crud.update_booking_duration = AsyncMock()
        resp = customer_client.patch(self._url(), json={"duration": 480})
        assert resp.status_code == 400
        assert _error_code(resp) == ErrorCode.INVALID_BOOKING_TIME
        crud.update_booking_duration.assert_not_called()

    def test_new_end_exactly_at_closing_is_accepted(self, customer_client, crud):
        crud.get_booking = AsyncMock(return_value=booking_model(booking_date=at(16)))
        crud.update_booking_duration = AsyncMock(
            return_value=booking_model(booking_date=at(16), duration=240)
        )
        resp = customer_client.patch(self._url(), json={"duration": 240})
        assert resp.status_code == 200

    def test_scooter_conflict(self, customer_client, crud):
        crud.get_booking = AsyncMock(return_value=booking_model())
        crud.update_booking_duration = AsyncMock(
            side_effect=BookingError(ErrorCode.UPDATE_BOOKING_SCOOTER_CONFLICT)
        )
        resp = customer_client.patch(self._url(), json={"duration": 240})
        assert resp.status_code == 409
        assert _error_code(resp) == ErrorCode.UPDATE_BOOKING_SCOOTER_CONFLICT

    @pytest.mark.parametrize("status", ["ongoing", "closed", "cancelled"])
    def test_only_open_bookings_can_change(self, customer_client, crud, status):
        crud.get_booking = AsyncMock(return_value=booking_model(booking_status=status))
        crud.update_booking_duration = AsyncMock()
        resp = customer_client.patch(self._url(), json={"duration": 120})
        assert resp.status_code == 409
        assert _error_code(resp) == ErrorCode.INVALID_BOOKING_REQUEST
        crud.update_booking_duration.assert_not_called()

    def test_inactive_customer_rejected(self, client_factory, crud):
        crud.get_booking = AsyncMock(return_value=booking_model())
        crud.update_booking_duration = AsyncMock()
        client = client_factory(
            make_customer(),
            users_client=users_client_returning(directory_user(status="inactive")),
        )
        resp = client.patch(self._url(), json={"duration": 120})
        assert resp.status_code == 403
        assert _error_code(resp) == ErrorCode.INACTIVE_USER

    def test_unknown_booking_is_not_found(self, customer_client, crud):
        crud.get_booking = AsyncMock(return_value=None)
        resp = customer_client.patch(self._url(), json={"duration": 120})
        assert resp.status_code == 404
        assert _error_code(resp) == ErrorCode.BOOKING_NOT_FOUND

    def test_booking_vanished_during_update_is_not_found(self, customer_client, crud):
        crud.get_booking = AsyncMock(return_value=booking_model())
        crud.update_booking_duration = AsyncMock(return_value=None)
        resp = customer_client.patch(self._url(), json={"duration": 120})
        assert resp.status_code == 404

    def test_duration_outside_offered_set_is_invalid_input(self, customer_client, crud):
        crud.get_booking = AsyncMock(return_value=booking_model())
        resp = customer_client.patch(self._url(), json={"duration": 30})
        assert resp.status_code == 400
        assert _error_code(resp) == ErrorCode.INVALID_INPUT
        crud.get_booking.assert_not_called()

    def test_durations_follow_the_configured_rules(self, client_factory, crud):
        crud.get_booking = AsyncMock(return_value=booking_model())
        crud.update_booking_duration = AsyncMock(return_value=booking_model(duration=90))
        client = client_factory(make_customer(), rules=replace(RULES, durations=(60, 90)))
        resp = client.patch(self._url(), json={"duration": 90})
        assert resp.status_code == 200
        assert resp.json()["duration"] == 90
