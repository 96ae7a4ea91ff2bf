"""Reservation API integration tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


def _next_hour(offset: timedelta) -> datetime:
    return (datetime.now(UTC) + offset).replace(minute=0, second=0, microsecond=0)


def _payload(
    context: dict[str, Any],
    start: datetime,
    *,
    court_index: int = 0,
    hours: int = 1,
    **extra: Any,
) -> dict[str, Any]:
    payload = {
        "facility_id": str(context["facility_id"]),
        "reservation_type": "game",
        "start_at": start.isoformat(),
        "end_at": (start + timedelta(hours=hours)).isoformat(),
        "court_ids": [str(context["court_ids"][court_index])],
    }
    payload.update(extra)
    return payload


async def test_reservation_lifecycle(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]
    member_headers = app_context["member_headers"]
    start = _next_hour(timedelta(days=2))

    create_resp = await client.post(
        "/api/v1/reservations", json=_payload(app_context, start), headers=member_headers
    )
    assert create_resp.status_code == 201, create_resp.text
    body = create_resp.json()
    reservation_id = body["id"]
    assert body["status"] == "active"
    assert body["primary_user_id"] == str(app_context["member_id"])
    assert body["court_ids"] == [str(app_context["court_ids"][0])]

    get_resp = await client.get(
        f"/api/v1/reservations/{reservation_id}", headers=member_headers
    )
    assert get_resp.status_code == 200

    hidden = await client.get(
        f"/api/v1/reservations/{reservation_id}",
        headers=app_context["other_member_headers"],
    )
    assert hidden.status_code == 404

    cancel_resp = await client.post(
        f"/api/v1/reservations/{reservation_id}/cancel", json={}, headers=member_headers
    )
    assert cancel_resp.status_code == 200, cancel_resp.text
    cancelled = cancel_resp.json()
    assert cancelled["refund_percentage"] == 100
    assert cancelled["released_court_ids"] == [str(app_context["court_ids"][0])]

    again = await client.post(
        f"/api/v1/reservations/{reservation_id}/cancel", json={}, headers=member_headers
    )
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "already_cancelled"


async def test_members_only_list_their_own_reservations(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]
    start = _next_hour(timedelta(days=1))

    mine = await client.post(
        "/api/v1/reservations",
        json=_payload(app_context, start),
        headers=app_context["member_headers"],
    )
    assert mine.status_code == 201
    theirs = await client.post(
        "/api/v1/reservations",
        json=_payload(app_context, start, court_index=1),
        headers=app_context["other_member_headers"],
    )
    assert theirs.status_code == 201

    params = {"facility_id": str(app_context["facility_id"])}
    member_list = await client.get(
        "/api/v1/reservations", params=params, headers=app_context["member_headers"]
    )
    staff_list = await client.get(
        "/api/v1/reservations", params=params, headers=app_context["staff_headers"]
    )
    assert [item["id"] for item in member_list.json()] == [mine.json()["id"]]
    assert {item["id"] for item in staff_list.json()} == {
        mine.json()["id"],
        theirs.json()["id"],
    }


async def test_overlapping_booking_returns_conflict(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]
    start = _next_hour(timedelta(days=1))

    first = await client.post(
        "/api/v1/reservations",
        json=_payload(app_context, start),
        headers=app_context["member_headers"],
    )
    assert first.status_code == 201

    clash = await client.post(
        "/api/v1/reservations",
        json=_payload(app_context, start + timedelta(minutes=30)),
        headers=app_context["other_member_headers"],
    )
    assert clash.status_code == 409
    detail = clash.json()["detail"]
    assert detail["code"] == "court_unavailable"
    assert detail["details"]["conflicting_court_ids"] == [str(app_context["court_ids"][0])]

    check = await client.post(
        "/api/v1/availability/check",
        json={
            "facility_id": str(app_context["facility_id"]),
            "court_ids": [str(court_id) for court_id in app_context["court_ids"][:2]],
            "start_at": start.isoformat(),
            "end_at": (start + timedelta(hours=1)).isoformat(),
        },
        headers=app_context["member_headers"],
    )
    assert check.status_code == 200
    assert check.json() == {
        "available": False,
        "conflicting_court_ids": [str(app_context["court_ids"][0])],
    }

    free = await client.get(
        "/api/v1/availability/free",
        params={
            "facility_id": str(app_context["facility_id"]),
            "start_at": start.isoformat(),
            "end_at": (start + timedelta(hours=1)).isoformat(),
        },
        headers=app_context["member_headers"],
    )
    assert [court["court_number"] for court in free.json()] == [2, 3, 4]


async def test_partial_refund_requires_quote_confirmation(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]
    facility_id = app_context["facility_id"]

    tier_resp = await client.post(
        f"/api/v1/facilities/{facility_id}/cancellation-tiers",
        json={"min_hours_before": 0, "refund_percentage": 50},
        headers=app_context["staff_headers"],
    )
    assert tier_resp.status_code == 201, tier_resp.text
    forbidden = await client.post(
        f"/api/v1/facilities/{facility_id}/cancellation-tiers",
        json={"min_hours_before": 48, "refund_percentage": 100},
        headers=app_context["member_headers"],
    )
    assert forbidden.status_code == 403

    start = _next_hour(timedelta(hours=6))
    create_resp = await client.post(
        "/api/v1/reservations",
        json=_payload(app_context, start),
        headers=app_context["member_headers"],
    )
    assert create_resp.status_code == 201, create_resp.text
    reservation_id = create_resp.json()["id"]

    quote_resp = await client.post(
        f"/api/v1/reservations/{reservation_id}/cancel",
        json={},
        headers=app_context["member_headers"],
    )
    assert quote_resp.status_code == 409
    detail = quote_resp.json()["detail"]
    assert detail["code"] == "cancellation_confirmation_required"
    assert detail["details"]["refund_percentage"] == 50
    assert detail["details"]["court_label"] == "Court 1"

    confirm_resp = await client.post(
        f"/api/v1/reservations/{reservation_id}/cancel",
        json={"quote_id": detail["details"]["quote_id"]},
        headers=app_context["member_headers"],
    )
    assert confirm_resp.status_code == 200, confirm_resp.text
    assert confirm_resp.json()["refund_percentage"] == 50
    assert confirm_resp.json()["fee_waived"] is False


async def test_member_booking_rules_surface_as_http_errors(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]
    headers = app_context["member_headers"]

    too_far = await client.post(
        "/api/v1/reservations",
        json=_payload(app_context, _next_hour(timedelta(days=10))),
        headers=headers,
    )
    assert too_far.status_code == 400

    clinic = await client.post(
        "/api/v1/reservations",
        json=_payload(
            app_context, _next_hour(timedelta(days=1)), reservation_type="clinic"
        ),
        headers=headers,
    )
    assert clinic.status_code == 403

    reversed_window = _payload(app_context, _next_hour(timedelta(days=1)))
    reversed_window["end_at"], reversed_window["start_at"] = (
        reversed_window["start_at"],
        reversed_window["end_at"],
    )
    invalid = await client.post("/api/v1/reservations", json=reversed_window, headers=headers)
    assert invalid.status_code == 422


async def test_requests_without_token_are_rejected(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]
    response = await client.get(
        "/api/v1/reservations", params={"facility_id": str(app_context["facility_id"])}
    )
    assert response.status_code == 401

    bad_token = await client.get(
        "/api/v1/reservations",
        params={"facility_id": str(app_context["facility_id"])},
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert bad_token.status_code == 401
