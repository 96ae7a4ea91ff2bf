"""Prepaid package API tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


async def test_package_purchase_booking_and_refund(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]
    facility_id = str(app_context["facility_id"])

    type_resp = await client.post(
        "/api/v1/packages/types",
        json={
            "facility_id": facility_id,
            "kind": "visit",
            "name": "Three visit pass",
            "unit_count": 3,
            "valid_days": 30,
        },
        headers=app_context["staff_headers"],
    )
    assert type_resp.status_code == 201, type_resp.text
    package_type_id = type_resp.json()["id"]

    member_type = await client.post(
        "/api/v1/packages/types",
        json={
            "facility_id": facility_id,
            "kind": "visit",
            "name": "Free visits",
            "unit_count": 99,
            "valid_days": 30,
        },
        headers=app_context["member_headers"],
    )
    assert member_type.status_code == 403

    purchase = await client.post(
        "/api/v1/packages",
        json={"package_type_id": package_type_id},
        headers=app_context["member_headers"],
    )
    assert purchase.status_code == 201, purchase.text
    package = purchase.json()
    assert package["units_remaining"] == 3

    for_other = await client.post(
        "/api/v1/packages",
        json={
            "package_type_id": package_type_id,
            "user_id": str(app_context["other_member_id"]),
        },
        headers=app_context["member_headers"],
    )
    assert for_other.status_code == 403

    start = (datetime.now(UTC) + timedelta(days=1)).replace(minute=0, second=0, microsecond=0)
    booking = await client.post(
        "/api/v1/reservations",
        json={
            "facility_id": facility_id,
            "reservation_type": "game",
            "start_at": start.isoformat(),
            "end_at": (start + timedelta(hours=1)).isoformat(),
            "court_ids": [str(app_context["court_ids"][0])],
            "package_id": package["id"],
        },
        headers=app_context["member_headers"],
    )
    assert booking.status_code == 201, booking.text

    redeem = await client.post(
        f"/api/v1/packages/{package['id']}/redeem",
        json={"facility_id": facility_id},
        headers=app_context["member_headers"],
    )
    assert redeem.status_code == 201
    assert redeem.json()["reservation_id"] is None

    mine = await client.get("/api/v1/packages/mine", headers=app_context["member_headers"])
    assert mine.json()[0]["units_remaining"] == 1

    cancel = await client.post(
        f"/api/v1/reservations/{booking.json()['id']}/cancel",
        json={},
        headers=app_context["member_headers"],
    )
    assert cancel.status_code == 200
    assert cancel.json()["redemptions_restored"] == 1

    mine = await client.get("/api/v1/packages/mine", headers=app_context["member_headers"])
    assert mine.json()[0]["units_remaining"] == 2

    stolen = await client.post(
        f"/api/v1/packages/{package['id']}/redeem",
        json={"facility_id": facility_id},
        headers=app_context["other_member_headers"],
    )
    assert stolen.status_code == 403
