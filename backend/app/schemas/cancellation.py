"""Schemas for cancellation tiers and cancellation requests."""
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.reservation import ReservationType


class CancellationTierCreate(BaseModel):
    reservation_type: ReservationType | None = None
    min_hours_before: int = Field(ge=0)
    refund_percentage: int = Field(ge=0, le=100)


class CancellationTierUpdate(BaseModel):
    min_hours_before: int | None = Field(default=None, ge=0)
    refund_percentage: int | None = Field(default=None, ge=0, le=100)


class CancellationTierRead(BaseModel):
    id: uuid.UUID
    facility_id: uuid.UUID
    reservation_type: ReservationType | None = None
    min_hours_before: int
    refund_percentage: int

    model_config = ConfigDict(from_attributes=True)


class CancellationRequest(BaseModel):
    """Body of a cancel call.

    Omit ``quote_id`` on the first call; a partial refund answers 409 with a
    quote that must be echoed back to confirm.
    """

    quote_id: uuid.UUID | None = None
    waive_fee: bool | None = None


class CancellationRead(BaseModel):
    reservation_id: uuid.UUID
    cancelled_at: datetime
    refund_percentage: int
    fee_waived: bool
    hours_before_start: int
    released_court_ids: list[uuid.UUID] = Field(default_factory=list)
    redemptions_restored: int = 0
    waitlist_offers_created: int = 0
