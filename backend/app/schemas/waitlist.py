"""Pydantic schemas for the court waitlist."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.waitlist import (
    WaitlistNotificationMode,
    WaitlistOfferStatus,
    WaitlistStatus,
)


class WaitlistConfigUpdate(BaseModel):
    max_waitlist_size: int | None = Field(default=None, ge=0)
    notification_mode: WaitlistNotificationMode | None = None
    offer_expiry_minutes: int | None = Field(default=None, ge=0)
    notification_window_minutes: int | None = Field(default=None, ge=0)


class WaitlistConfigRead(BaseModel):
    facility_id: uuid.UUID
    max_waitlist_size: int
    notification_mode: WaitlistNotificationMode
    offer_expiry_minutes: int
    notification_window_minutes: int

    model_config = ConfigDict(from_attributes=True)


class WaitlistJoin(BaseModel):
    """Request to queue for a slot; ``court_id`` omitted means any court."""

    facility_id: uuid.UUID
    start_at: datetime
    end_at: datetime
    court_id: uuid.UUID | None = None


class WaitlistOfferRead(BaseModel):
    id: uuid.UUID
    waitlist_entry_id: uuid.UUID
    court_id: uuid.UUID | None = None
    offered_at: datetime
    expires_at: datetime
    status: WaitlistOfferStatus
    responded_at: datetime | None = None
    reservation_id: uuid.UUID | None = None

    model_config = ConfigDict(from_attributes=True)


class WaitlistEntryRead(BaseModel):
    id: uuid.UUID
    facility_id: uuid.UUID
    user_id: uuid.UUID
    target_court_id: uuid.UUID | None = None
    target_date: date
    target_start_at: datetime
    target_end_at: datetime
    position: int
    status: WaitlistStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WaitlistEntryDetail(WaitlistEntryRead):
    offers: list[WaitlistOfferRead] = Field(default_factory=list)
