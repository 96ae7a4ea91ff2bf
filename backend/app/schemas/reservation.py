"""Pydantic schemas for reservations and availability."""
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.reservation import ReservationStatus, ReservationType


class ReservationCreate(BaseModel):
    """Payload for booking courts."""

    facility_id: uuid.UUID
    reservation_type: ReservationType = ReservationType.GAME
    start_at: datetime
    end_at: datetime
    court_ids: list[uuid.UUID] = Field(min_length=1)
    primary_user_id: uuid.UUID | None = None
    participant_ids: list[uuid.UUID] = Field(default_factory=list)
    pro_id: uuid.UUID | None = None
    package_id: uuid.UUID | None = None
    notes: str | None = Field(default=None, max_length=1024)

    @model_validator(mode="after")
    def _check_window(self) -> "ReservationCreate":
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class ReservationRead(BaseModel):
    """Serialized reservation representation."""

    id: uuid.UUID
    facility_id: uuid.UUID
    reservation_type: ReservationType
    status: ReservationStatus
    start_at: datetime
    end_at: datetime
    primary_user_id: uuid.UUID | None = None
    created_by_user_id: uuid.UUID
    pro_id: uuid.UUID | None = None
    open_play_rule_id: uuid.UUID | None = None
    clinic_type_id: uuid.UUID | None = None
    notes: str | None = None
    cancelled_at: datetime | None = None
    court_ids: list[uuid.UUID] = Field(default_factory=list)
    participant_ids: list[uuid.UUID] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AvailabilityQuery(BaseModel):
    facility_id: uuid.UUID
    court_ids: list[uuid.UUID] = Field(min_length=1)
    start_at: datetime
    end_at: datetime
    exclude_reservation_id: uuid.UUID | None = None


class AvailabilityRead(BaseModel):
    available: bool
    conflicting_court_ids: list[uuid.UUID] = Field(default_factory=list)


class FreeCourtRead(BaseModel):
    id: uuid.UUID
    name: str
    court_number: int

    model_config = ConfigDict(from_attributes=True)
