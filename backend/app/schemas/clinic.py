"""Pydantic schemas for clinics."""
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ClinicTypeCreate(BaseModel):
    facility_id: uuid.UUID
    name: str = Field(min_length=1, max_length=255)
    min_participants: int = Field(default=1, gt=0)
    max_participants: int = Field(default=12, gt=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ClinicTypeCreate":
        if self.min_participants > self.max_participants:
            raise ValueError("min_participants cannot exceed max_participants")
        return self


class ClinicTypeRead(BaseModel):
    id: uuid.UUID
    facility_id: uuid.UUID
    name: str
    min_participants: int
    max_participants: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClinicSchedule(BaseModel):
    """Payload for booking one clinic session."""

    clinic_type_id: uuid.UUID
    start_at: datetime
    end_at: datetime
    court_ids: list[uuid.UUID] = Field(min_length=1)
    pro_id: uuid.UUID | None = None

    @model_validator(mode="after")
    def _check_window(self) -> "ClinicSchedule":
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self
