"""Schemas for open play rules and sessions."""
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.open_play import OpenPlaySessionStatus


class OpenPlayRuleCreate(BaseModel):
    facility_id: uuid.UUID
    name: str = Field(min_length=1, max_length=255)
    min_participants: int = Field(default=4, gt=0)
    max_participants_per_court: int = Field(default=8, gt=0)
    cancellation_cutoff_minutes: int = Field(default=60, ge=0)
    auto_scale_enabled: bool = True
    min_courts: int = Field(default=1, gt=0)
    max_courts: int = Field(default=4, gt=0)


class OpenPlayRuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    min_participants: int | None = Field(default=None, gt=0)
    max_participants_per_court: int | None = Field(default=None, gt=0)
    cancellation_cutoff_minutes: int | None = Field(default=None, ge=0)
    auto_scale_enabled: bool | None = None
    min_courts: int | None = Field(default=None, gt=0)
    max_courts: int | None = Field(default=None, gt=0)


class OpenPlayRuleRead(BaseModel):
    id: uuid.UUID
    facility_id: uuid.UUID
    name: str
    min_participants: int
    max_participants_per_court: int
    cancellation_cutoff_minutes: int
    auto_scale_enabled: bool
    min_courts: int
    max_courts: int

    model_config = ConfigDict(from_attributes=True)


class OpenPlaySessionCreate(BaseModel):
    rule_id: uuid.UUID
    start_at: datetime
    end_at: datetime


class OpenPlaySessionRead(BaseModel):
    id: uuid.UUID
    facility_id: uuid.UUID
    open_play_rule_id: uuid.UUID
    reservation_id: uuid.UUID | None = None
    start_at: datetime
    end_at: datetime
    status: OpenPlaySessionStatus
    current_court_count: int
    auto_scale_override: bool | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ParticipantChange(BaseModel):
    """Staff may name a member; members act on themselves."""

    user_id: uuid.UUID | None = None


class AutoScaleToggle(BaseModel):
    disable_for_rule: bool = False


class EnforcementRunRead(BaseModel):
    evaluated: int
    cancelled: list[uuid.UUID] = Field(default_factory=list)
    scaled: list[uuid.UUID] = Field(default_factory=list)
    capped: list[uuid.UUID] = Field(default_factory=list)
    failed: list[uuid.UUID] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class AuditLogRead(BaseModel):
    id: uuid.UUID
    action: str
    user_id: uuid.UUID | None = None
    open_play_session_id: uuid.UUID | None = None
    waitlist_entry_id: uuid.UUID | None = None
    before_state: dict | None = None
    after_state: dict | None = None
    reason: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
