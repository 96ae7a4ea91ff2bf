"""Staff notification schemas."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.models.staff_notification import StaffNotificationType


class StaffNotificationRead(BaseModel):
    id: uuid.UUID
    facility_id: uuid.UUID
    notification_type: StaffNotificationType
    message: str
    related_session_id: uuid.UUID | None = None
    related_reservation_id: uuid.UUID | None = None
    target_staff_id: uuid.UUID | None = None
    read_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
