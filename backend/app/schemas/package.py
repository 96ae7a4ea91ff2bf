"""Schemas for prepaid visit packs and lesson packages."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.prepaid_package import PackageKind, PackageStatus, PackageTypeStatus


class PackageTypeCreate(BaseModel):
    facility_id: uuid.UUID
    kind: PackageKind
    name: str = Field(min_length=1, max_length=255)
    unit_count: int = Field(gt=0)
    valid_days: int = Field(gt=0)


class PackageTypeRead(BaseModel):
    id: uuid.UUID
    facility_id: uuid.UUID
    kind: PackageKind
    name: str
    unit_count: int
    valid_days: int
    status: PackageTypeStatus

    model_config = ConfigDict(from_attributes=True)


class PackagePurchase(BaseModel):
    package_type_id: uuid.UUID
    user_id: uuid.UUID | None = None


class PrepaidPackageRead(BaseModel):
    id: uuid.UUID
    package_type_id: uuid.UUID
    user_id: uuid.UUID
    facility_id: uuid.UUID
    kind: PackageKind
    unit_count: int
    units_remaining: int
    purchased_at: datetime
    expires_at: datetime
    status: PackageStatus

    model_config = ConfigDict(from_attributes=True)


class PackageRedeem(BaseModel):
    facility_id: uuid.UUID


class PackageRedemptionRead(BaseModel):
    id: uuid.UUID
    package_id: uuid.UUID
    facility_id: uuid.UUID
    reservation_id: uuid.UUID | None = None
    redeemed_at: datetime

    model_config = ConfigDict(from_attributes=True)
