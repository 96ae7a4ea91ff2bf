"""Prepaid package endpoints."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import DomainError
from app.models.prepaid_package import PackageKind
from app.models.user import User
from app.schemas.package import (
    PackagePurchase,
    PackageRedeem,
    PackageRedemptionRead,
    PackageTypeCreate,
    PackageTypeRead,
    PrepaidPackageRead,
)
from app.services import package_service

router = APIRouter(prefix="/packages")


@router.get("/types", response_model=list[PackageTypeRead], summary="List package types")
async def list_package_types(
    facility_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    kind: PackageKind | None = None,
) -> list[PackageTypeRead]:
    await deps.ensure_facility_access(session, current_user, facility_id)
    types = await package_service.list_package_types(
        session, facility_id=facility_id, kind=kind
    )
    return [PackageTypeRead.model_validate(item) for item in types]


@router.post(
    "/types",
    response_model=PackageTypeRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create package type",
)
async def create_package_type(
    payload: PackageTypeCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
) -> PackageTypeRead:
    await deps.ensure_facility_access(session, current_user, payload.facility_id)
    try:
        package_type = await package_service.create_package_type(
            session, **payload.model_dump()
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return PackageTypeRead.model_validate(package_type)


@router.post(
    "",
    response_model=PrepaidPackageRead,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a purchased package",
)
async def purchase_package(
    payload: PackagePurchase,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> PrepaidPackageRead:
    owner_id = payload.user_id or current_user.id
    if owner_id != current_user.id and not current_user.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions"
        )
    try:
        package_type = await package_service.get_package_type(
            session, payload.package_type_id
        )
        await deps.ensure_facility_access(session, current_user, package_type.facility_id)
        package = await package_service.purchase_package(
            session, package_type_id=payload.package_type_id, user_id=owner_id
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return PrepaidPackageRead.model_validate(package)


@router.get("/mine", response_model=list[PrepaidPackageRead], summary="My packages")
async def list_my_packages(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    kind: PackageKind | None = None,
    active_only: bool = False,
) -> list[PrepaidPackageRead]:
    packages = await package_service.list_packages_for_user(
        session, user_id=current_user.id, kind=kind, active_only=active_only
    )
    return [PrepaidPackageRead.model_validate(pkg) for pkg in packages]


@router.post(
    "/{package_id}/redeem",
    response_model=PackageRedemptionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Redeem one unit without a booking",
)
async def redeem_package(
    package_id: uuid.UUID,
    payload: PackageRedeem,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> PackageRedemptionRead:
    await deps.ensure_facility_access(session, current_user, payload.facility_id)
    try:
        redemption = await package_service.redeem_for_user(
            session,
            package_id=package_id,
            user=current_user,
            facility_id=payload.facility_id,
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return PackageRedemptionRead.model_validate(redemption)
