"""Open play rules, sessions and enforcement endpoints."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import DomainError
from app.db.session import get_sessionmaker
from app.models.open_play import OpenPlaySessionStatus
from app.models.user import User
from app.schemas.open_play import (
    AuditLogRead,
    AutoScaleToggle,
    EnforcementRunRead,
    OpenPlayRuleCreate,
    OpenPlayRuleRead,
    OpenPlayRuleUpdate,
    OpenPlaySessionCreate,
    OpenPlaySessionRead,
    ParticipantChange,
)
from app.services import audit_service, open_play_service
from app.services.court_locks import CourtLockRegistry

router = APIRouter()


@router.get("/rules", response_model=list[OpenPlayRuleRead], summary="List open play rules")
async def list_rules(
    facility_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> list[OpenPlayRuleRead]:
    await deps.ensure_facility_access(session, current_user, facility_id)
    rules = await open_play_service.list_rules(session, facility_id=facility_id)
    return [OpenPlayRuleRead.model_validate(rule) for rule in rules]


@router.post(
    "/rules",
    response_model=OpenPlayRuleRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create open play rule",
)
async def create_rule(
    payload: OpenPlayRuleCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
) -> OpenPlayRuleRead:
    await deps.ensure_facility_access(session, current_user, payload.facility_id)
    try:
        rule = await open_play_service.create_rule(session, **payload.model_dump())
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return OpenPlayRuleRead.model_validate(rule)


@router.patch(
    "/rules/{rule_id}", response_model=OpenPlayRuleRead, summary="Update open play rule"
)
async def update_rule(
    rule_id: uuid.UUID,
    payload: OpenPlayRuleUpdate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
) -> OpenPlayRuleRead:
    try:
        rule = await open_play_service.get_rule(session, rule_id=rule_id)
        await deps.ensure_facility_access(session, current_user, rule.facility_id)
        rule = await open_play_service.update_rule(
            session, rule_id=rule_id, **payload.model_dump(exclude_unset=True)
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return OpenPlayRuleRead.model_validate(rule)


@router.get(
    "/sessions", response_model=list[OpenPlaySessionRead], summary="List open play sessions"
)
async def list_sessions(
    facility_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    status_filter: OpenPlaySessionStatus | None = None,
) -> list[OpenPlaySessionRead]:
    await deps.ensure_facility_access(session, current_user, facility_id)
    sessions = await open_play_service.list_sessions(
        session, facility_id=facility_id, status=status_filter
    )
    return [OpenPlaySessionRead.model_validate(item) for item in sessions]


@router.post(
    "/sessions",
    response_model=OpenPlaySessionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule open play session",
)
async def schedule_session(
    payload: OpenPlaySessionCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
    locks: Annotated[CourtLockRegistry, Depends(deps.get_court_locks)],
) -> OpenPlaySessionRead:
    try:
        rule = await open_play_service.get_rule(session, rule_id=payload.rule_id)
        await deps.ensure_facility_access(session, current_user, rule.facility_id)
        open_play = await open_play_service.schedule_session(
            session,
            locks=locks,
            rule_id=payload.rule_id,
            start_at=payload.start_at,
            end_at=payload.end_at,
            created_by=current_user,
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return OpenPlaySessionRead.model_validate(open_play)


@router.get(
    "/sessions/{session_id}",
    response_model=OpenPlaySessionRead,
    summary="Get open play session",
)
async def get_session(
    session_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> OpenPlaySessionRead:
    try:
        open_play = await open_play_service.get_session(session, session_id=session_id)
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    await deps.ensure_facility_access(session, current_user, open_play.facility_id)
    return OpenPlaySessionRead.model_validate(open_play)


@router.post(
    "/sessions/{session_id}/participants",
    response_model=OpenPlaySessionRead,
    summary="Sign up for open play",
)
async def add_participant(
    session_id: uuid.UUID,
    payload: ParticipantChange,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> OpenPlaySessionRead:
    try:
        open_play = await open_play_service.get_session(session, session_id=session_id)
        await deps.ensure_facility_access(session, current_user, open_play.facility_id)
        open_play = await open_play_service.add_participant(
            session, session_id=session_id, actor=current_user, user_id=payload.user_id
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return OpenPlaySessionRead.model_validate(open_play)


@router.delete(
    "/sessions/{session_id}/participants",
    response_model=OpenPlaySessionRead,
    summary="Withdraw from open play",
)
async def remove_participant(
    session_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    user_id: uuid.UUID | None = None,
) -> OpenPlaySessionRead:
    try:
        open_play = await open_play_service.get_session(session, session_id=session_id)
        await deps.ensure_facility_access(session, current_user, open_play.facility_id)
        open_play = await open_play_service.remove_participant(
            session, session_id=session_id, actor=current_user, user_id=user_id
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return OpenPlaySessionRead.model_validate(open_play)


@router.post(
    "/sessions/{session_id}/auto-scale",
    response_model=OpenPlaySessionRead,
    summary="Toggle auto-scale override",
)
async def toggle_auto_scale(
    session_id: uuid.UUID,
    payload: AutoScaleToggle,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
) -> OpenPlaySessionRead:
    try:
        open_play = await open_play_service.get_session(session, session_id=session_id)
        await deps.ensure_facility_access(session, current_user, open_play.facility_id)
        open_play = await open_play_service.toggle_auto_scale_override(
            session,
            session_id=session_id,
            actor=current_user,
            disable_for_rule=payload.disable_for_rule,
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return OpenPlaySessionRead.model_validate(open_play)


@router.get(
    "/sessions/{session_id}/audit",
    response_model=list[AuditLogRead],
    summary="Audit trail for a session",
)
async def session_audit(
    session_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
) -> list[AuditLogRead]:
    try:
        open_play = await open_play_service.get_session(session, session_id=session_id)
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    await deps.ensure_facility_access(session, current_user, open_play.facility_id)
    entries = await audit_service.list_for_session(session, open_play_session_id=session_id)
    return [AuditLogRead.model_validate(entry) for entry in entries]


@router.post(
    "/enforcement/run",
    response_model=EnforcementRunRead,
    summary="Run one enforcement pass for a facility",
)
async def run_enforcement(
    facility_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
    locks: Annotated[CourtLockRegistry, Depends(deps.get_court_locks)],
) -> EnforcementRunRead:
    await deps.ensure_facility_access(session, current_user, facility_id)
    summary = await open_play_service.run_enforcement_pass(
        get_sessionmaker(), locks=locks, facility_id=facility_id
    )
    return EnforcementRunRead.model_validate(summary)
