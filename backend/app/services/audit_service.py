"""Helpers for recording audit log entries.

Entries are added to the caller's unit of work and flushed, never committed
here, so a decision and its audit row land (or roll back) together.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLogEntry


async def record_event(
    session: AsyncSession,
    *,
    action: str,
    facility_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
    open_play_session_id: uuid.UUID | None = None,
    waitlist_entry_id: uuid.UUID | None = None,
    before_state: dict[str, Any] | None = None,
    after_state: dict[str, Any] | None = None,
    reason: str | None = None,
) -> AuditLogEntry:
    """Stage an audit entry in the current transaction and return it."""
    entry = AuditLogEntry(
        action=action,
        facility_id=facility_id,
        user_id=user_id,
        open_play_session_id=open_play_session_id,
        waitlist_entry_id=waitlist_entry_id,
        before_state=before_state,
        after_state=after_state,
        reason=reason,
    )
    session.add(entry)
    await session.flush()
    return entry


async def list_for_session(
    session: AsyncSession, *, open_play_session_id: uuid.UUID
) -> Sequence[AuditLogEntry]:
    result = await session.execute(
        select(AuditLogEntry)
        .where(AuditLogEntry.open_play_session_id == open_play_session_id)
        .order_by(AuditLogEntry.created_at, AuditLogEntry.id)
    )
    return result.scalars().all()


async def list_for_facility(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    action: str | None = None,
    limit: int = 100,
) -> Sequence[AuditLogEntry]:
    stmt = (
        select(AuditLogEntry)
        .where(AuditLogEntry.facility_id == facility_id)
        .order_by(AuditLogEntry.created_at.desc())
        .limit(limit)
    )
    if action is not None:
        stmt = stmt.where(AuditLogEntry.action == action)
    result = await session.execute(stmt)
    return result.scalars().all()
