"""Waitlist queueing and offer sequencing for freed court slots."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import get_settings
from app.core.errors import (
    AvailabilityConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    WaitlistConflictError,
)
from app.core.timeutils import coerce_utc, local_date
from app.models import (
    AuditAction,
    Court,
    Facility,
    Reservation,
    ReservationType,
    User,
    WaitlistConfig,
    WaitlistEntry,
    WaitlistNotificationMode,
    WaitlistOffer,
    WaitlistOfferStatus,
    WaitlistStatus,
)
from app.services import audit_service, availability_service
from app.services.court_locks import CourtLockRegistry

logger = logging.getLogger(__name__)

_ACTIVE_ENTRY_STATUSES = (WaitlistStatus.PENDING, WaitlistStatus.NOTIFIED)
_JOIN_ATTEMPTS = 3


@dataclass(slots=True)
class SweepSummary:
    """Counts reported by a periodic waitlist sweep."""

    processed: int = 0
    advanced: int = 0
    failed: int = 0


def _slot_filter(facility_id: uuid.UUID, start_at: datetime, end_at: datetime):
    return and_(
        WaitlistEntry.facility_id == facility_id,
        WaitlistEntry.target_start_at == coerce_utc(start_at),
        WaitlistEntry.target_end_at == coerce_utc(end_at),
    )


def _court_preference_filter(court_id: uuid.UUID | None):
    if court_id is None:
        return WaitlistEntry.target_court_id.is_(None)
    return WaitlistEntry.target_court_id == court_id


def offer_lifetime(config: WaitlistConfig) -> timedelta:
    minutes = config.offer_expiry_minutes
    if minutes is None or minutes <= 0:
        minutes = get_settings().waitlist_default_offer_expiry_minutes
    return timedelta(minutes=minutes)


async def get_config(session: AsyncSession, *, facility_id: uuid.UUID) -> WaitlistConfig:
    """Return the facility config, or unsaved defaults when none exists."""
    result = await session.execute(
        select(WaitlistConfig).where(WaitlistConfig.facility_id == facility_id)
    )
    config = result.scalar_one_or_none()
    if config is None:
        config = WaitlistConfig(
            facility_id=facility_id,
            max_waitlist_size=0,
            notification_mode=WaitlistNotificationMode.BROADCAST,
            offer_expiry_minutes=get_settings().waitlist_default_offer_expiry_minutes,
            notification_window_minutes=0,
        )
    return config


async def upsert_config(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    max_waitlist_size: int | None = None,
    notification_mode: WaitlistNotificationMode | None = None,
    offer_expiry_minutes: int | None = None,
    notification_window_minutes: int | None = None,
) -> WaitlistConfig:
    if max_waitlist_size is not None and max_waitlist_size < 0:
        raise ValidationError("max_waitlist_size must be zero or greater")
    if notification_window_minutes is not None and notification_window_minutes < 0:
        raise ValidationError("notification_window_minutes must be zero or greater")

    config = await get_config(session, facility_id=facility_id)
    if max_waitlist_size is not None:
        config.max_waitlist_size = max_waitlist_size
    if notification_mode is not None:
        config.notification_mode = notification_mode
    if offer_expiry_minutes is not None:
        config.offer_expiry_minutes = offer_expiry_minutes
    if notification_window_minutes is not None:
        config.notification_window_minutes = notification_window_minutes
    session.add(config)
    await session.commit()
    await session.refresh(config)
    return config


async def _next_position(
    session: AsyncSession, *, facility_id: uuid.UUID, start_at: datetime, end_at: datetime
) -> int:
    result = await session.execute(
        select(func.max(WaitlistEntry.position)).where(
            _slot_filter(facility_id, start_at, end_at)
        )
    )
    current = result.scalar_one_or_none()
    return (current or 0) + 1


async def join_waitlist(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    user: User,
    start_at: datetime,
    end_at: datetime,
    court_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> WaitlistEntry:
    """Queue ``user`` for a slot; re-joining after expiry goes to the back."""
    now = coerce_utc(now or datetime.now(UTC))
    start_at = coerce_utc(start_at)
    end_at = coerce_utc(end_at)
    if end_at <= start_at:
        raise ValidationError("Waitlist end time must be after start time")

    facility = await session.get(Facility, facility_id)
    if facility is None:
        raise NotFoundError("Facility not found")
    target_date = local_date(start_at, facility.timezone)
    if local_date(end_at - timedelta(microseconds=1), facility.timezone) != target_date:
        raise ValidationError("Waitlist slot must start and end on the same date")
    if start_at <= now:
        raise ValidationError("Waitlist slot must be in the future")
    if court_id is not None:
        court = await session.get(Court, court_id)
        if court is None or court.facility_id != facility_id:
            raise ValidationError("Court does not belong to the facility")

    config = await get_config(session, facility_id=facility_id)

    for attempt in range(1, _JOIN_ATTEMPTS + 1):
        existing_result = await session.execute(
            select(WaitlistEntry).where(
                _slot_filter(facility_id, start_at, end_at),
                _court_preference_filter(court_id),
                WaitlistEntry.user_id == user.id,
            )
        )
        existing = existing_result.scalar_one_or_none()
        if existing is not None and existing.status in _ACTIVE_ENTRY_STATUSES:
            raise WaitlistConflictError(
                "Already on the waitlist for this slot",
                code="waitlist_duplicate",
                details={"entry_id": str(existing.id)},
            )

        if config.max_waitlist_size > 0:
            count_result = await session.execute(
                select(func.count())
                .select_from(WaitlistEntry)
                .where(
                    _slot_filter(facility_id, start_at, end_at),
                    WaitlistEntry.status.in_(_ACTIVE_ENTRY_STATUSES),
                )
            )
            current = int(count_result.scalar_one())
            if current >= config.max_waitlist_size:
                raise WaitlistConflictError(
                    "Waitlist is full for this slot",
                    code="waitlist_full",
                    details={"current_count": current, "limit": config.max_waitlist_size},
                )

        position = await _next_position(
            session, facility_id=facility_id, start_at=start_at, end_at=end_at
        )
        if existing is not None:
            entry = existing
            entry.position = position
            entry.status = WaitlistStatus.PENDING
        else:
            entry = WaitlistEntry(
                facility_id=facility_id,
                user_id=user.id,
                target_court_id=court_id,
                target_date=target_date,
                target_start_at=start_at,
                target_end_at=end_at,
                position=position,
                status=WaitlistStatus.PENDING,
            )
            session.add(entry)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            if attempt == _JOIN_ATTEMPTS:
                raise WaitlistConflictError(
                    "Waitlist changed while joining; try again",
                    code="waitlist_busy",
                ) from None
            logger.debug("Retrying waitlist join for user %s (attempt %s)", user.id, attempt)
            continue
        await session.refresh(entry)
        return entry
    raise AssertionError("unreachable")  # pragma: no cover


async def get_entry(session: AsyncSession, entry_id: uuid.UUID) -> WaitlistEntry | None:
    return await session.get(WaitlistEntry, entry_id)


async def leave_waitlist(
    session: AsyncSession,
    *,
    entry_id: uuid.UUID,
    user: User,
    now: datetime | None = None,
) -> WaitlistOffer | None:
    """Remove ``user`` from a queue, passing any pending offer to the next entry."""
    now = coerce_utc(now or datetime.now(UTC))
    entry = await session.get(
        WaitlistEntry, entry_id, options=[selectinload(WaitlistEntry.offers)]
    )
    if entry is None:
        raise NotFoundError("Waitlist entry not found")
    if entry.user_id != user.id:
        raise PermissionDeniedError("Only the member on the waitlist can leave it")

    pending = [offer for offer in entry.offers if offer.status == WaitlistOfferStatus.PENDING]
    next_offer: WaitlistOffer | None = None
    try:
        for offer in pending:
            offer.status = WaitlistOfferStatus.EXPIRED
            offer.responded_at = now
        await session.flush()
        if pending:
            config = await get_config(session, facility_id=entry.facility_id)
            next_offer = await _advance_queue(
                session, expired_entry=entry, expired_offer=pending[0], config=config, now=now
            )
        await session.delete(entry)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    if next_offer is not None:
        logger.info(
            "Waitlist entry %s left with a pending offer; offered slot to entry %s",
            entry_id,
            next_offer.waitlist_entry_id,
        )
    return next_offer


async def list_entries_for_user(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    facility_id: uuid.UUID | None = None,
) -> Sequence[WaitlistEntry]:
    stmt = (
        select(WaitlistEntry)
        .options(selectinload(WaitlistEntry.offers))
        .where(WaitlistEntry.user_id == user_id)
        .order_by(WaitlistEntry.target_start_at, WaitlistEntry.position)
    )
    if facility_id is not None:
        stmt = stmt.where(WaitlistEntry.facility_id == facility_id)
    result = await session.execute(stmt)
    return result.scalars().unique().all()


async def list_entries_for_slot(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    start_at: datetime,
    end_at: datetime,
) -> Sequence[WaitlistEntry]:
    result = await session.execute(
        select(WaitlistEntry)
        .options(selectinload(WaitlistEntry.offers))
        .where(_slot_filter(facility_id, start_at, end_at))
        .order_by(WaitlistEntry.position, WaitlistEntry.created_at, WaitlistEntry.id)
    )
    return result.scalars().unique().all()


async def _has_pending_offer_for_slot(
    session: AsyncSession, *, facility_id: uuid.UUID, start_at: datetime, end_at: datetime
) -> bool:
    result = await session.execute(
        select(WaitlistOffer.id)
        .join(WaitlistEntry, WaitlistEntry.id == WaitlistOffer.waitlist_entry_id)
        .where(
            _slot_filter(facility_id, start_at, end_at),
            WaitlistOffer.status == WaitlistOfferStatus.PENDING,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _create_offer(
    session: AsyncSession,
    *,
    entry: WaitlistEntry,
    court_id: uuid.UUID | None,
    now: datetime,
    lifetime: timedelta,
) -> WaitlistOffer:
    offer = WaitlistOffer(
        waitlist_entry_id=entry.id,
        court_id=court_id,
        offered_at=now,
        expires_at=now + lifetime,
        status=WaitlistOfferStatus.PENDING,
    )
    session.add(offer)
    entry.status = WaitlistStatus.NOTIFIED
    await session.flush()
    await audit_service.record_event(
        session,
        action=AuditAction.WAITLIST_OFFERED,
        facility_id=entry.facility_id,
        user_id=entry.user_id,
        waitlist_entry_id=entry.id,
        after_state={
            "offer_id": str(offer.id),
            "position": entry.position,
            "court_id": str(court_id) if court_id else None,
            "expires_at": offer.expires_at.isoformat(),
        },
    )
    return offer


async def notify_released_slot(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    start_at: datetime,
    end_at: datetime,
    court_ids: Sequence[uuid.UUID],
    now: datetime | None = None,
) -> list[WaitlistOffer]:
    """Create offers for entries matching a freed slot, per the facility mode."""
    now = coerce_utc(now or datetime.now(UTC))
    start_at = coerce_utc(start_at)
    end_at = coerce_utc(end_at)
    if not court_ids or start_at <= now:
        return []

    config = await get_config(session, facility_id=facility_id)
    window = config.notification_window_minutes or 0
    if window > 0 and start_at > now + timedelta(minutes=window):
        logger.debug(
            "Slot %s at facility %s is outside the %s minute notification window",
            start_at.isoformat(),
            facility_id,
            window,
        )
        return []

    result = await session.execute(
        select(WaitlistEntry)
        .where(
            _slot_filter(facility_id, start_at, end_at),
            WaitlistEntry.status == WaitlistStatus.PENDING,
            or_(
                WaitlistEntry.target_court_id.is_(None),
                WaitlistEntry.target_court_id.in_(court_ids),
            ),
        )
        .order_by(WaitlistEntry.position, WaitlistEntry.created_at, WaitlistEntry.id)
    )
    entries = list(result.scalars().all())
    if not entries:
        return []

    if config.notification_mode == WaitlistNotificationMode.SEQUENTIAL:
        if await _has_pending_offer_for_slot(
            session, facility_id=facility_id, start_at=start_at, end_at=end_at
        ):
            return []
        entries = entries[:1]

    lifetime = offer_lifetime(config)
    offers: list[WaitlistOffer] = []
    try:
        for entry in entries:
            offer = await _create_offer(
                session,
                entry=entry,
                court_id=entry.target_court_id or court_ids[0],
                now=now,
                lifetime=lifetime,
            )
            offers.append(offer)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Created %s waitlist offer(s) for facility %s slot %s",
        len(offers),
        facility_id,
        start_at.isoformat(),
    )
    return offers


async def _candidate_courts(
    session: AsyncSession, *, entry: WaitlistEntry, offer: WaitlistOffer
) -> list[uuid.UUID]:
    if entry.target_court_id is not None:
        return [entry.target_court_id]
    free = await availability_service.list_free_courts(
        session,
        facility_id=entry.facility_id,
        start_at=entry.target_start_at,
        end_at=entry.target_end_at,
    )
    free_ids = [court.id for court in free]
    if offer.court_id in free_ids:
        free_ids.remove(offer.court_id)
        free_ids.insert(0, offer.court_id)
    return free_ids


async def accept_offer(
    session: AsyncSession,
    *,
    locks: CourtLockRegistry,
    offer_id: uuid.UUID,
    user: User,
    now: datetime | None = None,
) -> Reservation:
    """Claim a freed slot through the ordinary booking path.

    The booking re-runs the full availability check, so a slot reclaimed by
    another offer or a direct booking fails with ``AvailabilityConflictError``.
    """
    from app.services import reservation_service

    now = coerce_utc(now or datetime.now(UTC))
    offer = await session.get(
        WaitlistOffer, offer_id, options=[selectinload(WaitlistOffer.entry)]
    )
    if offer is None:
        raise NotFoundError("Waitlist offer not found")
    entry = offer.entry
    if entry.user_id != user.id:
        raise PermissionDeniedError("Offer belongs to another member")
    if offer.status != WaitlistOfferStatus.PENDING or coerce_utc(offer.expires_at) <= now:
        raise WaitlistConflictError("Offer is no longer available", code="offer_unavailable")

    candidates = await _candidate_courts(session, entry=entry, offer=offer)
    if not candidates:
        raise AvailabilityConflictError(
            [offer.court_id] if offer.court_id else [], "Slot is no longer available"
        )

    async def _mark_accepted(reservation: Reservation) -> None:
        offer.status = WaitlistOfferStatus.ACCEPTED
        offer.responded_at = now
        offer.reservation_id = reservation.id
        entry.status = WaitlistStatus.FULFILLED
        await session.flush()

    return await reservation_service.create_reservation(
        session,
        locks=locks,
        facility_id=entry.facility_id,
        created_by=user,
        reservation_type=ReservationType.GAME,
        start_at=entry.target_start_at,
        end_at=entry.target_end_at,
        court_ids=candidates[:1],
        before_commit=_mark_accepted,
        now=now,
    )


async def _advance_queue(
    session: AsyncSession,
    *,
    expired_entry: WaitlistEntry,
    expired_offer: WaitlistOffer,
    config: WaitlistConfig,
    now: datetime,
) -> WaitlistOffer | None:
    """Offer the court from a lapsed offer to the next queued entry.

    Advancement stops once that court has been booked for the slot, or while
    another offer for the slot is still pending.
    """
    if expired_offer.court_id is not None:
        availability = await availability_service.check_available(
            session,
            facility_id=expired_entry.facility_id,
            court_ids=[expired_offer.court_id],
            start_at=expired_entry.target_start_at,
            end_at=expired_entry.target_end_at,
        )
        if not availability.ok:
            return None
    if await _has_pending_offer_for_slot(
        session,
        facility_id=expired_entry.facility_id,
        start_at=expired_entry.target_start_at,
        end_at=expired_entry.target_end_at,
    ):
        return None

    court_filter = WaitlistEntry.target_court_id.is_(None)
    if expired_offer.court_id is not None:
        court_filter = or_(court_filter, WaitlistEntry.target_court_id == expired_offer.court_id)
    result = await session.execute(
        select(WaitlistEntry)
        .where(
            _slot_filter(
                expired_entry.facility_id,
                expired_entry.target_start_at,
                expired_entry.target_end_at,
            ),
            WaitlistEntry.status == WaitlistStatus.PENDING,
            WaitlistEntry.id != expired_entry.id,
            court_filter,
        )
        .order_by(WaitlistEntry.position, WaitlistEntry.created_at, WaitlistEntry.id)
        .limit(1)
    )
    next_entry = result.scalar_one_or_none()
    if next_entry is None:
        return None

    return await _create_offer(
        session,
        entry=next_entry,
        court_id=next_entry.target_court_id or expired_offer.court_id,
        now=now,
        lifetime=offer_lifetime(config),
    )


async def _expire_one(
    session: AsyncSession, *, offer_id: uuid.UUID, now: datetime
) -> WaitlistOffer | None:
    offer = await session.get(
        WaitlistOffer,
        offer_id,
        options=[selectinload(WaitlistOffer.entry)],
        populate_existing=True,
    )
    if offer is None or offer.status != WaitlistOfferStatus.PENDING:
        return None
    entry = offer.entry
    offer.status = WaitlistOfferStatus.EXPIRED
    offer.responded_at = now
    entry.status = WaitlistStatus.EXPIRED
    await audit_service.record_event(
        session,
        action=AuditAction.WAITLIST_OFFER_EXPIRED,
        facility_id=entry.facility_id,
        user_id=entry.user_id,
        waitlist_entry_id=entry.id,
        before_state={"offer_id": str(offer.id), "status": WaitlistOfferStatus.PENDING.value},
        after_state={"offer_id": str(offer.id), "status": WaitlistOfferStatus.EXPIRED.value},
    )
    config = await get_config(session, facility_id=entry.facility_id)
    return await _advance_queue(
        session, expired_entry=entry, expired_offer=offer, config=config, now=now
    )


async def expire_offers(session: AsyncSession, now: datetime | None = None) -> SweepSummary:
    """Expire stale pending offers, one short transaction per offer."""
    now = coerce_utc(now or datetime.now(UTC))
    result = await session.execute(
        select(WaitlistOffer.id)
        .where(
            WaitlistOffer.status == WaitlistOfferStatus.PENDING,
            WaitlistOffer.expires_at <= now,
        )
        .order_by(WaitlistOffer.expires_at)
    )
    offer_ids = list(result.scalars().all())
    summary = SweepSummary()
    for offer_id in offer_ids:
        try:
            next_offer = await _expire_one(session, offer_id=offer_id, now=now)
            await session.commit()
        except Exception:
            await session.rollback()
            summary.failed += 1
            logger.exception("Failed to expire waitlist offer %s", offer_id)
            continue
        summary.processed += 1
        if next_offer is not None:
            summary.advanced += 1
            logger.info(
                "Expired waitlist offer %s; offered slot to entry %s",
                offer_id,
                next_offer.waitlist_entry_id,
            )
        else:
            logger.info("Expired waitlist offer %s", offer_id)
    return summary


async def cleanup_past_entries(session: AsyncSession, now: datetime | None = None) -> int:
    """Delete entries whose slot has already started, whatever their status."""
    now = coerce_utc(now or datetime.now(UTC))
    result = await session.execute(
        select(WaitlistEntry.id).where(WaitlistEntry.target_start_at <= now)
    )
    deleted = 0
    for entry_id in result.scalars().all():
        try:
            entry = await session.get(WaitlistEntry, entry_id)
            if entry is None:
                continue
            await session.delete(entry)
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("Failed to delete past waitlist entry %s", entry_id)
            continue
        deleted += 1
    logger.debug("Cleaned up %s past waitlist entries", deleted)
    return deleted
