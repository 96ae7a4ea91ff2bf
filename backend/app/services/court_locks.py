"""Single-writer-per-court critical sections.

Every unit of work that adds court links takes the in-process lock for each
affected court (sorted, so two writers never wait on each other in opposite
order) and, inside its transaction, ``SELECT ... FOR UPDATE`` on the court
rows so separate processes sharing a PostgreSQL database serialise as well.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Hashable, Iterable
from contextlib import asynccontextmanager

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Court


class CourtLockRegistry:
    """Hands out one ``asyncio.Lock`` per key (court ids, member quota keys).

    A key's lock is dropped once nobody holds or waits on it.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def _checkout(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: Hashable) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
            return
        del self._users[key]
        del self._locks[key]

    @property
    def active_keys(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, keys: Iterable[Hashable]) -> AsyncIterator[None]:
        ordered = sorted(set(keys), key=str)
        checked_out: list[Hashable] = []
        acquired: list[asyncio.Lock] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append(key)
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in reversed(checked_out):
                self._checkin(key)


async def lock_court_rows(
    session: AsyncSession, court_ids: Iterable[uuid.UUID]
) -> list[Court]:
    """Row-lock the courts for the rest of the transaction (no-op on SQLite)."""
    ids = sorted(set(court_ids), key=str)
    if not ids:
        return []
    result = await session.execute(
        select(Court).where(Court.id.in_(ids)).order_by(Court.id).with_for_update()
    )
    return list(result.scalars().all())


__all__ = ["CourtLockRegistry", "lock_court_rows"]
