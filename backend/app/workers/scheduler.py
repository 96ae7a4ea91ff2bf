"""Periodic job scheduling decoupled from the request path.

A ``Ticker`` produces tick timestamps; a ``SingleFlightRunner`` consumes them
and skips any tick that arrives while the previous run is still busy. Tests
drive a pass directly with ``PeriodicJob.run_once(now)``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.services import open_play_service, package_service, waitlist_service
from app.services.court_locks import CourtLockRegistry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
JobFunc = Callable[[datetime], Awaitable[Any]]


def _utc_clock() -> datetime:
    return datetime.now(UTC)


class Ticker:
    """Yield ``clock()`` every ``interval_seconds`` until cancelled."""

    def __init__(
        self,
        interval_seconds: float,
        *,
        clock: Clock = _utc_clock,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._sleep = sleep

    async def ticks(self) -> AsyncIterator[datetime]:
        while True:
            yield self._clock()
            await self._sleep(self.interval_seconds)


class SingleFlightRunner:
    """Run an async callable at most once at a time; busy ticks are skipped."""

    def __init__(self, name: str, func: JobFunc) -> None:
        self.name = name
        self._func = func
        self._lock = asyncio.Lock()
        self.runs = 0
        self.skipped = 0

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run(self, now: datetime) -> tuple[bool, Any]:
        if self._lock.locked():
            self.skipped += 1
            logger.warning("Skipping %s tick at %s: previous run still busy", self.name, now)
            return False, None
        async with self._lock:
            self.runs += 1
            return True, await self._func(now)


@dataclass
class PeriodicJob:
    name: str
    interval_seconds: float
    func: JobFunc
    runner: SingleFlightRunner = field(init=False)

    def __post_init__(self) -> None:
        self.runner = SingleFlightRunner(self.name, self.func)

    async def run_once(self, now: datetime | None = None) -> Any:
        """Run one pass now; returns ``None`` if a pass is already running."""
        _, result = await self.runner.run(now or _utc_clock())
        return result


class BackgroundScheduler:
    """Owns one asyncio task per job for the lifetime of the application."""

    def __init__(self, jobs: list[PeriodicJob], *, clock: Clock = _utc_clock) -> None:
        self.jobs = jobs
        self._clock = clock
        self._tasks: list[asyncio.Task[None]] = []
        self.running = False

    async def _job_loop(self, job: PeriodicJob) -> None:
        ticker = Ticker(job.interval_seconds, clock=self._clock)
        try:
            async for now in ticker.ticks():
                try:
                    await job.runner.run(now)
                except Exception:
                    logger.exception("Periodic job %s failed", job.name)
        except asyncio.CancelledError:
            logger.info("Periodic job %s cancelled", job.name)
            raise

    def start(self) -> None:
        if self.running:
            return
        self.running = True
        for job in self.jobs:
            self._tasks.append(asyncio.create_task(self._job_loop(job), name=f"job-{job.name}"))
        logger.info("Background scheduler started with %s job(s)", len(self.jobs))

    async def stop(self) -> None:
        self.running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("Background scheduler stopped")

    async def run_pending(self, now: datetime | None = None) -> dict[str, Any]:
        """Run every job once, in order, and collect their results."""
        now = now or self._clock()
        results: dict[str, Any] = {}
        for job in self.jobs:
            try:
                results[job.name] = await job.run_once(now)
            except Exception:
                logger.exception("Periodic job %s failed", job.name)
                results[job.name] = None
        return results


def build_default_jobs(
    sessionmaker: async_sessionmaker[AsyncSession],
    locks: CourtLockRegistry,
    settings: Settings,
) -> list[PeriodicJob]:
    async def enforce_open_play(now: datetime) -> open_play_service.EnforcementSummary:
        return await open_play_service.run_enforcement_pass(sessionmaker, locks=locks, now=now)

    async def expire_waitlist_offers(now: datetime) -> waitlist_service.SweepSummary:
        async with sessionmaker() as session:
            return await waitlist_service.expire_offers(session, now=now)

    async def cleanup_waitlist(now: datetime) -> int:
        async with sessionmaker() as session:
            return await waitlist_service.cleanup_past_entries(session, now=now)

    async def expire_packages(now: datetime) -> int:
        async with sessionmaker() as session:
            return await package_service.expire_packages(session, now=now)

    return [
        PeriodicJob(
            "open_play_enforcement",
            settings.open_play_enforcement_interval_seconds,
            enforce_open_play,
        ),
        PeriodicJob(
            "waitlist_offer_expiry",
            settings.waitlist_expiry_interval_seconds,
            expire_waitlist_offers,
        ),
        PeriodicJob(
            "waitlist_cleanup",
            settings.waitlist_cleanup_interval_seconds,
            cleanup_waitlist,
        ),
        PeriodicJob(
            "package_expiry",
            settings.package_expiry_interval_seconds,
            expire_packages,
        ),
    ]
