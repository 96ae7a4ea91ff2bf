"""Periodic job runner behaviour."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from app.core.config import get_settings
from app.models import User
from app.services import waitlist_service
from app.services.court_locks import CourtLockRegistry
from app.workers.scheduler import (
    BackgroundScheduler,
    PeriodicJob,
    SingleFlightRunner,
    Ticker,
    build_default_jobs,
)

pytestmark = pytest.mark.asyncio

NOW = datetime(2031, 3, 3, 12, 0, tzinfo=UTC)


async def test_single_flight_runner_skips_busy_ticks() -> None:
    release = asyncio.Event()
    started = asyncio.Event()
    seen: list[datetime] = []

    async def slow_job(now: datetime) -> str:
        seen.append(now)
        started.set()
        await release.wait()
        return "done"

    runner = SingleFlightRunner("slow", slow_job)
    first = asyncio.create_task(runner.run(NOW))
    await started.wait()
    assert runner.busy

    ran, result = await runner.run(NOW + timedelta(minutes=1))
    assert (ran, result) == (False, None)
    assert runner.skipped == 1

    release.set()
    assert await first == (True, "done")
    assert not runner.busy
    assert seen == [NOW]

    ran, result = await runner.run(NOW + timedelta(minutes=2))
    assert ran is True
    assert runner.runs == 2


async def test_ticker_uses_injected_clock_and_sleep() -> None:
    instants = iter([NOW, NOW + timedelta(seconds=30), NOW + timedelta(seconds=60)])
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    ticker = Ticker(30, clock=lambda: next(instants), sleep=fake_sleep)
    collected = []
    async for tick in ticker.ticks():
        collected.append(tick)
        if len(collected) == 3:
            break

    assert collected == [NOW, NOW + timedelta(seconds=30), NOW + timedelta(seconds=60)]
    assert sleeps == [30, 30]

    with pytest.raises(ValueError):
        Ticker(0)


async def test_run_pending_isolates_failing_jobs() -> None:
    async def broken(now: datetime) -> None:
        raise RuntimeError("boom")

    async def healthy(now: datetime) -> str:
        return now.isoformat()

    scheduler = BackgroundScheduler(
        [PeriodicJob("broken", 60, broken), PeriodicJob("healthy", 60, healthy)]
    )
    results = await scheduler.run_pending(NOW)
    assert results == {"broken": None, "healthy": NOW.isoformat()}


async def test_scheduler_start_and_stop() -> None:
    calls: list[datetime] = []

    async def record(now: datetime) -> None:
        calls.append(now)

    scheduler = BackgroundScheduler([PeriodicJob("record", 3600, record)], clock=lambda: NOW)
    scheduler.start()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert scheduler.running
    await scheduler.stop()
    assert not scheduler.running
    assert calls == [NOW]


async def test_default_jobs_run_against_the_database(seeded) -> None:
    async with seeded["sessionmaker"]() as session:
        member = await session.get(User, seeded["member_id"])
        await waitlist_service.join_waitlist(
            session,
            facility_id=seeded["facility_id"],
            user=member,
            start_at=NOW + timedelta(hours=2),
            end_at=NOW + timedelta(hours=3),
            now=NOW,
        )

    jobs = build_default_jobs(seeded["sessionmaker"], CourtLockRegistry(), get_settings())
    assert [job.name for job in jobs] == [
        "open_play_enforcement",
        "waitlist_offer_expiry",
        "waitlist_cleanup",
        "package_expiry",
    ]
    results = await BackgroundScheduler(jobs).run_pending(NOW + timedelta(hours=4))

    assert results["open_play_enforcement"].evaluated == 0
    assert results["waitlist_offer_expiry"].processed == 0
    assert results["waitlist_cleanup"] == 1
    assert results["package_expiry"] == 0
