"""Run one pass of every periodic booking-core job (cron-friendly)."""
from __future__ import annotations

import asyncio
import logging

from app.core.config import get_settings
from app.db.session import dispose_engine, get_sessionmaker
from app.services.court_locks import CourtLockRegistry
from app.workers import BackgroundScheduler, build_default_jobs


async def run_jobs() -> dict[str, object]:
    settings = get_settings()
    scheduler = BackgroundScheduler(
        build_default_jobs(get_sessionmaker(), CourtLockRegistry(), settings)
    )
    try:
        return await scheduler.run_pending()
    finally:
        await dispose_engine()


def main() -> int:
    logging.basicConfig(level=logging.INFO)
    results = asyncio.run(run_jobs())
    for name, result in results.items():
        print(f"{name}: {result}")
    return 0 if all(result is not None for result in results.values()) else 1


if __name__ == "__main__":
    raise SystemExit(main())
