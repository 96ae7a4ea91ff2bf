"""Background workers for periodic booking-core jobs."""

from app.workers.scheduler import (
    BackgroundScheduler,
    PeriodicJob,
    SingleFlightRunner,
    Ticker,
    build_default_jobs,
)

__all__ = [
    "BackgroundScheduler",
    "PeriodicJob",
    "SingleFlightRunner",
    "Ticker",
    "build_default_jobs",
]
