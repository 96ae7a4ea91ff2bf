"""Versioned API router."""

from fastapi import APIRouter

from . import (
    availability,
    cancellation_policies,
    clinics,
    health,
    notifications,
    open_play,
    packages,
    reservations,
    waitlist,
)

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(
    reservations.router, prefix="/reservations", tags=["reservations"]
)
router.include_router(
    availability.router, prefix="/availability", tags=["availability"]
)
router.include_router(
    cancellation_policies.router, prefix="/facilities", tags=["cancellation-policies"]
)
router.include_router(clinics.router, prefix="/clinics", tags=["clinics"])
router.include_router(open_play.router, prefix="/open-play", tags=["open-play"])
router.include_router(waitlist.router, tags=["waitlist"])
router.include_router(packages.router, tags=["packages"])
router.include_router(notifications.router, tags=["notifications"])

__all__ = ["router"]
