"""FastAPI application entrypoint."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from secure import Secure
from asgi_correlation_id import CorrelationIdMiddleware

from app.api import api_router
from app.core.config import get_settings
from app.db.session import dispose_engine, get_sessionmaker
from app.security.logging_filters import SensitiveFilter
from app.services.court_locks import CourtLockRegistry
from app.workers import BackgroundScheduler, build_default_jobs

logger = logging.getLogger(__name__)

settings = get_settings()

_ALLOWED_ORIGINS = [origin for origin in settings.cors_allowlist if origin]
if not _ALLOWED_ORIGINS:
    _ALLOWED_ORIGINS = [origin for origin in settings.cors_allow_origins if origin]
if not _ALLOWED_ORIGINS:
    _ALLOWED_ORIGINS = ["http://localhost:5173"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler: BackgroundScheduler | None = None
    if settings.scheduler_enabled:
        scheduler = BackgroundScheduler(
            build_default_jobs(get_sessionmaker(), app.state.court_locks, settings)
        )
        scheduler.start()
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()
        await dispose_engine()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.state.court_locks = CourtLockRegistry()

app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(CorrelationIdMiddleware, header_name="X-Request-ID")

_secure_headers = Secure.with_default_headers()


@app.middleware("http")
async def _apply_security_headers(request, call_next):
    response = await call_next(request)
    _secure_headers.set_headers(response)
    correlation_id = getattr(request.state, "correlation_id", None)
    if correlation_id:
        response.headers.setdefault("X-Request-ID", str(correlation_id))
    return response


for _logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error", ""):
    _logger = logging.getLogger(_logger_name)
    if not any(isinstance(flt, SensitiveFilter) for flt in _logger.filters):
        _logger.addFilter(SensitiveFilter())

app.include_router(api_router)


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": settings.app_name}
