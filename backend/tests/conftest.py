"""Test fixtures for the court booking backend."""
from __future__ import annotations

import os
import uuid
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from app.core.config import get_settings
from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import dispose_engine, get_sessionmaker
from app.main import app
from app.models import Court, Facility, Organization, User, UserRole, UserStatus
from app.services.court_locks import CourtLockRegistry

COURT_COUNT = 4


def auth_headers(user_id: uuid.UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user_id))}"}


@pytest.fixture(scope="session")
def db_url(tmp_path_factory: pytest.TempPathFactory) -> str:
    """Provide a temporary SQLite database URL for the test session."""
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    return f"sqlite+aiosqlite:///{db_path}"


@pytest_asyncio.fixture()
async def reset_database(db_url: str) -> AsyncIterator[None]:
    """Drop and recreate the database schema for an isolated test."""
    os.environ["DATABASE_URL"] = db_url
    get_settings.cache_clear()
    get_settings()

    await dispose_engine(db_url)
    engine = create_async_engine(db_url, future=True)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    await engine.dispose()
    app.state.court_locks = CourtLockRegistry()
    yield
    await dispose_engine(db_url)


@pytest_asyncio.fixture()
async def seeded(reset_database: None, db_url: str) -> dict[str, object]:
    """Seed one organization with a facility, its courts and a few users."""
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        organization = Organization(name="Test Club", slug=f"club-{uuid.uuid4().hex[:8]}")
        session.add(organization)
        await session.flush()

        facility = Facility(
            organization_id=organization.id,
            name="North Courts",
            slug=f"north-{uuid.uuid4().hex[:8]}",
            timezone="UTC",
        )
        session.add(facility)
        await session.flush()

        courts = [
            Court(facility_id=facility.id, name=f"Court {number}", court_number=number)
            for number in range(1, COURT_COUNT + 1)
        ]
        session.add_all(courts)

        def _user(email: str, first: str, role: UserRole, **extra: object) -> User:
            user = User(
                organization_id=organization.id,
                home_facility_id=facility.id,
                email=email,
                first_name=first,
                last_name="Tester",
                role=role,
                status=UserStatus.ACTIVE,
                **extra,
            )
            session.add(user)
            return user

        staff = _user("desk@example.com", "Dana", UserRole.STAFF)
        pro = _user("pro@example.com", "Pat", UserRole.PRO)
        member = _user("member@example.com", "Morgan", UserRole.MEMBER)
        other_member = _user("other@example.com", "Riley", UserRole.MEMBER)
        await session.commit()

        return {
            "organization_id": organization.id,
            "facility_id": facility.id,
            "court_ids": [court.id for court in courts],
            "staff_id": staff.id,
            "pro_id": pro.id,
            "member_id": member.id,
            "other_member_id": other_member.id,
            "sessionmaker": sessionmaker,
        }


@pytest_asyncio.fixture()
async def app_context(seeded: dict[str, object]) -> AsyncIterator[dict[str, object]]:
    """Yield an async client alongside the seeded data and auth headers."""
    context = dict(seeded)
    context["staff_headers"] = auth_headers(seeded["staff_id"])
    context["member_headers"] = auth_headers(seeded["member_id"])
    context["other_member_headers"] = auth_headers(seeded["other_member_id"])

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        context["client"] = client
        yield context
