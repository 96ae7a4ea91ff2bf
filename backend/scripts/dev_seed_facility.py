"""Seed a development organization, facility, courts and an admin user."""
from __future__ import annotations

import asyncio

from sqlalchemy import select

from app.core.security import create_access_token
from app.db.session import get_sessionmaker
from app.models import Court, Facility, Organization, User, UserRole, UserStatus

EMAIL = "admin@courts.local"
COURT_COUNT = 4


async def seed() -> None:
    sessionmaker = get_sessionmaker()
    async with sessionmaker() as session:
        existing = await session.execute(select(User).where(User.email == EMAIL))
        admin = existing.scalar_one_or_none()
        if admin is not None:
            print(f"User {EMAIL} already exists")
        else:
            organization = Organization(name="Dev Club", slug="dev-club")
            session.add(organization)
            await session.flush()

            facility = Facility(
                organization_id=organization.id,
                name="Main Courts",
                slug="main-courts",
                timezone="America/Chicago",
            )
            session.add(facility)
            await session.flush()

            for number in range(1, COURT_COUNT + 1):
                session.add(
                    Court(facility_id=facility.id, name=f"Court {number}", court_number=number)
                )

            admin = User(
                organization_id=organization.id,
                home_facility_id=facility.id,
                email=EMAIL,
                first_name="Dev",
                last_name="Admin",
                role=UserRole.ADMIN,
                status=UserStatus.ACTIVE,
            )
            session.add(admin)
            await session.commit()
            print(f"Created facility {facility.slug} ({facility.id}) with {COURT_COUNT} courts")

        print(f"Bearer token for {EMAIL}: {create_access_token(str(admin.id))}")


def main() -> None:
    asyncio.run(seed())


if __name__ == "__main__":
    main()
