"""Seed the database with example offerings and print development tokens.

Run with: python -m scripts.seed
Creates the tables if needed, adds a handful of offerings for one provider
and prints bearer tokens for a requester, the provider and an administrator.
"""

import asyncio

from sqlalchemy import select

from booking_engine.core.auth import create_access_token
from booking_engine.core.config import settings
from booking_engine.core.database import build_engine, build_session_factory
from booking_engine.models import Base, Offering

PROVIDER_ID = "teacher-demo"
REQUESTER_ID = "student-demo"
ADMIN_ID = "admin-demo"

# Unit prices are integer minor units of the currency
OFFERINGS = [
    {"title": "Beginner surf lesson", "unit_price": 3000},
    {"title": "Private yoga session", "unit_price": 5500},
    {"title": "Tea ceremony workshop", "unit_price": 4200},
    {"title": "Calligraphy class (retired)", "unit_price": 2500, "is_active": False},
]


async def seed():
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as db:
        result = await db.execute(select(Offering).where(Offering.provider_id == PROVIDER_ID))
        if result.scalars().first():
            print("Already seeded, skipping offerings")
        else:
            for data in OFFERINGS:
                db.add(Offering(provider_id=PROVIDER_ID, currency=settings.default_currency, **data))
            await db.commit()
            print(f"Seeded {len(OFFERINGS)} offerings for {PROVIDER_ID}")

        result = await db.execute(select(Offering).where(Offering.provider_id == PROVIDER_ID))
        for offering in result.scalars().all():
            state = "active" if offering.is_active else "inactive"
            print(f"  {offering.id}  {offering.title}  {offering.unit_price} {offering.currency} ({state})")

    await engine.dispose()

    print("Development tokens:")
    print(f"  requester  {create_access_token(REQUESTER_ID)}")
    print(f"  provider   {create_access_token(PROVIDER_ID)}")
    print(f"  admin      {create_access_token(ADMIN_ID, {'admin': True})}")


if __name__ == "__main__":
    asyncio.run(seed())
