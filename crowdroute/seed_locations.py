"""
Database seeding script for development data.

Creates an admin contributor and a handful of well-known Lagos
locations so geo queries and route creation have something to work on.
Run this script after the database is set up but before first use.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from crowdroute.app.db.session import AsyncSessionLocal, engine, Base
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.models.enums import ContributorRole
from crowdroute.app.models.location import Location
from crowdroute.app.models.location_enums import LocationType, NigerianState

SEED_LOCATIONS = [
    ("Ikeja Under Bridge", 6.6018, 3.3515, "Ikeja", LocationType.BUS_STOP),
    ("CMS Bus Terminal", 6.4531, 3.3958, "Lagos Island", LocationType.BUS_STOP),
    ("Oshodi Interchange", 6.5569, 3.3494, "Oshodi", LocationType.MOTOR_PARK),
    ("Yaba Bus Stop", 6.5095, 3.3711, "Yaba", LocationType.BUS_STOP),
    ("Lekki Phase 1 Gate", 6.4478, 3.4723, "Lekki", LocationType.LANDMARK),
    ("Obalende Motor Park", 6.4491, 3.4034, "Lagos Island", LocationType.MOTOR_PARK),
]


async def seed_locations():
    """
    Seed the admin contributor and the Lagos starter locations.

    Skips everything when the admin contributor already exists.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting location seeding...")

        result = await db.execute(select(Contributor).where(Contributor.username == "admin"))
        if result.scalar_one_or_none():
            print("ℹ️  Seed data already present, skipping seeding")
            return

        admin = Contributor(
            username="admin",
            email="admin@crowdroute.ng",
            role=ContributorRole.ADMIN,
            reputation_score=1000,
            total_contributions=0,
            is_active=True,
        )
        db.add(admin)
        await db.flush()
        print(f"✅ Created ADMIN contributor (id: {admin.id})")

        for name, latitude, longitude, city, location_type in SEED_LOCATIONS:
            db.add(Location(
                name=name,
                latitude=latitude,
                longitude=longitude,
                city=city,
                state=NigerianState.LAGOS,
                location_type=location_type,
                is_verified=True,
                verified_by=admin.id,
                created_by=admin.id,
                is_active=True,
            ))
            print(f"✅ Created location {name} ({city})")

        await db.commit()
        print(f"\n🎉 Seeded {len(SEED_LOCATIONS)} locations")


if __name__ == "__main__":
    asyncio.run(seed_locations())
