"""
Database seeding script for development data.

Creates a default delivery fee package, one business and ADMIN, STAFF,
RIDER and BUSINESS users. Run this script after the database is set up
but before first use. Tokens for these users are issued by the auth service.
"""

import asyncio
import sys
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from skymap.app.db.session import AsyncSessionLocal, unit_of_work
from skymap.app.models.business import Business
from skymap.app.models.delivery_fee_package import DeliveryFeePackage
from skymap.app.models.user import User
from skymap.app.models.enums import UserRole
from sqlalchemy import select


async def seed_data():
    """
    Seed initial records.

    Creates:
    - "Standard" fee package (default, 3000.00 per delivery)
    - "Demo Traders" business on the default package
    - 1 ADMIN, 1 STAFF, 1 RIDER and 1 BUSINESS user
    """
    async with AsyncSessionLocal() as db:
        print("🌱 Starting seeding...")

        existing_admin = await db.scalar(
            select(User).where(User.email == "admin@skymap.co.tz")
        )
        if existing_admin:
            print("ℹ️  ADMIN user already exists, skipping seeding")
            return

        async with unit_of_work(db):
            package = DeliveryFeePackage(
                name="Standard",
                fee_per_delivery=Decimal("3000.00"),
                is_default=True,
            )
            db.add(package)
            await db.flush()
            print(f"✅ Created fee package '{package.name}' ({package.fee_per_delivery} per delivery)")

            business = Business(
                name="Demo Traders",
                phone="0712000000",
                address="Kariakoo, Dar es Salaam",
                package_id=package.id,
            )
            db.add(business)
            await db.flush()
            print(f"✅ Created business '{business.name}' (id: {business.id})")

            db.add_all([
                User(name="Platform Admin", email="admin@skymap.co.tz", role=UserRole.ADMIN),
                User(name="Dispatch Staff", email="staff@skymap.co.tz", role=UserRole.STAFF),
                User(name="Demo Rider", email="rider@skymap.co.tz", phone="0754000001", role=UserRole.RIDER),
                User(name="Demo Traders Desk", email="desk@demotraders.co.tz",
                     role=UserRole.BUSINESS, business_id=business.id),
            ])

        print("\n🎉 Seeding completed successfully!")
        print("\nSeeded users:")
        print("  - ADMIN:    admin@skymap.co.tz")
        print("  - STAFF:    staff@skymap.co.tz")
        print("  - RIDER:    rider@skymap.co.tz (0754000001)")
        print("  - BUSINESS: desk@demotraders.co.tz")


if __name__ == "__main__":
    asyncio.run(seed_data())
