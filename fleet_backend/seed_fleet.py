"""
Database seeding script for a demo fleet.

Creates an ADMIN, a FLEET_OWNER with two vehicles and a DRIVER assigned to
the first vehicle, then prints a bearer token per user.
Run this script after the database is set up but before first use.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from fleet_backend.app.core.jwt import create_user_token
from fleet_backend.app.db.session import AsyncSessionLocal, engine, Base
from fleet_backend.app.models.driver import Driver
from fleet_backend.app.models.enums import UserRole
from fleet_backend.app.models.user import User
from fleet_backend.app.models.vehicle import Vehicle
from fleet_backend.app.models.trip import Trip
from fleet_backend.app.models.live_location import LiveLocation
from fleet_backend.app.models.route_history import RouteHistory


async def seed_fleet():
    """
    Seed users, vehicles and a driver.

    Creates:
    - 1 ADMIN user
    - 1 FLEET_OWNER user with 2 vehicles
    - 1 DRIVER user assigned to the first vehicle
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting fleet seeding...")

        result = await db.execute(select(User).where(User.username == "admin"))
        if result.scalar_one_or_none():
            print("ℹ️  Fleet already seeded, printing tokens only")
        else:
            admin = User(email="admin@fleet.local", username="admin", name="Admin", role=UserRole.ADMIN)
            owner = User(email="owner@fleet.local", username="fleetowner", name="Fleet Owner", role=UserRole.FLEET_OWNER)
            driver_user = User(email="driver@fleet.local", username="driver1", name="Driver One", role=UserRole.DRIVER)
            db.add_all([admin, owner, driver_user])
            await db.flush()

            truck = Vehicle(owner_id=owner.id, registration_number="KA-01-AB-1234", model="Tata Ace", vehicle_type="Truck")
            van = Vehicle(owner_id=owner.id, registration_number="KA-01-CD-5678", model="Maruti Eeco", vehicle_type="Van")
            db.add_all([truck, van])
            await db.flush()

            db.add(Driver(user_id=driver_user.id, owner_id=owner.id, assigned_vehicle_id=truck.id, license_number="DL-0420110012345"))
            await db.commit()
            print(f"✅ Created vehicles {truck.id} and {van.id}, driver assigned to {truck.id}")

        result = await db.execute(select(User).order_by(User.id))
        for user in result.scalars().all():
            print(f"🔑 {user.role.value:<12} {user.username:<12} {create_user_token(user)}")


if __name__ == "__main__":
    asyncio.run(seed_fleet())
