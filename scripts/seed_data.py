"""Seed demo drivers and accounts around Hyderabad."""

import asyncio

from ride_dispatch.models.driver import Driver, Location, VehicleClass
from ride_dispatch.models.user import User, UserRole
from ride_dispatch.state.manager import StateManager
from ride_dispatch.state.store import EntityStore


async def seed_drivers(store: EntityStore) -> None:
    """Seed an online driver pool."""
    print("Seeding drivers...")

    drivers = [
        Driver(
            user_id="driver-ravi",
            name="Ravi Kumar",
            phone="9876543210",
            vehicle_class=VehicleClass.AUTO,
            vehicle_number="TS09AB1234",
            is_online=True,
            location=Location(lat=17.3860, lng=78.4870),
        ),
        Driver(
            user_id="driver-sita",
            name="Sita Reddy",
            phone="9876543211",
            vehicle_class=VehicleClass.AUTO,
            vehicle_number="TS09CD5678",
            is_online=True,
            location=Location(lat=17.3920, lng=78.4810),
        ),
        Driver(
            user_id="driver-imran",
            name="Imran Ali",
            phone="9876543212",
            vehicle_class=VehicleClass.BIKE,
            vehicle_number="TS10EF9012",
            is_online=True,
            location=Location(lat=17.3800, lng=78.4900),
        ),
        Driver(
            user_id="driver-lakshmi",
            name="Lakshmi Devi",
            phone="9876543213",
            vehicle_class=VehicleClass.AUTO,
            vehicle_number="TS08GH3456",
            is_online=True,
            location=Location(lat=17.4010, lng=78.4700),
        ),
    ]

    for driver in drivers:
        await store.save_driver(driver)
        await store.save_user(
            User(id=driver.user_id, name=driver.name, phone=driver.phone, role=UserRole.DRIVER)
        )
        print(f"  ✓ Added {driver.name} ({driver.vehicle_class.value}, {driver.vehicle_number})")

    print("✓ Drivers seeded successfully\n")


async def seed_requesters(store: EntityStore) -> None:
    """Seed sample requester accounts."""
    print("Seeding requesters...")

    users = [
        User(id="rider-anil", name="Anil Varma", phone="9123456780"),
        User(id="rider-priya", name="Priya Sharma", phone="9123456781"),
        User(id="ops-desk", name="Safety Desk", role=UserRole.ADMIN),
    ]

    for user in users:
        await store.save_user(user)
        print(f"  ✓ Added {user.name} ({user.role.value})")

    print("✓ Requesters seeded successfully\n")


async def main() -> None:
    """Run all seed functions."""
    print("\n" + "=" * 50)
    print("  Seeding Ride Dispatch Data")
    print("=" * 50 + "\n")

    state_manager = StateManager()
    await state_manager.connect()
    store = EntityStore(state_manager)

    await seed_drivers(store)
    await seed_requesters(store)

    await state_manager.disconnect()

    print("=" * 50)
    print("  ✓ All data seeded successfully!")
    print("=" * 50 + "\n")


if __name__ == "__main__":
    asyncio.run(main())
