"""Reset all dispatch state in Redis (useful for testing)."""

import asyncio

from ride_dispatch.state.manager import StateManager


async def reset_all_state() -> None:
    """Clear rides, drivers and indexes from Redis."""
    print("\n⚠️  WARNING: This will delete ALL rides and drivers from Redis!")
    response = input("Are you sure? (yes/no): ")

    if response.lower() != "yes":
        print("Cancelled.")
        return

    print("\nResetting state...")

    state_manager = StateManager()
    client = await state_manager.client()

    deleted = 0
    for pattern in ("ride:*", "ride-code:*", "driver:*", "driver-user:*", "user:*", "drivers:geo:*"):
        async for key in client.scan_iter(match=pattern):
            await state_manager.delete(key)
            deleted += 1

    await state_manager.disconnect()

    print(f"✓ Removed {deleted} keys from Redis\n")


if __name__ == "__main__":
    asyncio.run(reset_all_state())
