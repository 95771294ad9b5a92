"""Initialize local development data"""
import asyncio
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent))

from sqlalchemy import text

from app.core.database import engine
from app.domains.rooms.entities import Room, RoomSettings
from app.domains.rooms.layout import build_seats, vip_mics_for
from app.domains.rooms.repository import RoomRepository
from app.shared.utils.logger import get_logger

logger = get_logger(__name__)

DEMO_ROOMS = [
    {"room_id": "demo_lounge", "owner_id": "dev-user-1", "title": "Demo Lounge", "total_mics": 6},
    {"room_id": "demo_stage", "owner_id": "dev-user-2", "title": "Demo Stage", "total_mics": 12, "category": "music"},
]


async def wait_for_table(table_name: str, max_attempts: int = 30):
    """Wait for table to exist in database"""
    for attempt in range(max_attempts):
        async with engine.begin() as conn:
            result = await conn.execute(
                text("""
                    SELECT EXISTS (
                        SELECT FROM information_schema.tables
                        WHERE table_name = :table_name
                    );
                """),
                {"table_name": table_name},
            )
            if result.scalar():
                logger.info(f"✅ Table {table_name} exists")
                return True

        logger.info(f"Waiting for table {table_name}... (attempt {attempt + 1}/{max_attempts})")
        await asyncio.sleep(1)

    raise RuntimeError(f"Table {table_name} was not created after {max_attempts} attempts")


async def init_local_data():
    """Seed demo rooms for local development"""
    await wait_for_table("rooms_rooms")
    await wait_for_table("media_contents")

    repository = RoomRepository()
    created = 0
    for data in DEMO_ROOMS:
        if await repository.get(data["room_id"]):
            continue
        total = data["total_mics"]
        room = Room(
            room_id=data["room_id"],
            owner_id=data["owner_id"],
            title=data["title"],
            category=data.get("category", "general"),
            total_mics=total,
            vip_mics=vip_mics_for(total),
            seats=build_seats(total),
            settings=RoomSettings(),
        )
        await repository.save(room)
        created += 1

    if created:
        logger.info(f"✅ Created {created} demo rooms")
    else:
        logger.info("Data already exists, skipping initialization")


if __name__ == "__main__":
    asyncio.run(init_local_data())
