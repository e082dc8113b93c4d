from motor.motor_asyncio import AsyncIOMotorClient

from config import get_settings

settings = get_settings()

client = AsyncIOMotorClient(settings.mongo_url, tz_aware=True)
db = client[settings.db_name]


async def ensure_indexes(database=None):
    """Create the indexes the engine's queries depend on."""
    database = database if database is not None else db
    await database.inventory_records.create_index(
        [("entity_id", 1), ("blood_group", 1)], unique=True
    )
    await database.inventory_movements.create_index([("entity_id", 1), ("blood_group", 1)])
    await database.resource_units.create_index("id", unique=True)
    await database.resource_units.create_index([("status", 1), ("expiry_date", 1)])
    await database.resource_units.create_index(
        [("current_location.entity_id", 1), ("blood_group", 1)]
    )
    await database.fulfillment_requests.create_index("id", unique=True)
    await database.fulfillment_requests.create_index("request_id", unique=True)
    await database.fulfillment_requests.create_index("batch_id")
    await database.fulfillment_requests.create_index([("status", 1), ("urgency_level", 1)])
    await database.hospitals.create_index([("location", "2dsphere")])
    await database.ngos.create_index([("location", "2dsphere")])
    await database.donors.create_index([("location", "2dsphere")])
