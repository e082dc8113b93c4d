"""
MongoDB (Motor) implementations of the engine's stores and directory.

Counter updates are single guarded ``find_one_and_update`` calls; unit and
request saves replace the document only while its ``version`` is unchanged.
"""
from typing import List

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, NetworkTimeout, ServerSelectionTimeoutError

from models import (
    BloodGroup, DirectoryEntity, Donor, EntityType, InventoryMovement, InventoryRecord,
    ResourceUnit, UnitStatus
)
from models.enums import TERMINAL_STATUS_VALUES
from models.request import load_request
from services.directory import Directory
from services.errors import UpstreamTimeout
from services.stores import InventoryStore, RequestStore, SlotRegistry, UnitStore

ENTITY_COLLECTIONS = {
    EntityType.HOSPITAL: "hospitals",
    EntityType.NGO: "ngos",
}


class MongoInventoryStore(InventoryStore):

    def __init__(self, db):
        self.records = db.inventory_records
        self.movements = db.inventory_movements

    async def get(self, entity_id, blood_group):
        doc = await self.records.find_one(
            {"entity_id": entity_id, "blood_group": BloodGroup(blood_group).value}, {"_id": 0}
        )
        return InventoryRecord.model_validate(doc) if doc else None

    async def list(self, entity_id=None):
        query = {"entity_id": entity_id} if entity_id else {}
        docs = await self.records.find(query, {"_id": 0}).sort(
            [("entity_id", 1), ("blood_group", 1)]
        ).to_list(1000)
        return [InventoryRecord.model_validate(d) for d in docs]

    async def apply_delta(self, entity_id, blood_group, available_delta, reserved_delta, now):
        query = {"entity_id": entity_id, "blood_group": BloodGroup(blood_group).value}
        if available_delta < 0:
            query["available"] = {"$gte": -available_delta}
        if reserved_delta < 0:
            query["reserved"] = {"$gte": -reserved_delta}
        update = {
            "$inc": {"available": available_delta, "reserved": reserved_delta, "version": 1},
            "$set": {"last_updated": now.isoformat()},
        }
        # A missing record may only be created by a non-decreasing change
        upsert = available_delta >= 0 and reserved_delta >= 0

        for _ in range(2):
            try:
                doc = await self.records.find_one_and_update(
                    query, update, projection={"_id": 0}, upsert=upsert,
                    return_document=ReturnDocument.AFTER,
                )
                break
            except DuplicateKeyError:
                # Lost an upsert race against another writer; the retry matches the new row
                continue
        else:
            doc = None
        return InventoryRecord.model_validate(doc) if doc else None

    async def add_movement(self, movement):
        await self.movements.insert_one(movement.model_dump(mode="json"))

    async def list_movements(self, entity_id, blood_group=None):
        query = {"entity_id": entity_id}
        if blood_group is not None:
            query["blood_group"] = BloodGroup(blood_group).value
        docs = await self.movements.find(query, {"_id": 0}).sort("timestamp", 1).to_list(10000)
        return [InventoryMovement.model_validate(d) for d in docs]


def _unit_doc(unit: ResourceUnit) -> dict:
    doc = unit.model_dump(mode="json")
    # Native datetime so expiry range queries compare correctly
    doc["expiry_date"] = unit.expiry_date
    return doc


class MongoUnitStore(UnitStore):

    def __init__(self, db):
        self.units = db.resource_units

    async def insert(self, unit):
        await self.units.insert_one(_unit_doc(unit))

    async def get(self, unit_id):
        doc = await self.units.find_one({"id": unit_id}, {"_id": 0})
        return ResourceUnit.model_validate(doc) if doc else None

    async def update(self, unit, expected_version):
        doc = _unit_doc(unit)
        doc["version"] = expected_version + 1
        result = await self.units.replace_one({"id": unit.id, "version": expected_version}, doc)
        if result.matched_count != 1:
            return False
        unit.version = expected_version + 1
        return True

    async def find_available(self, now, blood_group=None, entity_id=None):
        query = {"status": UnitStatus.AVAILABLE.value, "expiry_date": {"$gte": now}}
        if blood_group is not None:
            query["blood_group"] = BloodGroup(blood_group).value
        if entity_id is not None:
            query["current_location.entity_id"] = entity_id
        docs = await self.units.find(query, {"_id": 0}).sort("expiry_date", 1).to_list(10000)
        return [ResourceUnit.model_validate(d) for d in docs]

    async def expire(self, now):
        query = {"status": UnitStatus.AVAILABLE.value, "expiry_date": {"$lt": now}}
        candidates = await self.units.find(query, {"_id": 0, "id": 1}).to_list(None)
        expired = []
        for doc in candidates:
            result = await self.units.update_one(
                {"id": doc["id"], **query},
                {"$set": {"status": UnitStatus.EXPIRED.value, "updated_at": now.isoformat()},
                 "$inc": {"version": 1}},
            )
            if result.modified_count:
                expired.append(doc["id"])
        return expired


def _request_doc(request) -> dict:
    doc = request.model_dump(mode="json")
    doc["created_at"] = request.created_at
    return doc


class MongoRequestStore(RequestStore):

    def __init__(self, db):
        self.requests = db.fulfillment_requests

    async def insert(self, request):
        await self.requests.insert_one(_request_doc(request))

    async def get(self, request_id):
        doc = await self.requests.find_one(
            {"$or": [{"id": request_id}, {"request_id": request_id}]}, {"_id": 0}
        )
        return load_request(doc) if doc else None

    async def save(self, request, expected_version):
        doc = _request_doc(request)
        doc["version"] = expected_version + 1
        result = await self.requests.replace_one({"id": request.id, "version": expected_version}, doc)
        if result.matched_count != 1:
            return False
        request.version = expected_version + 1
        return True

    async def list_batch(self, batch_id):
        docs = await self.requests.find({"batch_id": batch_id}, {"_id": 0}).to_list(1000)
        return [load_request(d) for d in docs]

    async def list_open(self, urgency_levels):
        docs = await self.requests.find(
            {
                "urgency_level": {"$in": [u.value for u in urgency_levels]},
                "status": {"$nin": list(TERMINAL_STATUS_VALUES)},
            },
            {"_id": 0},
        ).sort([("priority", 1), ("created_at", 1)]).to_list(1000)
        return [load_request(d) for d in docs]


class MongoSlotRegistry(SlotRegistry):
    """Booked counters on ``facilities.schedule.slots``."""

    def __init__(self, db):
        self.facilities = db.facilities

    async def release_slot(self, facility_id, slot_id):
        result = await self.facilities.update_one(
            {"id": facility_id,
             "schedule.slots": {"$elemMatch": {"id": slot_id, "booked": {"$gt": 0}}}},
            {"$inc": {"schedule.slots.$.booked": -1}},
        )
        return result.modified_count == 1

    async def reserve_slot(self, facility_id, slot_id):
        result = await self.facilities.update_one(
            {"id": facility_id, "schedule.slots.id": slot_id},
            {"$inc": {"schedule.slots.$.booked": 1}},
        )
        return result.modified_count == 1


class MongoDirectory(Directory):

    def __init__(self, db):
        self.db = db

    async def get_entity(self, entity_id):
        for entity_type, name in ENTITY_COLLECTIONS.items():
            doc = await self.db[name].find_one({"id": entity_id}, {"_id": 0})
            if doc:
                return DirectoryEntity.model_validate({**doc, "entity_type": entity_type})
        return None

    async def _geo_near(self, collection, origin, max_distance_m, query) -> List[dict]:
        pipeline = [
            {"$geoNear": {
                "near": origin.model_dump(),
                "distanceField": "distance_m",
                "maxDistance": max_distance_m,
                "spherical": True,
                "query": query,
            }},
            {"$project": {"_id": 0}},
        ]
        try:
            return await collection.aggregate(pipeline).to_list(1000)
        except (NetworkTimeout, ServerSelectionTimeoutError) as exc:
            raise UpstreamTimeout(f"Directory query on {collection.name} timed out",
                                  details={"error": str(exc)})

    async def nearby_entities(self, entity_type, origin, max_distance_m):
        collection = self.db[ENTITY_COLLECTIONS[EntityType(entity_type)]]
        docs = await self._geo_near(collection, origin, max_distance_m, {"is_verified": True})
        return [
            (DirectoryEntity.model_validate({**d, "entity_type": entity_type}), d["distance_m"])
            for d in docs
        ]

    async def nearby_donors(self, origin, max_distance_m, blood_groups):
        query = {"blood_group": {"$in": [BloodGroup(g).value for g in blood_groups]}}
        docs = await self._geo_near(self.db.donors, origin, max_distance_m, query)
        return [(Donor.model_validate(d), d["distance_m"]) for d in docs]
