"""
Read-only view over the hospital, NGO and donor directories.

The engine never writes to these collections; it only reads location,
verification and donor eligibility fields.
"""
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from models import BloodGroup, DirectoryEntity, Donor, EntityType, GeoPoint
from services.geo import haversine_m


class Directory(ABC):

    @abstractmethod
    async def get_entity(self, entity_id: str) -> Optional[DirectoryEntity]:
        ...

    @abstractmethod
    async def nearby_entities(
        self, entity_type: EntityType, origin: GeoPoint, max_distance_m: float
    ) -> List[Tuple[DirectoryEntity, float]]:
        """Entities within range with their distance in meters, nearest first."""

    @abstractmethod
    async def nearby_donors(
        self, origin: GeoPoint, max_distance_m: float, blood_groups: Iterable[BloodGroup]
    ) -> List[Tuple[Donor, float]]:
        ...

    async def get_entity_location(self, entity_id: str) -> Optional[GeoPoint]:
        entity = await self.get_entity(entity_id)
        return entity.location if entity else None

    async def is_verified(self, entity_id: str) -> bool:
        entity = await self.get_entity(entity_id)
        return bool(entity and entity.is_verified)


class MemoryDirectory(Directory):

    def __init__(self, entities: Iterable[DirectoryEntity] = (), donors: Iterable[Donor] = ()):
        self.entities: Dict[str, DirectoryEntity] = {e.id: e for e in entities}
        self.donors: Dict[str, Donor] = {d.id: d for d in donors}

    def add(self, item):
        if isinstance(item, Donor):
            self.donors[item.id] = item
        else:
            self.entities[item.id] = item
        return item

    async def get_entity(self, entity_id):
        return self.entities.get(entity_id)

    async def nearby_entities(self, entity_type, origin, max_distance_m):
        found = []
        for entity in self.entities.values():
            if entity.entity_type != entity_type:
                continue
            distance = haversine_m(origin, entity.location)
            if distance <= max_distance_m:
                found.append((entity, distance))
        return sorted(found, key=lambda pair: pair[1])

    async def nearby_donors(self, origin, max_distance_m, blood_groups):
        groups = set(blood_groups)
        found = []
        for donor in self.donors.values():
            if donor.blood_group not in groups:
                continue
            distance = haversine_m(origin, donor.location)
            if distance <= max_distance_m:
                found.append((donor, distance))
        return sorted(found, key=lambda pair: pair[1])
