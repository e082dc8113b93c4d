"""
Storage interfaces for the ledger and the request lifecycle, with in-memory
implementations used by tests and single-process deployments.

Every counter mutation goes through ``InventoryStore.apply_delta``, which must
be atomic per (entity, blood group) key: the MongoDB implementation uses a
guarded ``find_one_and_update``, the in-memory one a per-key lock.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from models import (
    BloodGroup, FulfillmentRequestBase, InventoryMovement, InventoryRecord, ResourceUnit,
    UnitStatus, UrgencyLevel
)
from services.locks import KeyedLocks


class InventoryStore(ABC):

    @abstractmethod
    async def get(self, entity_id: str, blood_group: BloodGroup) -> Optional[InventoryRecord]:
        ...

    @abstractmethod
    async def list(self, entity_id: Optional[str] = None) -> List[InventoryRecord]:
        ...

    @abstractmethod
    async def apply_delta(
        self,
        entity_id: str,
        blood_group: BloodGroup,
        available_delta: int,
        reserved_delta: int,
        now: datetime,
    ) -> Optional[InventoryRecord]:
        """
        Atomically add the deltas to the record, creating it when missing.

        Returns the updated record, or None when either counter would go
        negative (in which case nothing is written).
        """

    @abstractmethod
    async def add_movement(self, movement: InventoryMovement) -> None:
        ...

    @abstractmethod
    async def list_movements(
        self, entity_id: str, blood_group: Optional[BloodGroup] = None
    ) -> List[InventoryMovement]:
        ...


class UnitStore(ABC):

    @abstractmethod
    async def insert(self, unit: ResourceUnit) -> None:
        ...

    @abstractmethod
    async def get(self, unit_id: str) -> Optional[ResourceUnit]:
        ...

    @abstractmethod
    async def update(self, unit: ResourceUnit, expected_version: int) -> bool:
        """Persist ``unit`` only if the stored version still equals ``expected_version``."""

    @abstractmethod
    async def find_available(
        self,
        now: datetime,
        blood_group: Optional[BloodGroup] = None,
        entity_id: Optional[str] = None,
    ) -> List[ResourceUnit]:
        """Non-expired available units, soonest expiry first."""

    @abstractmethod
    async def expire(self, now: datetime) -> List[str]:
        """Flip available units past expiry to expired; return the ids flipped."""


class RequestStore(ABC):

    @abstractmethod
    async def insert(self, request: FulfillmentRequestBase) -> None:
        ...

    @abstractmethod
    async def get(self, request_id: str) -> Optional[FulfillmentRequestBase]:
        """Look up by internal id or human-readable request id."""

    @abstractmethod
    async def save(self, request: FulfillmentRequestBase, expected_version: int) -> bool:
        ...

    @abstractmethod
    async def list_batch(self, batch_id: str) -> List[FulfillmentRequestBase]:
        ...

    @abstractmethod
    async def list_open(self, urgency_levels: Iterable[UrgencyLevel]) -> List[FulfillmentRequestBase]:
        """Non-terminal requests at the given urgencies, by priority then age."""


class SlotRegistry(ABC):

    @abstractmethod
    async def release_slot(self, facility_id: str, slot_id: str) -> bool:
        ...

    @abstractmethod
    async def reserve_slot(self, facility_id: str, slot_id: str) -> bool:
        ...


# ============ IN-MEMORY IMPLEMENTATIONS ============

class MemoryInventoryStore(InventoryStore):

    def __init__(self):
        self._records: Dict[Tuple[str, BloodGroup], InventoryRecord] = {}
        self._movements: List[InventoryMovement] = []
        self._locks = KeyedLocks()

    async def get(self, entity_id, blood_group):
        record = self._records.get((entity_id, BloodGroup(blood_group)))
        return record.model_copy() if record else None

    async def list(self, entity_id=None):
        return [
            r.model_copy() for (eid, _), r in sorted(self._records.items(), key=lambda kv: (kv[0][0], kv[0][1].value))
            if entity_id is None or eid == entity_id
        ]

    async def apply_delta(self, entity_id, blood_group, available_delta, reserved_delta, now):
        key = (entity_id, BloodGroup(blood_group))
        async with self._locks.hold(key):
            current = self._records.get(key) or InventoryRecord(
                entity_id=entity_id, blood_group=blood_group, last_updated=now
            )
            available = current.available + available_delta
            reserved = current.reserved + reserved_delta
            if available < 0 or reserved < 0:
                return None
            updated = current.model_copy(update={
                "available": available,
                "reserved": reserved,
                "version": current.version + 1,
                "last_updated": now,
            })
            self._records[key] = updated
            return updated.model_copy()

    async def add_movement(self, movement):
        self._movements.append(movement)

    async def list_movements(self, entity_id, blood_group=None):
        return [
            m for m in self._movements
            if m.entity_id == entity_id and (blood_group is None or m.blood_group == blood_group)
        ]


class MemoryUnitStore(UnitStore):

    def __init__(self):
        self._units: Dict[str, ResourceUnit] = {}
        self._locks = KeyedLocks()

    async def insert(self, unit):
        self._units[unit.id] = unit.model_copy(deep=True)

    async def get(self, unit_id):
        unit = self._units.get(unit_id)
        return unit.model_copy(deep=True) if unit else None

    async def update(self, unit, expected_version):
        async with self._locks.hold(unit.id):
            stored = self._units.get(unit.id)
            if stored is None or stored.version != expected_version:
                return False
            self._units[unit.id] = unit.model_copy(deep=True, update={"version": expected_version + 1})
            unit.version = expected_version + 1
            return True

    async def find_available(self, now, blood_group=None, entity_id=None):
        units = [
            u for u in self._units.values()
            if u.is_usable(now)
            and (blood_group is None or u.blood_group == blood_group)
            and (entity_id is None or u.current_location.entity_id == entity_id)
        ]
        return [u.model_copy(deep=True) for u in sorted(units, key=lambda u: u.expiry_date)]

    async def expire(self, now):
        expired = []
        for unit_id in list(self._units):
            async with self._locks.hold(unit_id):
                unit = self._units[unit_id]
                if unit.status == UnitStatus.AVAILABLE and unit.is_expired(now):
                    self._units[unit_id] = unit.model_copy(update={
                        "status": UnitStatus.EXPIRED,
                        "version": unit.version + 1,
                        "updated_at": now,
                    })
                    expired.append(unit_id)
        return expired


class MemoryRequestStore(RequestStore):

    def __init__(self):
        self._requests: Dict[str, FulfillmentRequestBase] = {}

    async def insert(self, request):
        self._requests[request.id] = request.model_copy(deep=True)

    async def get(self, request_id):
        request = self._requests.get(request_id)
        if request is None:
            request = next((r for r in self._requests.values() if r.request_id == request_id), None)
        return request.model_copy(deep=True) if request else None

    async def save(self, request, expected_version):
        stored = self._requests.get(request.id)
        if stored is None or stored.version != expected_version:
            return False
        request.version = expected_version + 1
        self._requests[request.id] = request.model_copy(deep=True)
        return True

    async def list_batch(self, batch_id):
        return [r.model_copy(deep=True) for r in self._requests.values() if r.batch_id == batch_id]

    async def list_open(self, urgency_levels):
        levels = set(urgency_levels)
        found = [r for r in self._requests.values() if r.urgency_level in levels and not r.is_terminal]
        return [r.model_copy(deep=True) for r in sorted(found, key=lambda r: (r.priority, r.created_at))]


class MemorySlotRegistry(SlotRegistry):

    def __init__(self, slots: Optional[Dict[Tuple[str, str], dict]] = None):
        # (facility_id, slot_id) -> {"capacity": int, "booked": int}
        self.slots = slots or {}

    async def release_slot(self, facility_id, slot_id):
        slot = self.slots.get((facility_id, slot_id))
        if not slot or slot["booked"] <= 0:
            return False
        slot["booked"] -= 1
        return True

    async def reserve_slot(self, facility_id, slot_id):
        slot = self.slots.get((facility_id, slot_id))
        if not slot or slot["booked"] >= slot["capacity"]:
            return False
        slot["booked"] += 1
        return True
