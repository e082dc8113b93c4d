"""
Inventory ledger.

Two separate books are kept here:

- aggregate counters per (entity, blood group), with ``available`` and
  ``reserved`` that never go negative, and a movement row for every change;
- individual resource units with their expiry, quality checks and
  transfer chain.

The expiry sweep only touches unit status. Counters drift from the unit
book when units expire and are brought back in line by ``reconcile``.
"""
from datetime import timedelta
from typing import List, Optional

from logger import get_logger
from models import (
    BloodGroup, InventoryMovement, InventoryRecord, LocationType, QualityCheck,
    QualityCheckCreate, QualityCheckResult, Reconciliation, ResourceUnit,
    ResourceUnitCreate, TransferRecord, UnitLocation, UnitStatus
)
from models.audit import ActivityType
from models.blood_unit import BLOOD_EXPIRY_DAYS
from services.clock import Clock
from services.errors import (
    ConcurrentModification, InsufficientStock, InvalidUnitState, NotFound, ValidationError
)
from services.stores import InventoryStore, UnitStore

logger = get_logger("ledger")


class InventoryLedger:

    def __init__(
        self,
        inventory: InventoryStore,
        units: UnitStore,
        clock: Optional[Clock] = None,
        activity=None,
        shelf_life_days: int = BLOOD_EXPIRY_DAYS,
    ):
        self.inventory = inventory
        self.units = units
        self.clock = clock or Clock()
        self.activity = activity
        self.shelf_life_days = shelf_life_days

    # ============ AGGREGATE COUNTERS ============

    async def get_record(self, entity_id: str, blood_group: BloodGroup) -> InventoryRecord:
        record = await self.inventory.get(entity_id, blood_group)
        if record is None:
            return InventoryRecord(entity_id=entity_id, blood_group=blood_group,
                                   last_updated=self.clock.now())
        return record

    async def list_records(self, entity_id: Optional[str] = None) -> List[InventoryRecord]:
        return await self.inventory.list(entity_id)

    async def movements(self, entity_id: str, blood_group: Optional[BloodGroup] = None):
        return await self.inventory.list_movements(entity_id, blood_group)

    async def adjust(
        self,
        entity_id: str,
        blood_group: BloodGroup,
        delta: int,
        reason: str,
        actor: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> InventoryRecord:
        """Apply ``available += delta``; rejected when the result would be negative."""
        if delta == 0:
            raise ValidationError("Adjustment delta must be non-zero")
        return await self._mutate(entity_id, blood_group, delta, 0, reason, actor, request_id)

    async def reserve(
        self,
        entity_id: str,
        blood_group: BloodGroup,
        units: int,
        reason: str = "reservation",
        actor: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> InventoryRecord:
        self._check_units(units)
        return await self._mutate(entity_id, blood_group, -units, units, reason, actor, request_id)

    async def release(
        self,
        entity_id: str,
        blood_group: BloodGroup,
        units: int,
        reason: str = "reservation released",
        actor: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> InventoryRecord:
        self._check_units(units)
        return await self._mutate(entity_id, blood_group, units, -units, reason, actor, request_id)

    async def consume_reserved(
        self,
        entity_id: str,
        blood_group: BloodGroup,
        units: int,
        reason: str = "reserved units assigned",
        actor: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> InventoryRecord:
        self._check_units(units)
        return await self._mutate(entity_id, blood_group, 0, -units, reason, actor, request_id)

    async def restore_reserved(
        self,
        entity_id: str,
        blood_group: BloodGroup,
        units: int,
        reason: str = "reserved units restored",
        actor: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> InventoryRecord:
        """Inverse of ``consume_reserved``, used to roll back a failed assignment."""
        self._check_units(units)
        return await self._mutate(entity_id, blood_group, 0, units, reason, actor, request_id)

    @staticmethod
    def _check_units(units: int) -> None:
        if units <= 0:
            raise ValidationError("Units must be a positive integer", details={"units": units})

    async def _mutate(self, entity_id, blood_group, available_delta, reserved_delta,
                      reason, actor, request_id) -> InventoryRecord:
        blood_group = BloodGroup(blood_group)
        now = self.clock.now()
        record = await self.inventory.apply_delta(
            entity_id, blood_group, available_delta, reserved_delta, now
        )
        if record is None:
            current = await self.get_record(entity_id, blood_group)
            logger.warning(
                "Rejected inventory change %+d/%+d on %s %s (available=%d reserved=%d): %s",
                available_delta, reserved_delta, entity_id, blood_group.value,
                current.available, current.reserved, reason,
            )
            raise InsufficientStock(
                f"Insufficient {blood_group.value} stock at {entity_id}",
                details={
                    "entity_id": entity_id,
                    "blood_group": blood_group.value,
                    "available": current.available,
                    "reserved": current.reserved,
                    "available_delta": available_delta,
                    "reserved_delta": reserved_delta,
                },
            )

        await self.inventory.add_movement(InventoryMovement(
            entity_id=entity_id,
            blood_group=blood_group,
            available_delta=available_delta,
            reserved_delta=reserved_delta,
            reason=reason,
            actor=actor,
            request_id=request_id,
            available_after=record.available,
            reserved_after=record.reserved,
            timestamp=now,
        ))
        logger.info(
            "Inventory %s %s: available %+d -> %d, reserved %+d -> %d (%s)",
            entity_id, blood_group.value, available_delta, record.available,
            reserved_delta, record.reserved, reason,
        )
        return record

    # ============ UNIT BOOK ============

    async def get_unit(self, unit_id: str) -> ResourceUnit:
        unit = await self.units.get(unit_id)
        if unit is None:
            raise NotFound(f"Resource unit {unit_id} not found")
        return unit

    async def _save_unit(self, unit: ResourceUnit, expected_version: int) -> ResourceUnit:
        unit.updated_at = self.clock.now()
        if not await self.units.update(unit, expected_version):
            raise ConcurrentModification(f"Resource unit {unit.id} was modified concurrently")
        return unit

    async def intake_unit(self, data: ResourceUnitCreate, actor: str) -> ResourceUnit:
        now = self.clock.now()
        if data.donation_date > now:
            raise ValidationError("Donation date cannot be in the future")
        unit = ResourceUnit(
            donor_id=data.donor_id,
            collected_by=data.location_id,
            blood_group=data.blood_group,
            donation_amount=data.donation_amount,
            donation_date=data.donation_date,
            expiry_date=data.donation_date + timedelta(days=self.shelf_life_days),
            current_location=UnitLocation(
                entity_id=data.location_id, entity_type=data.location_type, updated_at=now
            ),
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )
        await self.units.insert(unit)
        logger.info("Unit %s (%s) received at %s", unit.id, unit.blood_group.value, data.location_id)
        if self.activity:
            self.activity.record(ActivityType.UNIT_RECEIVED, actor, record_id=unit.id, details={
                "blood_group": unit.blood_group.value,
                "location_id": data.location_id,
                "expiry_date": unit.expiry_date.isoformat(),
            })
        return unit

    async def record_quality_check(self, unit_id: str, check: QualityCheckCreate, actor: str) -> ResourceUnit:
        unit = await self.get_unit(unit_id)
        if unit.status == UnitStatus.DISCARDED:
            raise InvalidUnitState(f"Unit {unit_id} has been discarded", details={"status": unit.status.value})

        version = unit.version
        was_available = unit.status == UnitStatus.AVAILABLE
        unit.quality_checks = unit.quality_checks + (QualityCheck(
            check_type=check.check_type,
            result=check.result,
            checked_by=actor,
            check_date=self.clock.now(),
            notes=check.notes,
        ),)
        if check.result == QualityCheckResult.FAIL:
            unit.status = UnitStatus.DISCARDED
        await self._save_unit(unit, version)

        if unit.status == UnitStatus.DISCARDED:
            logger.info("Unit %s discarded after failed %s check", unit_id, check.check_type.value)
            if was_available:
                try:
                    await self.adjust(unit.current_location.entity_id, unit.blood_group, -1,
                                      f"unit {unit_id} discarded", actor=actor)
                except InsufficientStock:
                    # Counter already below the unit book; left for reconcile()
                    logger.warning("Counter drift at %s %s while discarding unit %s",
                                   unit.current_location.entity_id, unit.blood_group.value, unit_id)
        if self.activity:
            self.activity.record(ActivityType.UNIT_QUALITY_CHECKED, actor, record_id=unit_id, details={
                "check_type": check.check_type.value,
                "result": check.result.value,
            })
        return unit

    async def mark_available(self, unit_id: str, actor: str) -> ResourceUnit:
        """Release a processed unit into stock at its current holder."""
        unit = await self.get_unit(unit_id)
        now = self.clock.now()
        if unit.status != UnitStatus.PROCESSING:
            raise InvalidUnitState(f"Unit {unit_id} is {unit.status.value}, expected processing",
                                   details={"status": unit.status.value})
        if unit.has_failed_check():
            raise InvalidUnitState(f"Unit {unit_id} failed a quality check")
        if unit.is_expired(now):
            raise InvalidUnitState(f"Unit {unit_id} expired on {unit.expiry_date.isoformat()}")

        version = unit.version
        unit.status = UnitStatus.AVAILABLE
        await self._save_unit(unit, version)
        await self.adjust(unit.current_location.entity_id, unit.blood_group, 1,
                          f"unit {unit_id} available", actor=actor)
        return unit

    async def record_transfer(
        self,
        unit_id: str,
        to_id: str,
        to_type: LocationType,
        reason: str,
        actor: str,
    ) -> ResourceUnit:
        unit = await self.get_unit(unit_id)
        now = self.clock.now()
        if not unit.is_usable(now):
            raise InvalidUnitState(
                f"Invalid blood unit for transfer: {unit_id}",
                details={"status": unit.status.value, "expiry_date": unit.expiry_date.isoformat()},
            )
        source = unit.current_location
        if source.entity_id == to_id:
            raise ValidationError("Unit is already held by the destination")

        # Counter first: a rejected decrement leaves the unit untouched
        await self.adjust(source.entity_id, unit.blood_group, -1,
                          f"unit {unit_id} transferred to {to_id}", actor=actor)
        version = unit.version
        unit.transfer_history = unit.transfer_history + (TransferRecord(
            from_id=source.entity_id,
            from_type=source.entity_type,
            to_id=to_id,
            to_type=to_type,
            reason=reason,
            transferred_by=actor,
            transfer_date=now,
        ),)
        unit.current_location = UnitLocation(entity_id=to_id, entity_type=to_type, updated_at=now)
        try:
            await self._save_unit(unit, version)
        except ConcurrentModification:
            await self.adjust(source.entity_id, unit.blood_group, 1,
                              f"transfer of unit {unit_id} rolled back", actor=actor)
            raise
        await self.adjust(to_id, unit.blood_group, 1, f"unit {unit_id} received from {source.entity_id}",
                          actor=actor)
        if self.activity:
            self.activity.record(ActivityType.UNIT_TRANSFERRED, actor, record_id=unit_id, details={
                "from": source.entity_id, "to": to_id, "reason": reason,
            })
        return unit

    async def assign_unit(
        self, unit_id: str, request_id: str, entity_id: str, blood_group: BloodGroup
    ) -> ResourceUnit:
        """Mark a usable unit held by ``entity_id`` as assigned to a request."""
        unit = await self.get_unit(unit_id)
        now = self.clock.now()
        if not unit.is_usable(now):
            raise InvalidUnitState(f"Unit {unit_id} is not available for assignment",
                                   details={"status": unit.status.value})
        if unit.blood_group != blood_group:
            raise ValidationError(
                f"Unit {unit_id} is {unit.blood_group.value}, request line is {blood_group.value}"
            )
        if unit.current_location.entity_id != entity_id:
            raise InvalidUnitState(f"Unit {unit_id} is not held by {entity_id}")

        version = unit.version
        unit.status = UnitStatus.ASSIGNED
        unit.assigned_request_id = request_id
        return await self._save_unit(unit, version)

    async def revert_assignment(self, unit_id: str) -> ResourceUnit:
        """Undo ``assign_unit`` when the surrounding transition fails."""
        unit = await self.get_unit(unit_id)
        version = unit.version
        unit.status = UnitStatus.AVAILABLE
        unit.assigned_request_id = None
        return await self._save_unit(unit, version)

    async def find_available_units(
        self, blood_group: Optional[BloodGroup] = None, entity_id: Optional[str] = None
    ) -> List[ResourceUnit]:
        return await self.units.find_available(self.clock.now(), blood_group, entity_id)

    # ============ EXPIRY & RECONCILIATION ============

    async def expire_sweep(self, now=None) -> List[str]:
        """Mark available units past expiry as expired. Safe to repeat."""
        now = now or self.clock.now()
        expired = await self.units.expire(now)
        if expired:
            logger.info("Expiry sweep marked %d units expired", len(expired))
            if self.activity:
                self.activity.record(ActivityType.UNITS_EXPIRED, "system",
                                     details={"unit_ids": expired, "swept_at": now.isoformat()})
        return expired

    async def reconcile(
        self, entity_id: str, blood_group: BloodGroup, apply: bool = False, actor: str = "system"
    ) -> Reconciliation:
        """
        Compare the counters with the unit book for one key.

        Reserved units are still physically available units, so the
        comparison is against ``available + reserved``. When ``apply`` is
        set the difference is corrected on ``available``, as far as
        ``available`` can absorb it. Any remainder sits in ``reserved``,
        which belongs to open requests; it is reported as ``unapplied``
        and cleared when those reservations are released or cancelled.
        """
        blood_group = BloodGroup(blood_group)
        record = await self.get_record(entity_id, blood_group)
        actual = len(await self.find_available_units(blood_group, entity_id))
        recorded = record.available + record.reserved
        drift = recorded - actual
        result = Reconciliation(
            entity_id=entity_id,
            blood_group=blood_group,
            recorded_available=recorded,
            actual_available=actual,
            drift=drift,
            unapplied=drift,
        )
        correction = min(drift, record.available)
        if correction and apply:
            try:
                await self.adjust(entity_id, blood_group, -correction, "reconciliation", actor=actor)
            except InsufficientStock:
                # Stock moved since the record was read; the next pass picks it up
                logger.warning("Reconciliation of %s %s lost a race with another change",
                               entity_id, blood_group.value)
            else:
                result.applied = True
                result.unapplied = drift - correction
                if self.activity:
                    self.activity.record(ActivityType.INVENTORY_RECONCILED, actor, details={
                        "entity_id": entity_id, "blood_group": blood_group.value,
                        "drift": drift, "corrected": correction,
                    })
        if drift:
            logger.warning("Inventory drift %+d at %s %s (applied=%s, unapplied=%+d)",
                           drift, entity_id, blood_group.value, result.applied, result.unapplied)
        return result
