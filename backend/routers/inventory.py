"""
Inventory API
Aggregate counters, the movement log and the individual unit book.
"""
from fastapi import APIRouter, Depends, Query
from typing import Optional

from models import (
    AdjustmentCreate, BloodGroup, QualityCheckCreate, ReservationCreate, ResourceUnitCreate,
    TransferCreate
)
from services import FulfillmentEngine, get_current_user, get_engine

router = APIRouter(prefix="/inventory", tags=["Inventory"])

# ============ COUNTERS ============

@router.get("/records")
async def list_records(
    entity_id: Optional[str] = None,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    records = await engine.ledger.list_records(entity_id)
    return [r.model_dump(mode="json") for r in records]

@router.get("/records/{entity_id}/{blood_group}")
async def get_record(
    entity_id: str,
    blood_group: BloodGroup,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    record = await engine.ledger.get_record(entity_id, blood_group)
    return record.model_dump(mode="json")

@router.post("/{entity_id}/adjust")
async def adjust_inventory(
    entity_id: str,
    adjustment: AdjustmentCreate,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    record = await engine.ledger.adjust(
        entity_id, adjustment.blood_group, adjustment.delta, adjustment.reason, actor=current_user["id"]
    )
    return {"status": "success", "record": record.model_dump(mode="json")}

@router.post("/{entity_id}/reserve")
async def reserve_inventory(
    entity_id: str,
    reservation: ReservationCreate,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    record = await engine.ledger.reserve(
        entity_id, reservation.blood_group, reservation.units,
        reason=reservation.reason or "reservation", actor=current_user["id"]
    )
    return {"status": "success", "record": record.model_dump(mode="json")}

@router.post("/{entity_id}/release")
async def release_inventory(
    entity_id: str,
    reservation: ReservationCreate,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    record = await engine.ledger.release(
        entity_id, reservation.blood_group, reservation.units,
        reason=reservation.reason or "reservation released", actor=current_user["id"]
    )
    return {"status": "success", "record": record.model_dump(mode="json")}

@router.get("/{entity_id}/movements")
async def list_movements(
    entity_id: str,
    blood_group: Optional[BloodGroup] = None,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    movements = await engine.ledger.movements(entity_id, blood_group)
    return [m.model_dump(mode="json") for m in movements]

@router.post("/{entity_id}/reconcile")
async def reconcile_inventory(
    entity_id: str,
    blood_group: BloodGroup,
    apply: bool = Query(False),
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    result = await engine.ledger.reconcile(entity_id, blood_group, apply=apply, actor=current_user["id"])
    return result.model_dump(mode="json")

@router.post("/sweep")
async def run_expiry_sweep(
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    expired = await engine.ledger.expire_sweep()
    return {"status": "success", "expired_count": len(expired), "expired": expired}

# ============ UNITS ============

@router.post("/units", status_code=201)
async def receive_unit(
    unit_data: ResourceUnitCreate,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    unit = await engine.ledger.intake_unit(unit_data, current_user["id"])
    return {"status": "success", "id": unit.id, "unit": unit.model_dump(mode="json")}

@router.get("/units/available")
async def list_available_units(
    blood_group: Optional[BloodGroup] = None,
    entity_id: Optional[str] = None,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    units = await engine.ledger.find_available_units(blood_group, entity_id)
    return [u.model_dump(mode="json") for u in units]

@router.get("/units/{unit_id}")
async def get_unit(
    unit_id: str,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    unit = await engine.ledger.get_unit(unit_id)
    return unit.model_dump(mode="json")

@router.post("/units/{unit_id}/quality-check")
async def record_quality_check(
    unit_id: str,
    check: QualityCheckCreate,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    unit = await engine.ledger.record_quality_check(unit_id, check, current_user["id"])
    return {"status": "success", "unit_status": unit.status.value}

@router.put("/units/{unit_id}/available")
async def mark_unit_available(
    unit_id: str,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    unit = await engine.ledger.mark_available(unit_id, current_user["id"])
    return {"status": "success", "unit_status": unit.status.value}

@router.post("/units/{unit_id}/transfer")
async def transfer_unit(
    unit_id: str,
    transfer: TransferCreate,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    unit = await engine.ledger.record_transfer(
        unit_id, transfer.to_id, transfer.to_type, transfer.reason, current_user["id"]
    )
    return {
        "status": "success",
        "current_location": unit.current_location.model_dump(mode="json"),
        "transfers": len(unit.transfer_history),
    }
