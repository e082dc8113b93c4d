from fastapi import APIRouter, Depends

from models import (
    BloodRequestCreate, CancelRequest, OrganRequestCreate, PlasmaRequestCreate, ReservationCreate,
    StatusUpdate
)
from services import FulfillmentEngine, get_current_user, get_engine

router = APIRouter(prefix="/requests", tags=["Fulfillment Requests"])


def _batch_response(result) -> dict:
    data = result.model_dump(mode="json")
    return {
        "status": "success" if not result.failures else "partial",
        "batch_id": result.batch_id,
        "request_ids": [r.request_id for r in result.created],
        "created": data["created"],
        "failures": data["failures"],
    }

# ============ CREATION ============

@router.post("/blood", status_code=201)
async def create_blood_request(
    request_data: BloodRequestCreate,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    result = await engine.create_request(request_data, current_user["id"])
    return _batch_response(result)

@router.post("/plasma", status_code=201)
async def create_plasma_request(
    request_data: PlasmaRequestCreate,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    result = await engine.create_request(request_data, current_user["id"])
    return _batch_response(result)

@router.post("/organ", status_code=201)
async def create_organ_request(
    request_data: OrganRequestCreate,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    result = await engine.create_request(request_data, current_user["id"])
    return _batch_response(result)

# ============ QUERIES ============

@router.get("/emergency")
async def get_emergency_requests(
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    requests = await engine.list_emergency_requests()
    return [r.tracking_view() for r in requests]

@router.get("/batch/{batch_id}")
async def get_batch(
    batch_id: str,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    requests = await engine.list_batch(batch_id)
    return [r.tracking_view() for r in requests]

@router.get("/{request_id}")
async def track_request(
    request_id: str,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    return await engine.track_request(request_id)

@router.get("/{request_id}/donors")
async def find_donors(
    request_id: str,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    match = await engine.find_donors_for_request(request_id)
    return {
        "count": len(match.candidates),
        "timed_out": match.timed_out,
        "donors": [c.model_dump(mode="json") for c in match.candidates],
    }

# ============ LIFECYCLE ============

@router.put("/{request_id}/status")
async def update_request_status(
    request_id: str,
    update: StatusUpdate,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    request = await engine.update_status(
        request_id, update.status, current_user["id"], update.notes, update.assignments
    )
    return {"status": "success", "request": request.tracking_view()}

@router.put("/{request_id}/cancel")
async def cancel_request(
    request_id: str,
    body: CancelRequest,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    request = await engine.cancel_request(request_id, current_user["id"], body.reason)
    return {"status": "success", "request": request.tracking_view()}

@router.post("/{request_id}/reserve")
async def reserve_for_request(
    request_id: str,
    reservation: ReservationCreate,
    engine: FulfillmentEngine = Depends(get_engine),
    current_user: dict = Depends(get_current_user)
):
    request = await engine.reserve_for_request(
        request_id, reservation.blood_group, reservation.units, current_user["id"]
    )
    return {
        "status": "success",
        "reservations": [r.model_dump(mode="json") for r in request.reservations],
    }
