"""
Fulfillment engine: create -> match -> fan-out, then status updates and
ledger mutations on the individual fan-out copies.
"""
from typing import Dict, List, Optional

from config import Settings
from logger import get_logger
from models import (
    BloodGroup, EntityType, FulfillmentRequestBase, NotificationType, RequestCreateBase,
    RequestKind, UrgencyLevel
)
from models.audit import ActivityType
from services.clock import Clock
from services.errors import FulfillmentError, NotFound, ValidationError
from services.fanout import FanoutDispatcher, FanoutResult
from services.matcher import DonorCriteria, EligibilityMatcher, EntityFilter, MatchResult
from services.state_machine import RequestStateMachine

logger = get_logger("engine")

CREATED_ACTIVITY = {
    RequestKind.BLOOD: ActivityType.BLOOD_REQUEST_CREATED,
    RequestKind.PLASMA: ActivityType.PLASMA_REQUEST_CREATED,
    RequestKind.ORGAN: ActivityType.ORGAN_REQUEST_CREATED,
}


class FulfillmentEngine:

    def __init__(
        self,
        ledger,
        matcher: EligibilityMatcher,
        state_machine: RequestStateMachine,
        fanout: FanoutDispatcher,
        directory,
        notifications,
        activity,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.ledger = ledger
        self.matcher = matcher
        self.state_machine = state_machine
        self.fanout = fanout
        self.directory = directory
        self.notifications = notifications
        self.activity = activity
        self.clock = clock or Clock()
        self.settings = settings or Settings()

    # ============ CREATION ============

    async def create_request(self, attrs: RequestCreateBase, actor: str) -> FanoutResult:
        now = self.clock.now()
        if attrs.required_by <= now:
            raise ValidationError("Required date must be in the future",
                                  details={"required_by": attrs.required_by.isoformat()})
        if not attrs.resource_groups():
            raise ValidationError("Blood group details are required")

        hospital = await self.directory.get_entity(attrs.hospital_id)
        if hospital is None or hospital.entity_type != EntityType.HOSPITAL:
            raise NotFound(f"Hospital {attrs.hospital_id} not found")

        radius = attrs.max_distance_m or self.settings.search_radius_for(attrs.kind)
        match = await self.matcher.find_nearby_entities(
            hospital.location, radius, EntityFilter(entity_type=EntityType.NGO)
        )
        result = await self.fanout.dispatch(
            attrs, hospital, match.candidates, actor, timed_out=match.timed_out
        )

        self.activity.record(
            CREATED_ACTIVITY[attrs.kind],
            actor,
            record_id=result.batch_id,
            description=f"{attrs.kind.value.title()} request fanned out to {len(result.created)} NGOs",
            details={
                "batch_id": result.batch_id,
                "request_ids": [r.id for r in result.created],
                "failures": len(result.failures),
                **attrs.notification_summary(),
            },
            status="success" if not result.failures else "failure",
        )
        logger.info("Batch %s: %d %s requests created for hospital %s (%d failures)",
                    result.batch_id, len(result.created), attrs.kind.value,
                    hospital.id, len(result.failures))
        return result

    # ============ LIFECYCLE ============

    async def update_status(
        self,
        request_id: str,
        new_status: str,
        actor: str,
        notes: Optional[str] = None,
        assignments: Optional[Dict[BloodGroup, List[str]]] = None,
    ) -> FulfillmentRequestBase:
        request = await self.state_machine.transition(request_id, new_status, actor, notes, assignments)
        await self._notify(NotificationType.REQUEST_STATUS_UPDATE, request.hospital_id,
                           EntityType.HOSPITAL, {
                               "request_id": request.id,
                               "request_ref": request.request_id,
                               "status": request.status.value,
                               "notes": notes,
                               "request_type": request.kind.value,
                           })
        self.activity.record(ActivityType.REQUEST_STATUS_UPDATED, actor, record_id=request.id,
                             details={"status": request.status.value, "notes": notes})
        return request

    async def cancel_request(self, request_id: str, actor: str, reason: Optional[str] = None):
        request = await self.state_machine.transition(request_id, "Cancelled", actor, reason)
        payload = {"request_id": request.id, "request_ref": request.request_id, "reason": reason}
        await self._notify(NotificationType.REQUEST_CANCELLED, request.hospital_id,
                           EntityType.HOSPITAL, payload)
        await self._notify(NotificationType.REQUEST_CANCELLED, request.ngo_id, EntityType.NGO, payload)
        self.activity.record(ActivityType.REQUEST_CANCELLED, actor, record_id=request.id,
                             details={"reason": reason})
        return request

    async def reserve_for_request(
        self, request_id: str, blood_group: BloodGroup, units: int, actor: str
    ) -> FulfillmentRequestBase:
        request = await self.state_machine.reserve_for_request(request_id, blood_group, units, actor)
        self.activity.record(ActivityType.REQUEST_RESERVATION, actor, record_id=request.id,
                             details={"blood_group": BloodGroup(blood_group).value, "units": units})
        return request

    async def _notify(self, job_type, recipient_id, recipient_model, payload) -> Optional[str]:
        # The transition is already committed; a failed notification must not undo it
        try:
            return await self.notifications.submit(job_type, recipient_id, payload,
                                                   recipient_model=recipient_model)
        except FulfillmentError as exc:
            logger.warning("%s notification to %s failed: %s", job_type.value, recipient_id, exc.message)
            return None
        except Exception:
            logger.exception("%s notification to %s failed", job_type.value, recipient_id)
            return None

    # ============ READS ============

    async def track_request(self, request_id: str) -> dict:
        request = await self.state_machine.load(request_id)
        return {
            "request": request.tracking_view(),
            "fulfillment": request.calculate_fulfillment_status().model_dump(),
        }

    async def list_batch(self, batch_id: str) -> List[FulfillmentRequestBase]:
        requests = await self.state_machine.requests.list_batch(batch_id)
        if not requests:
            raise NotFound(f"Batch {batch_id} not found")
        return requests

    async def list_emergency_requests(self) -> List[FulfillmentRequestBase]:
        return await self.state_machine.requests.list_open([UrgencyLevel.EMERGENCY])

    async def find_donors_for_request(self, request_id: str) -> MatchResult:
        request = await self.state_machine.load(request_id)
        origin = await self.directory.get_entity_location(request.hospital_id)
        if origin is None:
            raise NotFound(f"Hospital {request.hospital_id} not found")
        criteria = DonorCriteria(
            kind=request.kind,
            blood_groups=[line.blood_group for line in request.resource_groups],
            organ_type=getattr(request, "organ_type", None),
        )
        return await self.matcher.find_compatible_donors(criteria, origin, request.urgency_level)
