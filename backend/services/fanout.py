"""
Broadcast fan-out: one logical request becomes one concrete request record
per matched NGO, each tracked independently, plus one notification job per
NGO. Failures for individual candidates are collected, never raised.
"""
import asyncio
from typing import List, Optional

from pydantic import BaseModel

from logger import get_logger
from models import Candidate, DirectoryEntity, EntityType, RequestCreateBase, StatusHistoryEntry
from models.enums import FANOUT_NOTIFICATION, INITIAL_STATUS
from models.request import REQUEST_MODELS, FulfillmentRequest, FulfillmentRequestBase
from services.clock import Clock
from services.errors import FulfillmentError, NoEligibleCounterparties
from services.ids import generate_batch_id, generate_request_id
from services.stores import RequestStore

logger = get_logger("fanout")


class CandidateFailure(BaseModel):
    candidate_id: str
    stage: str  # "create" or "notify"
    kind: str
    message: str
    request_id: Optional[str] = None


class FanoutResult(BaseModel):
    batch_id: str
    created: List[FulfillmentRequest] = []
    failures: List[CandidateFailure] = []


class FanoutDispatcher:

    def __init__(self, requests: RequestStore, notifications, clock: Optional[Clock] = None,
                 concurrency: int = 8):
        self.requests = requests
        self.notifications = notifications
        self.clock = clock or Clock()
        self.concurrency = max(1, concurrency)

    async def dispatch(
        self,
        attrs: RequestCreateBase,
        hospital: DirectoryEntity,
        candidates: List[Candidate],
        actor: str,
        timed_out: bool = False,
    ) -> FanoutResult:
        if not candidates:
            raise NoEligibleCounterparties(
                "Matching timed out before any NGO was found" if timed_out
                else "No NGOs found in nearby area",
                retryable=timed_out,
                details={"hospital_id": hospital.id},
            )

        batch_id = generate_batch_id(self.clock.now())
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(candidate: Candidate):
            async with semaphore:
                return await self._dispatch_one(attrs, hospital, candidate, batch_id, actor)

        outcomes = await asyncio.gather(*(run(c) for c in candidates))

        result = FanoutResult(batch_id=batch_id)
        for request, failures in outcomes:
            if request is not None:
                result.created.append(request)
            result.failures.extend(failures)
        if result.failures:
            logger.warning("Batch %s: %d of %d candidates had failures",
                           batch_id, len(result.failures), len(candidates))
        return result

    def build_request(
        self, attrs: RequestCreateBase, ngo_id: str, batch_id: str
    ) -> FulfillmentRequestBase:
        now = self.clock.now()
        model = REQUEST_MODELS[attrs.kind]
        initial = INITIAL_STATUS[attrs.kind]
        request = model(
            request_id=generate_request_id(attrs.kind, now),
            batch_id=batch_id,
            hospital_id=attrs.hospital_id,
            ngo_id=ngo_id,
            resource_groups=attrs.resource_groups(),
            urgency_level=attrs.get_urgency(),
            required_by=attrs.required_by,
            status=initial,
            appointment=attrs.appointment,
            patient_info=attrs.patient_info.model_copy(deep=True),
            request_notes=attrs.request_notes,
            created_at=now,
            updated_at=now,
            **attrs.payload_fields(),
        )
        return request

    async def _dispatch_one(self, attrs, hospital, candidate, batch_id, actor):
        failures: List[CandidateFailure] = []
        try:
            request = self.build_request(attrs, candidate.id, batch_id)
            request.append_history(StatusHistoryEntry(
                status=request.status.value, updated_by=actor, notes="Request created",
                updated_at=request.created_at,
            ))
            await self.requests.insert(request)
        except Exception as exc:
            failures.append(self._failure(candidate, "create", exc))
            return None, failures

        payload = {
            "request_id": request.id,
            "request_ref": request.request_id,
            "batch_id": batch_id,
            "hospital": hospital.name,
            "required_by": attrs.required_by.isoformat(),
            **attrs.notification_summary(),
        }
        try:
            await self.notifications.submit(
                FANOUT_NOTIFICATION[attrs.kind], candidate.id, payload, recipient_model=EntityType.NGO
            )
        except Exception as exc:
            failures.append(self._failure(candidate, "notify", exc, request.id))
        return request, failures

    @staticmethod
    def _failure(candidate: Candidate, stage: str, exc: Exception,
                 request_id: Optional[str] = None) -> CandidateFailure:
        if isinstance(exc, FulfillmentError):
            kind, message = exc.kind, exc.message
            logger.warning("Fan-out %s failed for %s: %s", stage, candidate.id, message)
        else:
            kind, message = "internal_error", str(exc) or exc.__class__.__name__
            logger.exception("Unexpected fan-out %s failure for %s", stage, candidate.id)
        return CandidateFailure(candidate_id=candidate.id, stage=stage, kind=kind,
                                message=message, request_id=request_id)
