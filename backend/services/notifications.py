"""
Notification sink.

The engine only submits jobs; delivery (email, SMS, push) belongs to the
notification workers that consume the ``notifications`` collection.
"""
import asyncio
from typing import Optional

from logger import get_logger
from models import EntityType, NotificationJob, NotificationType
from services.errors import UpstreamTimeout

logger = get_logger("notifications")


class NotificationService:

    def __init__(self, collection, timeout_s: float = 5.0):
        self.collection = collection
        self.timeout_s = timeout_s

    async def submit(
        self,
        job_type: NotificationType,
        recipient_id: str,
        payload: dict,
        recipient_model: Optional[EntityType] = None,
    ) -> str:
        job = NotificationJob(
            type=job_type,
            recipient_id=recipient_id,
            recipient_model=recipient_model,
            data=payload,
        )
        try:
            await asyncio.wait_for(
                self.collection.insert_one(job.model_dump(mode="json")), timeout=self.timeout_s
            )
        except asyncio.TimeoutError:
            raise UpstreamTimeout(
                f"Notification submission timed out for {recipient_id}",
                details={"job_type": job_type.value, "recipient_id": recipient_id},
            )
        logger.debug("Queued %s notification %s for %s", job_type.value, job.id, recipient_id)
        return job.id
