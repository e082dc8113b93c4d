"""
Activity Logging Service
Best-effort audit trail for engine actions.
"""
import asyncio
from typing import Optional, Set

from logger import get_logger
from models.audit import ActivityLog, ActivityType

logger = get_logger("activity")


class MemoryCollection:
    """Minimal stand-in for a Motor collection: stores inserted documents."""

    def __init__(self):
        self.documents = []

    async def insert_one(self, doc: dict):
        self.documents.append(dict(doc))
        return doc.get("id")


class ActivityService:
    """
    Writes activity log entries without blocking the caller.

    ``record`` schedules the insert as a background task; failures are
    logged and never reach the request path.
    """

    SENSITIVE_FIELDS = {
        "password", "password_hash", "token", "secret", "api_key", "otp",
        "patient_info", "patient_name", "medical_history", "diagnosis_details",
    }

    def __init__(self, collection):
        self.collection = collection
        self._pending: Set[asyncio.Task] = set()

    def record(
        self,
        event_type: ActivityType,
        actor: Optional[str],
        details: Optional[dict] = None,
        record_id: Optional[str] = None,
        description: Optional[str] = None,
        status: str = "success",
    ) -> str:
        """
        Queue an activity log entry.

        Args:
            event_type: The action being recorded
            actor: Id of the user or system component acting
            details: Additional context, cleaned of sensitive fields
            record_id: Id of the affected record
            description: Human-readable description
            status: success / failure

        Returns:
            ID of the queued activity entry
        """
        entry = ActivityLog(
            type=event_type,
            actor=actor,
            record_id=record_id,
            description=description,
            details=self._clean_sensitive_data(details),
            status=status,
        )
        task = asyncio.get_running_loop().create_task(self._write(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return entry.id

    async def _write(self, entry: ActivityLog) -> None:
        doc = entry.model_dump(mode="json")
        try:
            await self.collection.insert_one(doc)
        except Exception:
            logger.exception("Failed to write activity %s (%s)", entry.id, entry.type.value)

    async def drain(self) -> None:
        """Wait for queued writes (used at shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @classmethod
    def _clean_sensitive_data(cls, data: Optional[dict]) -> Optional[dict]:
        """Remove sensitive fields from activity data."""
        if not data:
            return None

        cleaned = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS:
                cleaned[key] = "[REDACTED]"
            elif isinstance(value, dict):
                cleaned[key] = cls._clean_sensitive_data(value)
            else:
                cleaned[key] = value

        return cleaned
