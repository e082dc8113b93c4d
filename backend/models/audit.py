"""
Activity Log Models
Audit trail for fulfillment and inventory actions.
"""
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Optional
from enum import Enum
import uuid


class ActivityType(str, Enum):
    # Requests
    BLOOD_REQUEST_CREATED = "blood_request_created"
    PLASMA_REQUEST_CREATED = "plasma_request_created"
    ORGAN_REQUEST_CREATED = "organ_request_created"
    REQUEST_STATUS_UPDATED = "request_status_updated"
    REQUEST_CANCELLED = "request_cancelled"
    REQUEST_RESERVATION = "request_reservation"

    # Inventory
    UNIT_RECEIVED = "unit_received"
    UNIT_TRANSFERRED = "unit_transferred"
    UNIT_QUALITY_CHECKED = "unit_quality_checked"
    UNITS_EXPIRED = "units_expired"
    INVENTORY_RECONCILED = "inventory_reconciled"


class ActivityLog(BaseModel):
    """Audit log entry for tracking engine actions."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))

    type: ActivityType
    actor: Optional[str] = None

    record_id: Optional[str] = None
    description: Optional[str] = None
    details: Optional[dict] = None
    status: str = "success"

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
