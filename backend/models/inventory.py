from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime, timezone
import uuid
from .enums import BloodGroup

class InventoryRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")
    entity_id: str
    blood_group: BloodGroup
    available: int = Field(default=0, ge=0)
    reserved: int = Field(default=0, ge=0)
    version: int = 0
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class InventoryMovement(BaseModel):
    """Audit row written for every counter mutation."""
    model_config = ConfigDict(extra="ignore", frozen=True)
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    entity_id: str
    blood_group: BloodGroup
    available_delta: int = 0
    reserved_delta: int = 0
    reason: str
    actor: Optional[str] = None
    request_id: Optional[str] = None
    available_after: int
    reserved_after: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class Reconciliation(BaseModel):
    entity_id: str
    blood_group: BloodGroup
    recorded_available: int
    actual_available: int
    drift: int
    applied: bool = False
    # Drift left uncorrected because it is held in reserved units
    unapplied: int = 0

class AdjustmentCreate(BaseModel):
    blood_group: BloodGroup
    delta: int
    reason: str

class ReservationCreate(BaseModel):
    blood_group: BloodGroup
    units: int = Field(gt=0)
    reason: Optional[str] = None
