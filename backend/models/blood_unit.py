from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, Tuple
from datetime import datetime, timedelta, timezone
import uuid
from .utils import UtcDatetime
from .enums import (
    BloodGroup, UnitStatus, LocationType, QualityCheckType, QualityCheckResult
)

BLOOD_EXPIRY_DAYS = 42
MIN_DONATION_AMOUNT = 200
MAX_DONATION_AMOUNT = 500
STANDARD_DONATION_AMOUNT = 450

class UnitLocation(BaseModel):
    model_config = ConfigDict(frozen=True)
    entity_id: str
    entity_type: LocationType
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class TransferRecord(BaseModel):
    model_config = ConfigDict(frozen=True)
    from_id: str
    from_type: LocationType
    to_id: str
    to_type: LocationType
    reason: str
    transferred_by: str
    transfer_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class QualityCheck(BaseModel):
    model_config = ConfigDict(frozen=True)
    check_type: QualityCheckType
    result: QualityCheckResult
    checked_by: str
    check_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    notes: Optional[str] = None

class ResourceUnit(BaseModel):
    """A single collected donation tracked through the ledger."""
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    donor_id: Optional[str] = None
    collected_by: str
    blood_group: BloodGroup
    donation_amount: int = Field(
        default=STANDARD_DONATION_AMOUNT, ge=MIN_DONATION_AMOUNT, le=MAX_DONATION_AMOUNT
    )
    donation_date: UtcDatetime
    expiry_date: Optional[UtcDatetime] = None
    status: UnitStatus = UnitStatus.PROCESSING
    current_location: UnitLocation
    transfer_history: Tuple[TransferRecord, ...] = ()
    quality_checks: Tuple[QualityCheck, ...] = ()
    assigned_request_id: Optional[str] = None
    notes: Optional[str] = None
    version: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _fix_expiry(self):
        # Shelf life is fixed at creation and never recomputed afterwards
        if self.expiry_date is None:
            self.expiry_date = self.donation_date + timedelta(days=BLOOD_EXPIRY_DAYS)
        return self

    def is_expired(self, now: datetime) -> bool:
        return self.expiry_date < now

    def is_usable(self, now: datetime) -> bool:
        return self.status == UnitStatus.AVAILABLE and not self.is_expired(now)

    def has_failed_check(self) -> bool:
        return any(c.result == QualityCheckResult.FAIL for c in self.quality_checks)

class ResourceUnitCreate(BaseModel):
    donor_id: Optional[str] = None
    blood_group: BloodGroup
    donation_amount: int = Field(
        default=STANDARD_DONATION_AMOUNT, ge=MIN_DONATION_AMOUNT, le=MAX_DONATION_AMOUNT
    )
    donation_date: UtcDatetime
    location_id: str
    location_type: LocationType = LocationType.CENTER
    notes: Optional[str] = None

class TransferCreate(BaseModel):
    to_id: str
    to_type: LocationType
    reason: str

class QualityCheckCreate(BaseModel):
    check_type: QualityCheckType
    result: QualityCheckResult
    notes: Optional[str] = None
