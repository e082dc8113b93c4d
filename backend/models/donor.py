from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Literal
from datetime import datetime, timedelta, timezone
import uuid
from .utils import UtcDatetime
from .enums import DonorStatus, BloodGroup, EntityType, OrganType

DONATION_COOLDOWN_DAYS = 56

class GeoPoint(BaseModel):
    """GeoJSON point, coordinates ordered [longitude, latitude]."""
    model_config = ConfigDict(frozen=True)
    type: Literal["Point"] = "Point"
    coordinates: List[float]

    @field_validator("coordinates")
    @classmethod
    def _check_coordinates(cls, coords):
        if len(coords) != 2:
            raise ValueError("Invalid coordinates")
        lng, lat = coords
        if not (-180 <= lng <= 180 and -90 <= lat <= 90):
            raise ValueError("Invalid coordinates")
        return coords

    @classmethod
    def of(cls, lng: float, lat: float) -> "GeoPoint":
        return cls(coordinates=[lng, lat])

    @property
    def lng(self) -> float:
        return self.coordinates[0]

    @property
    def lat(self) -> float:
        return self.coordinates[1]

class DirectoryEntity(BaseModel):
    """Hospital or NGO as seen through the read-only directory."""
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    entity_type: EntityType
    name: str
    location: GeoPoint
    is_verified: bool = False

class OrganDonorStatus(BaseModel):
    is_registered: bool = False
    organs: List[OrganType] = []

class Donor(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    full_name: str
    blood_group: BloodGroup
    phone: Optional[str] = None
    email: Optional[str] = None
    location: GeoPoint
    is_verified: bool = True
    donor_status: DonorStatus = DonorStatus.ACTIVE
    last_donation_date: Optional[UtcDatetime] = None
    next_eligible_date: Optional[UtcDatetime] = None
    covid_recovered: bool = False
    organ_donor: OrganDonorStatus = Field(default_factory=OrganDonorStatus)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def eligible_from(self, cooldown_days: int = DONATION_COOLDOWN_DAYS) -> Optional[datetime]:
        if self.next_eligible_date is not None:
            return self.next_eligible_date
        if self.last_donation_date is not None:
            return self.last_donation_date + timedelta(days=cooldown_days)
        return None

    def is_eligible_to_donate(self, now: datetime, cooldown_days: int = DONATION_COOLDOWN_DAYS) -> bool:
        if self.donor_status != DonorStatus.ACTIVE:
            return False
        eligible_from = self.eligible_from(cooldown_days)
        return eligible_from is None or now >= eligible_from

class Candidate(BaseModel):
    """A ranked match returned by the eligibility matcher."""
    id: str
    name: str
    entity_type: EntityType
    distance_m: float
    blood_group: Optional[BloodGroup] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    last_donation_date: Optional[UtcDatetime] = None
