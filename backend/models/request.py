from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, List, Dict, Tuple, Literal, Union, ClassVar, Type, Annotated
from datetime import datetime, timezone
from enum import Enum
import uuid
from .utils import UtcDatetime
from .enums import (
    BloodGroup, RequestKind, UrgencyLevel, BloodRequestStatus, PlasmaRequestStatus,
    OrganRequestStatus, OrganType, AntibodyTiter, TERMINAL_STATUS_VALUES
)

MAX_UNITS_PER_GROUP = 50
MAX_PLASMA_UNITS = 10

class PatientInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[Literal["Male", "Female", "Other"]] = None
    condition: Optional[str] = None
    ward_number: Optional[str] = None
    covid_status: Optional[Literal["Positive", "Negative", "Recovered", "Unknown"]] = None
    weight: Optional[float] = None
    height: Optional[float] = None
    medical_history: List[str] = []
    diagnosis_details: Optional[str] = None
    urgency_score: Optional[int] = Field(default=None, ge=1, le=100)
    confidential: bool = False

    # Identifying fields withheld from tracking views of confidential patients
    CONFIDENTIAL_FIELDS: ClassVar[Tuple[str, ...]] = (
        "name", "ward_number", "medical_history", "diagnosis_details",
    )

    def public_view(self) -> dict:
        data = self.model_dump(mode="json", exclude={"confidential"})
        if self.confidential:
            for field in self.CONFIDENTIAL_FIELDS:
                data.pop(field, None)
        return data

class AssignedUnit(BaseModel):
    model_config = ConfigDict(frozen=True)
    unit_id: str
    assigned_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class ResourceGroupLine(BaseModel):
    blood_group: BloodGroup
    units_requested: int = Field(ge=1, le=MAX_UNITS_PER_GROUP)
    units_fulfilled: int = Field(default=0, ge=0)
    assigned_unit_refs: Tuple[AssignedUnit, ...] = ()

    @model_validator(mode="after")
    def _check_fulfilled(self):
        if self.units_fulfilled > self.units_requested:
            raise ValueError("units_fulfilled cannot exceed units_requested")
        return self

    @property
    def units_outstanding(self) -> int:
        return self.units_requested - self.units_fulfilled

class StatusHistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)
    status: str
    updated_by: str
    notes: Optional[str] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class Reservation(BaseModel):
    blood_group: BloodGroup
    units: int = Field(ge=0)

class AppointmentRef(BaseModel):
    facility_id: str
    slot_id: str

class FulfillmentStatus(BaseModel):
    total_requested: int
    total_fulfilled: int
    percentage_fulfilled: float

class FulfillmentRequestBase(BaseModel):
    """Core shared by blood, plasma and organ requests (one per target NGO)."""
    model_config = ConfigDict(extra="ignore")
    status_enum: ClassVar[Type[Enum]]

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    request_id: str = ""
    batch_id: str
    hospital_id: str
    ngo_id: str
    resource_groups: List[ResourceGroupLine]
    urgency_level: UrgencyLevel = UrgencyLevel.STANDARD
    priority: int = Field(default=3, ge=1, le=5)
    required_by: UtcDatetime
    status_history: Tuple[StatusHistoryEntry, ...] = ()
    reservations: List[Reservation] = []
    appointment: Optional[AppointmentRef] = None
    patient_info: PatientInfo = Field(default_factory=PatientInfo)
    request_notes: Optional[str] = None
    version: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _derive_priority(self):
        self.priority = self.urgency_level.priority
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.value in TERMINAL_STATUS_VALUES

    def group_line(self, blood_group: BloodGroup) -> Optional[ResourceGroupLine]:
        for line in self.resource_groups:
            if line.blood_group == blood_group:
                return line
        return None

    def reserved_units(self, blood_group: BloodGroup) -> int:
        return sum(r.units for r in self.reservations if r.blood_group == blood_group)

    def append_history(self, entry: StatusHistoryEntry) -> None:
        self.status_history = self.status_history + (entry,)

    def calculate_fulfillment_status(self) -> FulfillmentStatus:
        total_requested = sum(line.units_requested for line in self.resource_groups)
        total_fulfilled = sum(line.units_fulfilled for line in self.resource_groups)
        percentage = (total_fulfilled / total_requested) * 100 if total_requested else 0.0
        return FulfillmentStatus(
            total_requested=total_requested,
            total_fulfilled=total_fulfilled,
            percentage_fulfilled=percentage,
        )

    def tracking_view(self) -> dict:
        data = self.model_dump(mode="json", exclude={"patient_info", "version"})
        data["patient_info"] = self.patient_info.public_view()
        return data

class BloodRequest(FulfillmentRequestBase):
    status_enum: ClassVar[Type[Enum]] = BloodRequestStatus
    kind: Literal[RequestKind.BLOOD] = RequestKind.BLOOD
    status: BloodRequestStatus = BloodRequestStatus.PENDING

class PlasmaRequest(FulfillmentRequestBase):
    status_enum: ClassVar[Type[Enum]] = PlasmaRequestStatus
    kind: Literal[RequestKind.PLASMA] = RequestKind.PLASMA
    status: PlasmaRequestStatus = PlasmaRequestStatus.PENDING
    covid_recovered: bool = False
    antibody_titer: AntibodyTiter = AntibodyTiter.UNKNOWN

class OrganRequest(FulfillmentRequestBase):
    status_enum: ClassVar[Type[Enum]] = OrganRequestStatus
    kind: Literal[RequestKind.ORGAN] = RequestKind.ORGAN
    status: OrganRequestStatus = OrganRequestStatus.REGISTERED
    organ_type: OrganType

FulfillmentRequest = Annotated[
    Union[BloodRequest, PlasmaRequest, OrganRequest], Field(discriminator="kind")
]

REQUEST_MODELS = {
    RequestKind.BLOOD: BloodRequest,
    RequestKind.PLASMA: PlasmaRequest,
    RequestKind.ORGAN: OrganRequest,
}

def load_request(doc: dict) -> FulfillmentRequestBase:
    """Rebuild the concrete request model from a stored document."""
    doc = dict(doc)
    doc.pop("_id", None)
    return REQUEST_MODELS[RequestKind(doc["kind"])].model_validate(doc)

# ============ CREATION PAYLOADS ============

class BloodGroupUnits(BaseModel):
    blood_group: BloodGroup
    units: int = Field(ge=1, le=MAX_UNITS_PER_GROUP)

class RequestCreateBase(BaseModel):
    kind: ClassVar[RequestKind]
    hospital_id: str
    required_by: UtcDatetime
    patient_info: PatientInfo = Field(default_factory=PatientInfo)
    request_notes: Optional[str] = None
    appointment: Optional[AppointmentRef] = None
    max_distance_m: Optional[int] = Field(default=None, gt=0)

    def resource_groups(self) -> List[ResourceGroupLine]:
        raise NotImplementedError

    def get_urgency(self) -> UrgencyLevel:
        raise NotImplementedError

    def payload_fields(self) -> dict:
        """Kind-specific fields copied onto every fan-out record."""
        return {}

    def notification_summary(self) -> dict:
        return {
            "blood_groups": [line.blood_group.value for line in self.resource_groups()],
            "urgency_level": self.get_urgency().value,
        }

class BloodRequestCreate(RequestCreateBase):
    kind: ClassVar[RequestKind] = RequestKind.BLOOD
    blood_groups: List[BloodGroupUnits]
    urgency_level: UrgencyLevel = UrgencyLevel.STANDARD

    def resource_groups(self) -> List[ResourceGroupLine]:
        return [
            ResourceGroupLine(blood_group=bg.blood_group, units_requested=bg.units)
            for bg in self.blood_groups
        ]

    def get_urgency(self) -> UrgencyLevel:
        return self.urgency_level

class PlasmaRequestCreate(RequestCreateBase):
    kind: ClassVar[RequestKind] = RequestKind.PLASMA
    blood_group: BloodGroup
    units: int = Field(ge=1, le=MAX_PLASMA_UNITS)
    urgency: UrgencyLevel = UrgencyLevel.STANDARD
    covid_recovered: bool = False
    antibody_titer: AntibodyTiter = AntibodyTiter.UNKNOWN

    def resource_groups(self) -> List[ResourceGroupLine]:
        return [ResourceGroupLine(blood_group=self.blood_group, units_requested=self.units)]

    def get_urgency(self) -> UrgencyLevel:
        return self.urgency

    def payload_fields(self) -> dict:
        return {"covid_recovered": self.covid_recovered, "antibody_titer": self.antibody_titer}

class OrganRequestCreate(RequestCreateBase):
    kind: ClassVar[RequestKind] = RequestKind.ORGAN
    organ_type: OrganType
    blood_group: BloodGroup
    urgency_level: UrgencyLevel = UrgencyLevel.URGENT

    def resource_groups(self) -> List[ResourceGroupLine]:
        return [ResourceGroupLine(blood_group=self.blood_group, units_requested=1)]

    def get_urgency(self) -> UrgencyLevel:
        return self.urgency_level

    def payload_fields(self) -> dict:
        return {"organ_type": self.organ_type}

    def notification_summary(self) -> dict:
        summary = super().notification_summary()
        summary["organ_type"] = self.organ_type.value
        summary["urgency_score"] = self.patient_info.urgency_score
        return summary

class StatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = None
    # Units to attach when moving to Assigned, keyed by blood group
    assignments: Optional[Dict[BloodGroup, List[str]]] = None

class CancelRequest(BaseModel):
    reason: Optional[str] = None
