from enum import Enum


class BloodGroup(str, Enum):
    A_POSITIVE = "A+"
    A_NEGATIVE = "A-"
    B_POSITIVE = "B+"
    B_NEGATIVE = "B-"
    AB_POSITIVE = "AB+"
    AB_NEGATIVE = "AB-"
    O_POSITIVE = "O+"
    O_NEGATIVE = "O-"

class UnitStatus(str, Enum):
    PROCESSING = "processing"
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    USED = "used"
    EXPIRED = "expired"
    DISCARDED = "discarded"

class LocationType(str, Enum):
    NGO = "NGO"
    CENTER = "Center"
    HOSPITAL = "Hospital"

class QualityCheckType(str, Enum):
    VISUAL = "visual"
    SEROLOGICAL = "serological"
    COMPATIBILITY = "compatibility"

class QualityCheckResult(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    PENDING = "pending"

class EntityType(str, Enum):
    HOSPITAL = "hospital"
    NGO = "ngo"
    DONOR = "donor"

class DonorStatus(str, Enum):
    ACTIVE = "Active"
    TEMPORARY_DEFERRAL = "Temporary Deferral"
    PERMANENT_DEFERRAL = "Permanent Deferral"
    INACTIVE = "Inactive"

class RequestKind(str, Enum):
    BLOOD = "blood"
    PLASMA = "plasma"
    ORGAN = "organ"

class UrgencyLevel(str, Enum):
    """Blood requests use Emergency..Planned, plasma requests Critical..Low."""
    EMERGENCY = "Emergency"
    URGENT = "Urgent"
    STANDARD = "Standard"
    PLANNED = "Planned"

    @classmethod
    def _missing_(cls, value):
        aliases = {
            "critical": cls.EMERGENCY,
            "emergency": cls.EMERGENCY,
            "high": cls.URGENT,
            "urgent": cls.URGENT,
            "medium": cls.STANDARD,
            "standard": cls.STANDARD,
            "low": cls.PLANNED,
            "planned": cls.PLANNED,
        }
        if isinstance(value, str):
            return aliases.get(value.strip().lower())
        return None

    @property
    def priority(self) -> int:
        return URGENCY_PRIORITY[self]

    @property
    def donor_radius_multiplier(self) -> int:
        return URGENCY_RADIUS_MULTIPLIER[self]

URGENCY_PRIORITY = {
    UrgencyLevel.EMERGENCY: 1,
    UrgencyLevel.URGENT: 2,
    UrgencyLevel.STANDARD: 3,
    UrgencyLevel.PLANNED: 4,
}

URGENCY_RADIUS_MULTIPLIER = {
    UrgencyLevel.PLANNED: 1,
    UrgencyLevel.STANDARD: 2,
    UrgencyLevel.URGENT: 3,
    UrgencyLevel.EMERGENCY: 5,
}

# ============ REQUEST STATUSES (closed per kind) ============

class BloodRequestStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    PROCESSING = "Processing"
    ASSIGNED = "Assigned"
    EN_ROUTE = "En Route"
    DELIVERED = "Delivered"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    REJECTED = "Rejected"

class PlasmaRequestStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    PROCESSING = "Processing"
    ASSIGNED = "Assigned"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    REJECTED = "Rejected"

class OrganRequestStatus(str, Enum):
    REGISTERED = "Registered"
    MATCHING = "Matching"
    MATCHED = "Matched"
    SCHEDULED = "Scheduled"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    REJECTED = "Rejected"

INITIAL_STATUS = {
    RequestKind.BLOOD: BloodRequestStatus.PENDING,
    RequestKind.PLASMA: PlasmaRequestStatus.PENDING,
    RequestKind.ORGAN: OrganRequestStatus.REGISTERED,
}

TERMINAL_STATUS_VALUES = frozenset({"Completed", "Cancelled", "Rejected"})
CANCELLED = "Cancelled"
ASSIGNED = "Assigned"

class OrganType(str, Enum):
    KIDNEY = "Kidney"
    LIVER = "Liver"
    HEART = "Heart"
    LUNGS = "Lungs"
    PANCREAS = "Pancreas"
    CORNEAS = "Corneas"

class AntibodyTiter(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    UNKNOWN = "Unknown"

class NotificationType(str, Enum):
    URGENT_BLOOD_REQUEST = "URGENT_BLOOD_REQUEST"
    URGENT_PLASMA_REQUEST = "URGENT_PLASMA_REQUEST"
    URGENT_ORGAN_REQUEST = "URGENT_ORGAN_REQUEST"
    REQUEST_STATUS_UPDATE = "REQUEST_STATUS_UPDATE"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"

FANOUT_NOTIFICATION = {
    RequestKind.BLOOD: NotificationType.URGENT_BLOOD_REQUEST,
    RequestKind.PLASMA: NotificationType.URGENT_PLASMA_REQUEST,
    RequestKind.ORGAN: NotificationType.URGENT_ORGAN_REQUEST,
}
