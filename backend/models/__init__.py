from .enums import (
    BloodGroup, UnitStatus, LocationType, QualityCheckType, QualityCheckResult,
    EntityType, DonorStatus, RequestKind, UrgencyLevel, BloodRequestStatus,
    PlasmaRequestStatus, OrganRequestStatus, OrganType, AntibodyTiter, NotificationType
)
from .blood_unit import (
    ResourceUnit, ResourceUnitCreate, UnitLocation, TransferRecord, TransferCreate,
    QualityCheck, QualityCheckCreate
)
from .inventory import (
    InventoryRecord, InventoryMovement, Reconciliation, AdjustmentCreate, ReservationCreate
)
from .donor import GeoPoint, DirectoryEntity, Donor, OrganDonorStatus, Candidate
from .request import (
    PatientInfo, ResourceGroupLine, StatusHistoryEntry, Reservation, AppointmentRef,
    FulfillmentStatus, FulfillmentRequestBase, BloodRequest, PlasmaRequest, OrganRequest,
    FulfillmentRequest, load_request, BloodGroupUnits, RequestCreateBase,
    BloodRequestCreate, PlasmaRequestCreate, OrganRequestCreate, StatusUpdate, CancelRequest
)
from .notification import NotificationJob
from .audit import ActivityLog, ActivityType
