"""
Shared fixtures: a fixed clock, an in-memory directory around one hospital,
and an engine wired to in-memory stores.
"""
from datetime import datetime, timedelta, timezone

import pytest

from config import Settings
from models import (
    BloodRequestCreate, DirectoryEntity, EntityType, GeoPoint, LocationType, ResourceUnitCreate
)
from services import FixedClock, build_engine
from services.directory import MemoryDirectory
from services.stores import MemorySlotRegistry

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

# One degree of latitude is roughly 111 km
HOSPITAL_LNG, HOSPITAL_LAT = 77.2090, 28.6139


def point(km_north: float = 0.0) -> GeoPoint:
    return GeoPoint.of(HOSPITAL_LNG, HOSPITAL_LAT + km_north / 111.2)


def ngo(entity_id: str, km: float, verified: bool = True) -> DirectoryEntity:
    return DirectoryEntity(id=entity_id, entity_type=EntityType.NGO, name=entity_id.upper(),
                           location=point(km), is_verified=verified)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def settings():
    return Settings(match_timeout_s=1.0, notify_timeout_s=1.0)


@pytest.fixture
def directory():
    return MemoryDirectory(entities=[
        DirectoryEntity(id="hosp-1", entity_type=EntityType.HOSPITAL, name="City Hospital",
                        location=point(0), is_verified=True),
        DirectoryEntity(id="hosp-remote", entity_type=EntityType.HOSPITAL, name="Remote Clinic",
                        location=GeoPoint.of(10.0, 10.0), is_verified=True),
        ngo("ngo-a", 5),
        ngo("ngo-b", 11),
        ngo("ngo-far", 33),
        ngo("ngo-unverified", 3, verified=False),
    ])


@pytest.fixture
def slots():
    return MemorySlotRegistry({("fac-1", "slot-1"): {"capacity": 4, "booked": 1}})


@pytest.fixture
def engine(settings, clock, directory, slots):
    return build_engine(settings, clock=clock, directory=directory, slots=slots)


@pytest.fixture
def ledger(engine):
    return engine.ledger


def blood_request(**overrides) -> BloodRequestCreate:
    data = {
        "hospital_id": "hosp-1",
        "required_by": NOW + timedelta(days=2),
        "blood_groups": [{"blood_group": "O-", "units": 2}],
        "urgency_level": "Urgent",
    }
    data.update(overrides)
    return BloodRequestCreate(**data)


def unit_at(entity_id: str, blood_group: str = "O-", days_old: int = 1) -> ResourceUnitCreate:
    return ResourceUnitCreate(
        blood_group=blood_group,
        donation_date=NOW - timedelta(days=days_old),
        location_id=entity_id,
        location_type=LocationType.NGO,
    )


async def stocked_unit(ledger, entity_id: str, blood_group: str = "O-", days_old: int = 1):
    """Receive a unit at ``entity_id`` and release it into stock."""
    unit = await ledger.intake_unit(unit_at(entity_id, blood_group, days_old), "tech-1")
    return await ledger.mark_available(unit.id, "tech-1")
