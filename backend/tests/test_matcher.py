import asyncio
from datetime import timedelta

import pytest

from models import Donor, EntityType, OrganDonorStatus, RequestKind, UrgencyLevel
from services import DonorCriteria, EligibilityMatcher, EntityFilter
from services.directory import MemoryDirectory

from conftest import NOW, point, stocked_unit


def donor(donor_id: str, blood_group: str = "O-", km: float = 2, last_donation_days=None, **extra) -> Donor:
    return Donor(
        id=donor_id,
        full_name=donor_id.title(),
        blood_group=blood_group,
        location=point(km),
        last_donation_date=NOW - timedelta(days=last_donation_days) if last_donation_days else None,
        **extra,
    )


@pytest.fixture
def matcher(engine):
    return engine.matcher


async def test_nearby_entities_verified_only_nearest_first(matcher):
    result = await matcher.find_nearby_entities(point(0), 20000, EntityFilter(entity_type=EntityType.NGO))

    assert not result.timed_out
    assert [c.id for c in result.candidates] == ["ngo-a", "ngo-b"]
    assert result.candidates[0].distance_m < result.candidates[1].distance_m


async def test_nearby_entities_empty_when_nothing_in_range(matcher):
    result = await matcher.find_nearby_entities(point(0), 1000)
    assert result.candidates == []
    assert not result.timed_out


async def test_nearby_entities_stock_filter(matcher, ledger):
    await stocked_unit(ledger, "ngo-b", "AB+")

    result = await matcher.find_nearby_entities(
        point(0), 50000, EntityFilter(require_stock_of=["AB+"])
    )

    assert [c.id for c in result.candidates] == ["ngo-b"]


async def test_donor_cooldown(matcher, directory):
    directory.add(donor("recent", last_donation_days=40))
    directory.add(donor("rested", last_donation_days=60))
    directory.add(donor("first-timer"))

    result = await matcher.find_compatible_donors(
        DonorCriteria(kind=RequestKind.BLOOD, blood_groups=["O-"]), point(0), UrgencyLevel.PLANNED
    )

    assert {c.id for c in result.candidates} == {"rested", "first-timer"}


async def test_donor_blood_type_is_literal_match(matcher, directory):
    directory.add(donor("o-neg", "O-"))
    directory.add(donor("o-pos", "O+"))

    result = await matcher.find_compatible_donors(
        DonorCriteria(kind=RequestKind.BLOOD, blood_groups=["O-"]), point(0), UrgencyLevel.PLANNED
    )

    assert [c.id for c in result.candidates] == ["o-neg"]


async def test_deferred_donor_excluded(matcher, directory):
    directory.add(donor("deferred", donor_status="Temporary Deferral"))

    result = await matcher.find_compatible_donors(
        DonorCriteria(kind=RequestKind.BLOOD, blood_groups=["O-"]), point(0), UrgencyLevel.EMERGENCY
    )

    assert result.candidates == []


@pytest.mark.parametrize("urgency,expected", [
    (UrgencyLevel.PLANNED, 10000),
    (UrgencyLevel.STANDARD, 20000),
    (UrgencyLevel.URGENT, 30000),
    (UrgencyLevel.EMERGENCY, 50000),
])
def test_donor_radius_scales_with_urgency(matcher, urgency, expected):
    assert matcher.donor_radius_m(urgency) == expected


async def test_donor_search_widens_with_urgency(matcher, directory):
    directory.add(donor("distant", km=25))
    criteria = DonorCriteria(kind=RequestKind.BLOOD, blood_groups=["O-"])

    standard = await matcher.find_compatible_donors(criteria, point(0), UrgencyLevel.STANDARD)
    urgent = await matcher.find_compatible_donors(criteria, point(0), UrgencyLevel.URGENT)

    assert standard.candidates == []
    assert [c.id for c in urgent.candidates] == ["distant"]


async def test_plasma_donor_rules(matcher, directory):
    directory.add(donor("recovered", covid_recovered=True))
    directory.add(donor("never-infected"))
    # Cleared early by a clinician, but still inside the plasma gap
    directory.add(donor("too-soon", covid_recovered=True, last_donation_days=10,
                        next_eligible_date=NOW - timedelta(days=1)))

    result = await matcher.find_compatible_donors(
        DonorCriteria(kind=RequestKind.PLASMA, blood_groups=["O-"]), point(0), UrgencyLevel.URGENT
    )

    assert [c.id for c in result.candidates] == ["recovered"]


async def test_organ_donor_rules(matcher, directory):
    directory.add(donor("kidney", organ_donor=OrganDonorStatus(is_registered=True, organs=["Kidney"])))
    directory.add(donor("liver", organ_donor=OrganDonorStatus(is_registered=True, organs=["Liver"])))
    directory.add(donor("unregistered"))

    result = await matcher.find_compatible_donors(
        DonorCriteria(kind=RequestKind.ORGAN, blood_groups=["O-"], organ_type="Kidney"),
        point(0), UrgencyLevel.URGENT,
    )

    assert [c.id for c in result.candidates] == ["kidney"]


class SlowDirectory(MemoryDirectory):

    async def nearby_entities(self, entity_type, origin, max_distance_m):
        await asyncio.sleep(1)
        return await super().nearby_entities(entity_type, origin, max_distance_m)


async def test_matching_timeout_is_flagged(clock):
    matcher = EligibilityMatcher(SlowDirectory(), clock=clock, timeout_s=0.01)

    result = await matcher.find_nearby_entities(point(0), 20000)

    assert result.timed_out
    assert result.candidates == []
