"""
Eligibility matching: nearby verified NGOs and compatible donors.

Donor blood types are matched by literal equality, not ABO/Rh
compatibility.
"""
import asyncio
from datetime import timedelta
from typing import List, Optional

from pydantic import BaseModel

from logger import get_logger
from models import (
    BloodGroup, Candidate, EntityType, GeoPoint, OrganType, RequestKind, UrgencyLevel
)
from models.donor import DONATION_COOLDOWN_DAYS
from services.clock import Clock
from services.directory import Directory
from services.errors import UpstreamTimeout

logger = get_logger("matcher")

DEFAULT_DONOR_BASE_RADIUS_M = 10000
PLASMA_MIN_GAP_DAYS = 14


class EntityFilter(BaseModel):
    entity_type: EntityType = EntityType.NGO
    # When set, only entities holding non-expired stock of every listed group
    require_stock_of: Optional[List[BloodGroup]] = None


class DonorCriteria(BaseModel):
    kind: RequestKind
    blood_groups: List[BloodGroup]
    organ_type: Optional[OrganType] = None


class MatchResult(BaseModel):
    candidates: List[Candidate] = []
    timed_out: bool = False


class EligibilityMatcher:

    def __init__(
        self,
        directory: Directory,
        ledger=None,
        clock: Optional[Clock] = None,
        timeout_s: float = 5.0,
        donor_base_radius_m: int = DEFAULT_DONOR_BASE_RADIUS_M,
        cooldown_days: int = DONATION_COOLDOWN_DAYS,
        plasma_min_gap_days: int = PLASMA_MIN_GAP_DAYS,
    ):
        self.directory = directory
        self.ledger = ledger
        self.clock = clock or Clock()
        self.timeout_s = timeout_s
        self.donor_base_radius_m = donor_base_radius_m
        self.cooldown_days = cooldown_days
        self.plasma_min_gap_days = plasma_min_gap_days

    async def find_nearby_entities(
        self,
        origin: GeoPoint,
        max_distance_m: float,
        entity_filter: Optional[EntityFilter] = None,
    ) -> MatchResult:
        entity_filter = entity_filter or EntityFilter()
        try:
            candidates = await asyncio.wait_for(
                self._nearby_entities(origin, max_distance_m, entity_filter), timeout=self.timeout_s
            )
        except (asyncio.TimeoutError, UpstreamTimeout):
            logger.warning("Entity matching timed out after %.1fs (radius %dm)",
                           self.timeout_s, max_distance_m)
            return MatchResult(timed_out=True)
        return MatchResult(candidates=candidates)

    async def _nearby_entities(self, origin, max_distance_m, entity_filter) -> List[Candidate]:
        found = await self.directory.nearby_entities(entity_filter.entity_type, origin, max_distance_m)
        candidates = []
        for entity, distance in found:
            if not entity.is_verified:
                continue
            if entity_filter.require_stock_of and not await self._holds_stock(
                entity.id, entity_filter.require_stock_of
            ):
                continue
            candidates.append(Candidate(
                id=entity.id,
                name=entity.name,
                entity_type=entity.entity_type,
                distance_m=distance,
            ))
        return candidates

    async def _holds_stock(self, entity_id: str, blood_groups: List[BloodGroup]) -> bool:
        if self.ledger is None:
            return True
        for blood_group in blood_groups:
            if not await self.ledger.find_available_units(blood_group, entity_id):
                return False
        return True

    def donor_radius_m(self, urgency: UrgencyLevel) -> int:
        return self.donor_base_radius_m * UrgencyLevel(urgency).donor_radius_multiplier

    async def find_compatible_donors(
        self,
        criteria: DonorCriteria,
        origin: GeoPoint,
        urgency: UrgencyLevel,
    ) -> MatchResult:
        radius = self.donor_radius_m(urgency)
        try:
            candidates = await asyncio.wait_for(
                self._compatible_donors(criteria, origin, radius), timeout=self.timeout_s
            )
        except (asyncio.TimeoutError, UpstreamTimeout):
            logger.warning("Donor matching timed out after %.1fs", self.timeout_s)
            return MatchResult(timed_out=True)
        return MatchResult(candidates=candidates)

    async def _compatible_donors(self, criteria, origin, radius) -> List[Candidate]:
        now = self.clock.now()
        plasma_cutoff = now - timedelta(days=self.plasma_min_gap_days)
        found = await self.directory.nearby_donors(origin, radius, criteria.blood_groups)

        candidates = []
        for donor, distance in found:
            if donor.blood_group not in criteria.blood_groups:
                continue
            if not donor.is_verified or not donor.is_eligible_to_donate(now, self.cooldown_days):
                continue
            if criteria.kind == RequestKind.PLASMA:
                if not donor.covid_recovered:
                    continue
                if donor.last_donation_date is not None and donor.last_donation_date >= plasma_cutoff:
                    continue
            if criteria.kind == RequestKind.ORGAN:
                if not donor.organ_donor.is_registered:
                    continue
                if criteria.organ_type and criteria.organ_type not in donor.organ_donor.organs:
                    continue
            candidates.append(Candidate(
                id=donor.id,
                name=donor.full_name,
                entity_type=EntityType.DONOR,
                distance_m=distance,
                blood_group=donor.blood_group,
                phone=donor.phone,
                email=donor.email,
                last_donation_date=donor.last_donation_date,
            ))
        return candidates
