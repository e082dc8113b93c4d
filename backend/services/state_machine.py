"""
Request lifecycle.

Transitions on one request are serialized by a per-request lock and saved
with an optimistic version check, so a replica racing on the same request
loses with ``ConcurrentModification`` instead of overwriting history.
Side effects applied before a failed save are compensated in reverse order.

Cancelling fan-out copies that share an appointment slot also takes a
batch lock, so exactly one of them frees the slot. That lock is per
process: replicas cancelling sibling copies at the same instant can each
still see the other open and leave the slot booked.
"""
from contextlib import AsyncExitStack
from typing import Awaitable, Callable, Dict, List, Optional

from logger import get_logger
from models import (
    BloodGroup, FulfillmentRequestBase, Reservation, StatusHistoryEntry
)
from models.enums import ASSIGNED, CANCELLED
from models.request import AssignedUnit
from services.clock import Clock
from services.errors import (
    ConcurrentModification, InvalidTransition, NotFound, TerminalStateViolation, ValidationError
)
from services.locks import KeyedLocks
from services.stores import RequestStore, SlotRegistry

logger = get_logger("state_machine")

Undo = Callable[[], Awaitable[object]]


class RequestStateMachine:

    def __init__(
        self,
        requests: RequestStore,
        ledger,
        slots: Optional[SlotRegistry] = None,
        clock: Optional[Clock] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self.requests = requests
        self.ledger = ledger
        self.slots = slots
        self.clock = clock or Clock()
        self.locks = locks or KeyedLocks()

    async def load(self, request_id: str) -> FulfillmentRequestBase:
        request = await self.requests.get(request_id)
        if request is None:
            raise NotFound(f"Request {request_id} not found")
        return request

    async def transition(
        self,
        request_id: str,
        new_status: str,
        actor: str,
        notes: Optional[str] = None,
        assignments: Optional[Dict[BloodGroup, List[str]]] = None,
    ) -> FulfillmentRequestBase:
        canonical_id = (await self.load(request_id)).id
        async with self.locks.hold(canonical_id):
            request = await self.load(canonical_id)
            try:
                status = request.status_enum(new_status)
            except ValueError:
                raise InvalidTransition(
                    f"Invalid status '{new_status}' for {request.kind.value} request",
                    details={"allowed": [s.value for s in request.status_enum]},
                )
            if request.is_terminal:
                raise TerminalStateViolation(
                    f"Request {request.request_id} is {request.status.value}; no further transitions",
                    details={"status": request.status.value},
                )

            previous = request.status
            now = self.clock.now()
            request.status = status
            request.append_history(StatusHistoryEntry(
                status=status.value, updated_by=actor, notes=notes, updated_at=now
            ))
            request.updated_at = now

            undo: List[Undo] = []
            async with AsyncExitStack() as stack:
                if status.value == CANCELLED and request.appointment:
                    # Siblings sharing the slot decide who frees it under one batch lock
                    await stack.enter_async_context(self.locks.hold(("batch", request.batch_id)))
                try:
                    if status.value == CANCELLED:
                        await self._on_cancelled(request, actor, undo)
                    elif status.value == ASSIGNED:
                        await self._on_assigned(request, assignments or {}, actor, undo)
                    await self._save(request)
                except Exception:
                    await self._compensate(request, undo)
                    raise

            logger.info("Request %s: %s -> %s by %s",
                        request.request_id, previous.value, status.value, actor)
            return request

    async def reserve_for_request(
        self, request_id: str, blood_group: BloodGroup, units: int, actor: str
    ) -> FulfillmentRequestBase:
        """Hold stock at the request's target NGO against one of its lines."""
        canonical_id = (await self.load(request_id)).id
        async with self.locks.hold(canonical_id):
            request = await self.load(canonical_id)
            if request.is_terminal:
                raise TerminalStateViolation(
                    f"Request {request.request_id} is {request.status.value}; cannot reserve"
                )
            blood_group = BloodGroup(blood_group)
            line = request.group_line(blood_group)
            if line is None:
                raise ValidationError(f"Request has no {blood_group.value} line")
            if request.reserved_units(blood_group) + units > line.units_outstanding:
                raise ValidationError(
                    f"Reservation would exceed the {line.units_outstanding} outstanding "
                    f"{blood_group.value} units",
                    details={"already_reserved": request.reserved_units(blood_group)},
                )

            await self.ledger.reserve(request.ngo_id, blood_group, units,
                                      reason=f"reserved for {request.request_id}",
                                      actor=actor, request_id=request.id)
            self._add_reservation(request, blood_group, units)
            request.updated_at = self.clock.now()
            try:
                await self._save(request)
            except ConcurrentModification:
                await self.ledger.release(request.ngo_id, blood_group, units,
                                          reason=f"reservation for {request.request_id} rolled back",
                                          actor=actor, request_id=request.id)
                raise
            return request

    # ============ SIDE EFFECTS ============

    async def _on_cancelled(self, request: FulfillmentRequestBase, actor: str, undo: List[Undo]):
        for reservation in request.reservations:
            if reservation.units <= 0:
                continue
            group, units = reservation.blood_group, reservation.units
            await self.ledger.release(request.ngo_id, group, units,
                                      reason=f"{request.request_id} cancelled",
                                      actor=actor, request_id=request.id)
            undo.append(lambda g=group, u=units: self.ledger.reserve(
                request.ngo_id, g, u, reason=f"cancellation of {request.request_id} rolled back",
                actor=actor, request_id=request.id))
        request.reservations = []

        if request.appointment and self.slots is not None:
            slot = request.appointment
            # Fan-out copies share the booking; it is freed with the last open copy
            siblings = await self.requests.list_batch(request.batch_id)
            if any(s.id != request.id and not s.is_terminal and s.appointment == slot for s in siblings):
                return
            released = await self.slots.release_slot(slot.facility_id, slot.slot_id)
            if released:
                undo.append(lambda: self.slots.reserve_slot(slot.facility_id, slot.slot_id))
            else:
                logger.warning("Slot %s at %s was not booked when cancelling %s",
                               slot.slot_id, slot.facility_id, request.request_id)

    async def _on_assigned(
        self,
        request: FulfillmentRequestBase,
        assignments: Dict[BloodGroup, List[str]],
        actor: str,
        undo: List[Undo],
    ):
        if not assignments or not any(assignments.values()):
            raise ValidationError("Assigning a request requires at least one unit")

        # Validate every line before touching the ledger
        for group, unit_ids in assignments.items():
            group = BloodGroup(group)
            line = request.group_line(group)
            if line is None:
                raise ValidationError(f"Request has no {group.value} line")
            if len(set(unit_ids)) != len(unit_ids):
                raise ValidationError(f"Duplicate units in {group.value} assignment")
            if len(unit_ids) > line.units_outstanding:
                raise ValidationError(
                    f"Assigning {len(unit_ids)} {group.value} units exceeds the "
                    f"{line.units_outstanding} outstanding",
                    details={"units_requested": line.units_requested,
                             "units_fulfilled": line.units_fulfilled},
                )

        now = self.clock.now()
        for group, unit_ids in assignments.items():
            group = BloodGroup(group)
            if not unit_ids:
                continue
            count = len(unit_ids)
            from_reserved = min(count, request.reserved_units(group))
            from_available = count - from_reserved

            if from_reserved:
                await self.ledger.consume_reserved(request.ngo_id, group, from_reserved,
                                                   reason=f"assigned to {request.request_id}",
                                                   actor=actor, request_id=request.id)
                undo.append(lambda g=group, u=from_reserved: self.ledger.restore_reserved(
                    request.ngo_id, g, u, actor=actor, request_id=request.id))
                self._add_reservation(request, group, -from_reserved)
            if from_available:
                await self.ledger.adjust(request.ngo_id, group, -from_available,
                                         reason=f"assigned to {request.request_id}",
                                         actor=actor, request_id=request.id)
                undo.append(lambda g=group, u=from_available: self.ledger.adjust(
                    request.ngo_id, g, u, reason=f"assignment to {request.request_id} rolled back",
                    actor=actor, request_id=request.id))

            for unit_id in unit_ids:
                await self.ledger.assign_unit(unit_id, request.id, request.ngo_id, group)
                undo.append(lambda uid=unit_id: self.ledger.revert_assignment(uid))

            line = request.group_line(group)
            line.assigned_unit_refs = line.assigned_unit_refs + tuple(
                AssignedUnit(unit_id=uid, assigned_at=now) for uid in unit_ids
            )
            line.units_fulfilled += count

    # ============ HELPERS ============

    @staticmethod
    def _add_reservation(request: FulfillmentRequestBase, blood_group: BloodGroup, units: int):
        for reservation in request.reservations:
            if reservation.blood_group == blood_group:
                reservation.units += units
                break
        else:
            request.reservations.append(Reservation(blood_group=blood_group, units=units))
        request.reservations = [r for r in request.reservations if r.units > 0]

    async def _save(self, request: FulfillmentRequestBase) -> None:
        if not await self.requests.save(request, request.version):
            raise ConcurrentModification(f"Request {request.request_id} was modified concurrently")

    async def _compensate(self, request: FulfillmentRequestBase, undo: List[Undo]) -> None:
        for step in reversed(undo):
            try:
                await step()
            except Exception:
                logger.exception("Compensation step failed for request %s", request.request_id)
