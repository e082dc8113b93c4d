import asyncio

import pytest

from models import BloodRequest, OrganRequestCreate, UnitStatus
from services import (
    InvalidTransition, NotFound, TerminalStateViolation, ValidationError
)

from conftest import NOW, blood_request, stocked_unit


async def copy_for(engine, ngo_id, attrs=None):
    result = await engine.create_request(attrs or blood_request(), "doctor-1")
    return next(r for r in result.created if r.ngo_id == ngo_id), result


async def test_cancel_releases_reservation(engine, ledger):
    await ledger.adjust("ngo-a", "O-", 3, "stock")
    request, _ = await copy_for(engine, "ngo-a")
    request = await engine.reserve_for_request(request.id, "O-", 1, "ngo-staff")
    assert (await ledger.get_record("ngo-a", "O-")).reserved == 1
    history_before = len(request.status_history)

    cancelled = await engine.cancel_request(request.id, "doctor-1", "patient transferred")

    record = await ledger.get_record("ngo-a", "O-")
    assert (record.available, record.reserved) == (3, 0)
    assert cancelled.reservations == []
    assert len(cancelled.status_history) == history_before + 1
    assert cancelled.status_history[-1].status == "Cancelled"
    assert cancelled.status_history[-1].notes == "patient transferred"


async def test_no_transition_out_of_terminal_state(engine):
    request, _ = await copy_for(engine, "ngo-a")
    await engine.update_status(request.id, "Rejected", "ngo-staff")

    with pytest.raises(TerminalStateViolation):
        await engine.update_status(request.id, "Accepted", "ngo-staff")

    stored = await engine.state_machine.load(request.id)
    assert stored.status.value == "Rejected"
    assert len(stored.status_history) == 2


async def test_unknown_status_is_invalid(engine):
    request, _ = await copy_for(engine, "ngo-a")

    with pytest.raises(InvalidTransition):
        await engine.update_status(request.id, "Shipped", "ngo-staff")


async def test_status_enum_is_per_kind(engine):
    attrs = OrganRequestCreate(hospital_id="hosp-1", required_by=blood_request().required_by,
                               organ_type="Kidney", blood_group="B+")
    request, _ = await copy_for(engine, "ngo-a", attrs)

    with pytest.raises(InvalidTransition):
        await engine.update_status(request.id, "En Route", "ngo-staff")

    updated = await engine.update_status(request.id, "Matching", "ngo-staff")
    assert updated.status.value == "Matching"


async def test_lookup_by_human_readable_id(engine):
    request, _ = await copy_for(engine, "ngo-b")

    updated = await engine.update_status(request.request_id, "Accepted", "ngo-staff")

    assert updated.id == request.id


async def test_unknown_request(engine):
    with pytest.raises(NotFound):
        await engine.update_status("BR-00000000-NOPE", "Accepted", "ngo-staff")


async def test_assign_consumes_reservation_then_stock(engine, ledger):
    units = [await stocked_unit(ledger, "ngo-a") for _ in range(3)]
    request, _ = await copy_for(engine, "ngo-a")
    await engine.reserve_for_request(request.id, "O-", 1, "ngo-staff")

    assigned = await engine.update_status(
        request.id, "Assigned", "ngo-staff", assignments={"O-": [units[0].id, units[1].id]}
    )

    line = assigned.group_line("O-")
    assert line.units_fulfilled == 2
    assert [ref.unit_id for ref in line.assigned_unit_refs] == [units[0].id, units[1].id]
    assert assigned.reservations == []
    record = await ledger.get_record("ngo-a", "O-")
    assert (record.available, record.reserved) == (1, 0)
    unit = await ledger.get_unit(units[0].id)
    assert unit.status == UnitStatus.ASSIGNED
    assert unit.assigned_request_id == request.id
    assert assigned.calculate_fulfillment_status().percentage_fulfilled == 100.0


async def test_assign_beyond_requested_is_rejected(engine, ledger):
    units = [await stocked_unit(ledger, "ngo-a") for _ in range(3)]
    request, _ = await copy_for(engine, "ngo-a")

    with pytest.raises(ValidationError):
        await engine.update_status(request.id, "Assigned", "ngo-staff",
                                   assignments={"O-": [u.id for u in units]})

    assert (await ledger.get_record("ngo-a", "O-")).available == 3
    stored = await engine.state_machine.load(request.id)
    assert stored.status.value == "Pending"


async def test_assign_requires_units(engine):
    request, _ = await copy_for(engine, "ngo-a")

    with pytest.raises(ValidationError):
        await engine.update_status(request.id, "Assigned", "ngo-staff")


async def test_failed_assignment_is_compensated(engine, ledger):
    unit = await stocked_unit(ledger, "ngo-a")
    await ledger.adjust("ngo-a", "O-", 1, "stock")
    request, _ = await copy_for(engine, "ngo-a")

    with pytest.raises(NotFound):
        await engine.update_status(request.id, "Assigned", "ngo-staff",
                                   assignments={"O-": [unit.id, "missing-unit"]})

    assert (await ledger.get_record("ngo-a", "O-")).available == 2
    assert (await ledger.get_unit(unit.id)).status == UnitStatus.AVAILABLE
    stored = await engine.state_machine.load(request.id)
    assert stored.status.value == "Pending"
    assert stored.group_line("O-").units_fulfilled == 0


async def test_reservation_capped_by_outstanding_units(engine, ledger):
    await ledger.adjust("ngo-a", "O-", 5, "stock")
    request, _ = await copy_for(engine, "ngo-a")

    with pytest.raises(ValidationError):
        await engine.reserve_for_request(request.id, "O-", 3, "ngo-staff")
    assert (await ledger.get_record("ngo-a", "O-")).reserved == 0


async def test_slot_released_with_last_open_copy(engine, slots):
    attrs = blood_request(appointment={"facility_id": "fac-1", "slot_id": "slot-1"})
    first, result = await copy_for(engine, "ngo-a", attrs)
    second = next(r for r in result.created if r.id != first.id)

    await engine.cancel_request(first.id, "doctor-1")
    assert slots.slots[("fac-1", "slot-1")]["booked"] == 1

    await engine.cancel_request(second.id, "doctor-1")
    assert slots.slots[("fac-1", "slot-1")]["booked"] == 0


async def test_stale_save_is_refused(engine):
    request, _ = await copy_for(engine, "ngo-a")
    stale = await engine.state_machine.load(request.id)
    await engine.update_status(request.id, "Accepted", "ngo-staff")

    assert not await engine.state_machine.requests.save(stale, stale.version)


def test_fulfillment_status_with_nothing_requested():
    request = BloodRequest(batch_id="BATCH-1", hospital_id="hosp-1", ngo_id="ngo-a",
                           resource_groups=[], required_by=NOW)

    status = request.calculate_fulfillment_status()

    assert (status.total_requested, status.percentage_fulfilled) == (0, 0)


@pytest.fixture
def interleaving_reads(engine, monkeypatch):
    """Make every request read yield to the loop so concurrent calls interleave."""
    store = engine.state_machine.requests
    get, list_batch = store.get, store.list_batch

    async def yielding_get(request_id):
        await asyncio.sleep(0)
        return await get(request_id)

    async def yielding_list_batch(batch_id):
        await asyncio.sleep(0)
        return await list_batch(batch_id)

    monkeypatch.setattr(store, "get", yielding_get)
    monkeypatch.setattr(store, "list_batch", yielding_list_batch)
    return store


async def test_concurrent_transitions_are_serialized(engine, interleaving_reads):
    request, _ = await copy_for(engine, "ngo-a")
    steps = ["Accepted", "Processing", "Accepted", "Processing"]

    results = await asyncio.gather(
        *(engine.update_status(request.id, s, "ngo-staff") for s in steps),
        return_exceptions=True,
    )

    assert not [r for r in results if isinstance(r, Exception)]
    stored = await engine.state_machine.load(request.id)
    assert [h.status for h in stored.status_history] == ["Pending"] + steps
    assert stored.version == len(steps)


async def test_concurrent_cancel_and_accept_lose_no_update(engine, interleaving_reads):
    request, _ = await copy_for(engine, "ngo-a")

    results = await asyncio.gather(
        engine.cancel_request(request.id, "doctor-1"),
        engine.update_status(request.id, "Accepted", "ngo-staff"),
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert all(isinstance(e, TerminalStateViolation) for e in failed)
    stored = await engine.state_machine.load(request.id)
    assert len(stored.status_history) == 1 + len(succeeded)
    assert stored.version == len(succeeded)
    assert stored.status.value == "Cancelled"


async def test_concurrent_sibling_cancellations_free_slot_once(engine, slots, interleaving_reads):
    attrs = blood_request(appointment={"facility_id": "fac-1", "slot_id": "slot-1"})
    first, result = await copy_for(engine, "ngo-a", attrs)
    second = next(r for r in result.created if r.id != first.id)

    await asyncio.gather(
        engine.cancel_request(first.id, "doctor-1"),
        engine.cancel_request(second.id, "doctor-1"),
    )

    assert slots.slots[("fac-1", "slot-1")]["booked"] == 0
