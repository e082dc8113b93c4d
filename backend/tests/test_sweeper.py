from datetime import timedelta

from services import ExpirySweeper

from conftest import stocked_unit


async def test_run_once_expires_and_reconciles(ledger, clock):
    unit = await stocked_unit(ledger, "ngo-a", days_old=41)
    clock.advance(timedelta(days=2))
    sweeper = ExpirySweeper(ledger, interval_s=60, reconcile=True)

    outcome = await sweeper.run_once()

    assert outcome["expired"] == [unit.id]
    assert [r.drift for r in outcome["reconciled"]] == [1]
    assert (await ledger.get_record("ngo-a", "O-")).available == 0


async def test_start_and_stop(ledger):
    sweeper = ExpirySweeper(ledger, interval_s=60)

    sweeper.start()
    await sweeper.stop()

    assert sweeper._task is None


async def test_reserved_expired_stock_does_not_stop_reconciliation(ledger, clock):
    for _ in range(2):
        await stocked_unit(ledger, "ngo-a")
    await ledger.reserve("ngo-a", "O-", 2)
    await stocked_unit(ledger, "ngo-b")
    clock.advance(timedelta(days=45))
    sweeper = ExpirySweeper(ledger, reconcile=True)

    outcome = await sweeper.run_once()

    assert len(outcome["expired"]) == 3
    assert [(r.entity_id, r.drift, r.unapplied) for r in outcome["reconciled"]] == [
        ("ngo-a", 2, 2), ("ngo-b", 1, 0)
    ]
    assert (await ledger.get_record("ngo-b", "O-")).available == 0


async def test_failing_key_is_skipped(ledger, clock, monkeypatch):
    await stocked_unit(ledger, "ngo-a")
    await stocked_unit(ledger, "ngo-b")
    clock.advance(timedelta(days=45))
    reconcile = ledger.reconcile

    async def broken_for_ngo_a(entity_id, blood_group, **kwargs):
        if entity_id == "ngo-a":
            raise RuntimeError("store unavailable")
        return await reconcile(entity_id, blood_group, **kwargs)

    monkeypatch.setattr(ledger, "reconcile", broken_for_ngo_a)

    outcome = await ExpirySweeper(ledger, reconcile=True).run_once()

    assert [r.entity_id for r in outcome["reconciled"]] == ["ngo-b"]
