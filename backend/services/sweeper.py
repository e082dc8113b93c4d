"""
Periodic expiry sweep, run as a background task next to the API.
"""
import asyncio
from typing import List, Optional

from logger import get_logger
from models import Reconciliation
from services.ledger import InventoryLedger

logger = get_logger("sweeper")


class ExpirySweeper:

    def __init__(self, ledger: InventoryLedger, interval_s: float = 3600.0, reconcile: bool = False):
        self.ledger = ledger
        self.interval_s = interval_s
        self.reconcile = reconcile
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> dict:
        expired = await self.ledger.expire_sweep()
        corrections: List[Reconciliation] = []
        if self.reconcile:
            for record in await self.ledger.list_records():
                try:
                    result = await self.ledger.reconcile(record.entity_id, record.blood_group, apply=True)
                except Exception:
                    logger.exception("Reconciliation failed for %s %s",
                                     record.entity_id, record.blood_group.value)
                    continue
                if result.drift:
                    corrections.append(result)
        return {"expired": expired, "reconciled": corrections}

    async def _loop(self):
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Expiry sweep failed")
            await asyncio.sleep(self.interval_s)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._loop())
            logger.info("Expiry sweeper started (every %.0fs)", self.interval_s)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
