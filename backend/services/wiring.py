"""
Assembles the engine from either the MongoDB adapters or the in-memory ones.
"""
from typing import Optional

from fastapi import Request

from config import Settings, get_settings
from services.activity import ActivityService, MemoryCollection
from services.clock import Clock
from services.directory import Directory, MemoryDirectory
from services.engine import FulfillmentEngine
from services.fanout import FanoutDispatcher
from services.ledger import InventoryLedger
from services.matcher import EligibilityMatcher
from services.notifications import NotificationService
from services.state_machine import RequestStateMachine
from services.stores import (
    MemoryInventoryStore, MemoryRequestStore, MemorySlotRegistry, MemoryUnitStore
)


def build_engine(
    settings: Optional[Settings] = None,
    database=None,
    clock: Optional[Clock] = None,
    directory: Optional[Directory] = None,
    slots=None,
) -> FulfillmentEngine:
    """
    Wire every component of the engine.

    With ``database`` (a Motor database) all state lives in MongoDB;
    without it, everything is kept in process memory.
    """
    settings = settings or get_settings()
    clock = clock or Clock()

    if database is not None:
        from services.mongo import (
            MongoDirectory, MongoInventoryStore, MongoRequestStore, MongoSlotRegistry,
            MongoUnitStore
        )
        inventory = MongoInventoryStore(database)
        units = MongoUnitStore(database)
        requests = MongoRequestStore(database)
        slots = slots or MongoSlotRegistry(database)
        directory = directory or MongoDirectory(database)
        activity_collection = database.activity_logs
        notification_collection = database.notifications
    else:
        inventory = MemoryInventoryStore()
        units = MemoryUnitStore()
        requests = MemoryRequestStore()
        slots = slots or MemorySlotRegistry()
        directory = directory or MemoryDirectory()
        activity_collection = MemoryCollection()
        notification_collection = MemoryCollection()

    activity = ActivityService(activity_collection)
    notifications = NotificationService(notification_collection, timeout_s=settings.notify_timeout_s)
    ledger = InventoryLedger(inventory, units, clock=clock, activity=activity,
                             shelf_life_days=settings.unit_shelf_life_days)
    matcher = EligibilityMatcher(
        directory,
        ledger=ledger,
        clock=clock,
        timeout_s=settings.match_timeout_s,
        donor_base_radius_m=settings.donor_base_radius_m,
        cooldown_days=settings.donor_cooldown_days,
        plasma_min_gap_days=settings.plasma_min_gap_days,
    )
    state_machine = RequestStateMachine(requests, ledger, slots=slots, clock=clock)
    fanout = FanoutDispatcher(requests, notifications, clock=clock,
                              concurrency=settings.fanout_concurrency)
    return FulfillmentEngine(
        ledger, matcher, state_machine, fanout, directory, notifications, activity,
        clock=clock, settings=settings,
    )


def get_engine(request: Request) -> FulfillmentEngine:
    """FastAPI dependency: the engine built at application startup."""
    return request.app.state.engine
