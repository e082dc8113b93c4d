"""
FastAPI application for the fulfillment and inventory ledger service.

Run with ``uvicorn server:app`` from the ``backend`` directory.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import Settings, get_settings
from logger import get_logger
from routers.inventory import router as inventory_router
from routers.requests import router as requests_router
from services import ExpirySweeper, FulfillmentEngine, FulfillmentError, build_engine

logger = get_logger("server")


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[FulfillmentEngine] = None,
    run_sweeper: bool = True,
) -> FastAPI:
    """
    Build the application. Passing an ``engine`` skips the MongoDB wiring,
    which is how the tests run against in-memory stores.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.engine is None:
            from database import db, ensure_indexes
            await ensure_indexes(db)
            app.state.engine = build_engine(settings, database=db)
        sweeper = None
        if run_sweeper:
            sweeper = ExpirySweeper(app.state.engine.ledger,
                                    interval_s=settings.expiry_sweep_interval_s,
                                    reconcile=settings.reconcile_on_sweep)
            sweeper.start()
        logger.info("Fulfillment service started")
        yield
        if sweeper is not None:
            await sweeper.stop()
        await app.state.engine.activity.drain()
        logger.info("Fulfillment service stopped")

    app = FastAPI(title="Fulfillment & Inventory Ledger", version="1.0.0", lifespan=lifespan)
    app.state.engine = engine

    @app.exception_handler(FulfillmentError)
    async def fulfillment_error_handler(request: Request, exc: FulfillmentError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={
            "status": "error", "kind": "internal_error", "message": "Internal server error", "details": {},
        })

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(requests_router)
    app.include_router(inventory_router)
    return app


app = create_app()
