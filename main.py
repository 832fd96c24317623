"""
StockLedger - Inventory Ledger & Costing Core
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from stockledger.api import api_router
from stockledger.api.router import inventory_error_handler
from stockledger.core import LedgerStore, create_store, settings
from stockledger.core.errors import InventoryError
from stockledger.jobs import start_scheduler, stop_scheduler
from stockledger.services import InventoryServices

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(store: Optional[LedgerStore] = None, enable_scheduler: Optional[bool] = None) -> FastAPI:
    store = store or create_store(settings)
    if enable_scheduler is None:
        enable_scheduler = settings.RECONCILE_SCHEDULER_ENABLED

    # Lifespan for startup/shutdown
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: open the store and create tables if not exist
        store.open()
        store.create_all()
        services = InventoryServices(store)
        app.state.store = store
        app.state.services = services
        logger.info(f"{settings.APP_NAME} starting on port {settings.APP_PORT}")

        if enable_scheduler:
            try:
                start_scheduler(services.reconciliation)
            except Exception as e:
                logger.warning(f"Could not start reconciliation scheduler: {e}")

        yield

        # Shutdown
        if enable_scheduler:
            stop_scheduler()
        store.close()
        logger.info(f"{settings.APP_NAME} shutting down")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Inventory ledger, weighted-average costing, receiving and production",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_exception_handler(InventoryError, inventory_error_handler)

    # Include routers
    app.include_router(api_router, prefix="/api")

    # Health check
    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "app": settings.APP_NAME}

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.APP_PORT,
        reload=settings.DEBUG
    )
