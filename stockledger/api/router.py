"""
API Router - JSON Endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from stockledger.core.errors import InventoryError
from .inventory import router as inventory_router
from .purchases import router as purchases_router
from .production import router as production_router
from .reconciliation import router as reconciliation_router

api_router = APIRouter(tags=["API"])

# Include sub-routers
api_router.include_router(inventory_router)
api_router.include_router(purchases_router)
api_router.include_router(production_router)
api_router.include_router(reconciliation_router)


@api_router.get("/status")
async def api_status():
    return {"status": "ok", "version": "1.0.0", "timestamp": datetime.now().isoformat()}


async def inventory_error_handler(request: Request, exc: InventoryError) -> JSONResponse:
    """Business errors answer with their own status and code"""
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_dict()})
