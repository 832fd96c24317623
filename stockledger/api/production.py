"""
Production API - models, batches, consumption and completion
"""
from fastapi import APIRouter, Depends, Query
from typing import Optional
from uuid import UUID

from stockledger.schemas.production import (
    BatchCreate, BatchResponse, CompleteRequest, CompletionResult, ConsumptionPreview,
    ConsumptionResult, ModelCreate, ModelResponse,
)
from stockledger.models import BatchStatus
from stockledger.services import ProductionService
from .deps import get_production

router = APIRouter(prefix="/production", tags=["Production"])


@router.post("/models", response_model=ModelResponse, status_code=201)
def create_model(data: ModelCreate, production: ProductionService = Depends(get_production)):
    return production.create_model(data.sku, data.name, data.bom, finished_item_id=data.finished_item_id)


@router.post("/batches", response_model=BatchResponse, status_code=201)
def create_batch(data: BatchCreate, production: ProductionService = Depends(get_production)):
    return production.create_batch(
        data.model_id,
        data.planned_quantity,
        labor_cost=data.labor_cost,
        overhead_cost=data.overhead_cost,
        note=data.note,
    )


@router.get("/batches")
def list_batches(
    status: Optional[BatchStatus] = Query(None),
    model_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    production: ProductionService = Depends(get_production),
):
    batches, total = production.list_batches(status=status, model_id=model_id, page=page, per_page=per_page)
    return {
        "batches": [BatchResponse.model_validate(b) for b in batches],
        "total": total,
        "page": page,
        "per_page": per_page,
    }


@router.get("/batches/{batch_id}", response_model=BatchResponse)
def get_batch(batch_id: UUID, production: ProductionService = Depends(get_production)):
    return production.get_batch(batch_id)


@router.post("/batches/{batch_id}/start", response_model=BatchResponse)
def start_batch(batch_id: UUID, production: ProductionService = Depends(get_production)):
    return production.start_batch(batch_id)


@router.get("/batches/{batch_id}/preview", response_model=ConsumptionPreview)
def preview_consumption(batch_id: UUID, production: ProductionService = Depends(get_production)):
    return production.preview_consumption(batch_id)


@router.post("/batches/{batch_id}/consume", response_model=ConsumptionResult)
def consume_production(batch_id: UUID, production: ProductionService = Depends(get_production)):
    return production.consume_production(batch_id)


@router.post("/batches/{batch_id}/complete", response_model=CompletionResult)
def complete_batch(batch_id: UUID, data: CompleteRequest, production: ProductionService = Depends(get_production)):
    return production.complete_batch(batch_id, data.produced_quantity, data.waste_quantity)


@router.post("/batches/{batch_id}/cancel", response_model=BatchResponse)
def cancel_batch(
    batch_id: UUID,
    reason: Optional[str] = None,
    production: ProductionService = Depends(get_production),
):
    return production.cancel_batch(batch_id, reason=reason)
