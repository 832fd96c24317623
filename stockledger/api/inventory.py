"""
Inventory API - items, movements and valuation
"""
from fastapi import APIRouter, Depends, Query
from typing import List
from uuid import UUID

from stockledger.schemas.inventory import (
    AdjustmentCreate, CorrectionCreate, ItemCreate, ItemResponse, ReservationRequest, StockAvailability,
    StockRequest, TransactionCreate, TransactionResponse, ValuationSummary,
)
from stockledger.services import LedgerService
from .deps import get_ledger

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.post("/items", response_model=ItemResponse, status_code=201)
def create_item(data: ItemCreate, ledger: LedgerService = Depends(get_ledger)):
    return ledger.create_item(
        sku=data.sku,
        name=data.name,
        unit=data.unit,
        opening_quantity=data.opening_quantity,
        opening_cost=data.opening_cost,
        reorder_level=data.reorder_level,
    )


@router.get("/items", response_model=List[ItemResponse])
def list_items(
    active_only: bool = Query(True),
    low_stock: bool = Query(False, description="Only items at or below their reorder level"),
    ledger: LedgerService = Depends(get_ledger),
):
    if low_stock:
        return ledger.low_stock_items()
    return ledger.list_items(active_only=active_only)


@router.get("/items/{item_id}", response_model=ItemResponse)
def get_item(item_id: UUID, ledger: LedgerService = Depends(get_ledger)):
    return ledger.get_item(item_id)


@router.get("/items/{item_id}/transactions", response_model=List[TransactionResponse])
def list_transactions(
    item_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    ledger: LedgerService = Depends(get_ledger),
):
    ledger.get_item(item_id)
    return ledger.list_transactions(item_id, limit=limit)


@router.post("/transactions", response_model=TransactionResponse, status_code=201)
def append_transaction(data: TransactionCreate, ledger: LedgerService = Depends(get_ledger)):
    """Append one stock movement"""
    return ledger.append_transaction(
        data.item_id,
        data.direction,
        data.type,
        data.quantity,
        data.unit_cost,
        data.reference_id,
        reason=data.reason,
        note=data.note,
        corrects_transaction_id=data.corrects_transaction_id,
    )


@router.get("/valuation", response_model=ValuationSummary)
def inventory_valuation(ledger: LedgerService = Depends(get_ledger)):
    return ledger.inventory_valuation()


@router.post("/availability", response_model=StockAvailability)
def check_stock_availability(requests: List[StockRequest], ledger: LedgerService = Depends(get_ledger)):
    """Whether current stock covers every requested quantity; nothing is reserved"""
    return ledger.check_stock_availability(requests)


@router.post("/items/{item_id}/adjust", response_model=TransactionResponse, status_code=201)
def adjust_stock(item_id: UUID, data: AdjustmentCreate, ledger: LedgerService = Depends(get_ledger)):
    """Count adjustment: positive quantity adds stock, negative removes it"""
    return ledger.adjust_stock(item_id, data.quantity, reason=data.reason, unit_cost=data.unit_cost)


@router.post("/items/{item_id}/corrections", response_model=TransactionResponse, status_code=201)
def record_correction(item_id: UUID, data: CorrectionCreate, ledger: LedgerService = Depends(get_ledger)):
    return ledger.record_correction(
        item_id,
        data.direction,
        data.quantity,
        reason=data.reason,
        corrects_transaction_id=data.corrects_transaction_id,
    )


@router.post("/items/{item_id}/reserve", response_model=TransactionResponse, status_code=201)
def reserve_stock(item_id: UUID, data: ReservationRequest, ledger: LedgerService = Depends(get_ledger)):
    return ledger.reserve_stock(item_id, data.quantity, data.reference_id)


@router.post("/items/{item_id}/release", response_model=TransactionResponse, status_code=201)
def release_reservation(item_id: UUID, data: ReservationRequest, ledger: LedgerService = Depends(get_ledger)):
    return ledger.release_reservation(item_id, data.quantity, data.reference_id)


@router.post("/items/{item_id}/fulfil", response_model=TransactionResponse, status_code=201)
def fulfil_reservation(item_id: UUID, data: ReservationRequest, ledger: LedgerService = Depends(get_ledger)):
    """Turn a reservation into a sale"""
    return ledger.fulfil_reservation(item_id, data.quantity, data.reference_id)
