"""
Inventory Schemas
"""
from pydantic import BaseModel
from typing import List, Optional
from uuid import UUID
from decimal import Decimal
from datetime import datetime

from stockledger.models.inventory import TxDirection, TxType

class ItemCreate(BaseModel):
    sku: str
    name: str
    unit: str = "PIECE"
    opening_quantity: Decimal = Decimal("0")
    opening_cost: Optional[Decimal] = None
    reorder_level: Optional[Decimal] = None

class ItemResponse(BaseModel):
    id: UUID
    sku: str
    name: str
    unit: str
    quantity_on_hand: Decimal
    unit_cost: Decimal
    last_cost: Optional[Decimal] = None
    reorder_level: Optional[Decimal] = None
    is_active: bool

    class Config:
        from_attributes = True

class TransactionCreate(BaseModel):
    item_id: UUID
    direction: TxDirection
    type: TxType
    quantity: Decimal
    unit_cost: Optional[Decimal] = None
    reference_id: Optional[str] = None
    reason: Optional[str] = None
    note: Optional[str] = None
    corrects_transaction_id: Optional[UUID] = None

class TransactionResponse(BaseModel):
    id: UUID
    item_id: UUID
    direction: str
    type: str
    quantity: Decimal
    unit_cost: Optional[Decimal] = None
    balance_after: Decimal
    unit_cost_after: Decimal
    reference_id: Optional[str] = None
    reason: Optional[str] = None
    corrects_transaction_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True

class ValuationSummary(BaseModel):
    item_count: int
    total_quantity: Decimal
    total_value: Decimal

class AdjustmentCreate(BaseModel):
    quantity: Decimal  # signed: positive adds stock, negative removes it
    reason: str
    unit_cost: Optional[Decimal] = None

class CorrectionCreate(BaseModel):
    direction: TxDirection
    quantity: Decimal
    reason: str
    corrects_transaction_id: Optional[UUID] = None

class ReservationRequest(BaseModel):
    quantity: Decimal
    reference_id: str

class StockRequest(BaseModel):
    item_id: UUID
    quantity: Decimal

class StockAvailabilityLine(BaseModel):
    item_id: UUID
    sku: Optional[str] = None
    found: bool
    requested: Decimal
    available: Decimal
    shortage: Decimal
    sufficient: bool

class StockAvailability(BaseModel):
    available: bool
    lines: List[StockAvailabilityLine]
