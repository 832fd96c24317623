"""
Purchase Schemas
"""
from pydantic import BaseModel
from typing import Dict, List, Optional
from uuid import UUID
from decimal import Decimal

from stockledger.models.purchase import PurchaseStatus

class PurchaseLineCreate(BaseModel):
    item_id: UUID
    quantity: Decimal
    unit_cost: Decimal

class PurchaseOrderCreate(BaseModel):
    supplier_name: Optional[str] = None
    order_number: Optional[str] = None
    note: Optional[str] = None
    lines: List[PurchaseLineCreate]

class ReceiveLine(BaseModel):
    line_id: UUID
    quantity: Decimal
    unit_cost: Optional[Decimal] = None  # defaults to the order line's cost

class ReceiveRequest(BaseModel):
    lines: Optional[List[ReceiveLine]] = None

class PurchaseOrderLineResponse(BaseModel):
    id: UUID
    line_no: int
    item_id: UUID
    ordered_quantity: Decimal
    received_quantity: Decimal
    unit_cost: Decimal

    class Config:
        from_attributes = True

class PurchaseOrderResponse(BaseModel):
    id: UUID
    order_number: str
    supplier_name: Optional[str] = None
    status: PurchaseStatus
    total_amount: Decimal
    lines: List[PurchaseOrderLineResponse]

    class Config:
        from_attributes = True

class ReceivePreviewLine(BaseModel):
    line_id: Optional[UUID] = None  # None when the request did not name a valid line
    item_id: Optional[UUID] = None
    sku: Optional[str] = None
    quantity_to_receive: Optional[Decimal] = None
    unit_cost: Optional[Decimal] = None
    quantity_before: Optional[Decimal] = None
    quantity_after: Optional[Decimal] = None
    cost_before: Optional[Decimal] = None
    cost_after: Optional[Decimal] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

class ReceivePreview(BaseModel):
    order_id: UUID
    order_number: str
    status: str
    lines: List[ReceivePreviewLine]
    total_quantity: Decimal
    total_value: Decimal
    cost_delta: Decimal

class ReceiveLineResult(BaseModel):
    line_id: Optional[UUID] = None
    success: bool
    quantity: Optional[Decimal] = None  # None when the requested amount was malformed
    item_id: Optional[UUID] = None
    transaction_id: Optional[UUID] = None
    unit_cost_after: Optional[Decimal] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

class SupplierTotal(BaseModel):
    supplier_name: Optional[str] = None
    order_count: int
    total_amount: Decimal

class PurchaseStats(BaseModel):
    total: int
    total_amount: Decimal
    by_status: Dict[str, int]
    by_supplier: List[SupplierTotal]
