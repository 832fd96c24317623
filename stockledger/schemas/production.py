"""
Production Schemas
"""
from pydantic import BaseModel
from typing import List, Optional
from uuid import UUID
from decimal import Decimal

class BOMLineCreate(BaseModel):
    component_item_id: UUID
    quantity_per_unit: Decimal
    waste_factor: Decimal = Decimal("1")

class ModelCreate(BaseModel):
    sku: str
    name: str
    finished_item_id: Optional[UUID] = None
    bom: List[BOMLineCreate] = []

class BatchCreate(BaseModel):
    model_id: UUID
    planned_quantity: Decimal
    labor_cost: Decimal = Decimal("0")
    overhead_cost: Decimal = Decimal("0")
    note: Optional[str] = None

class CompleteRequest(BaseModel):
    produced_quantity: Decimal
    waste_quantity: Decimal = Decimal("0")

class RequirementLine(BaseModel):
    item_id: UUID
    sku: str
    name: str
    quantity_per_unit: Decimal
    waste_factor: Decimal
    required_quantity: Decimal
    available_quantity: Decimal
    shortage: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    sufficient: bool

class ConsumptionPreview(BaseModel):
    batch_id: UUID
    batch_number: str
    status: str
    planned_quantity: Decimal
    requirements: List[RequirementLine]
    feasible: bool
    materials_cost: Decimal
    max_producible: Decimal

class ConsumedLine(BaseModel):
    item_id: UUID
    quantity: Decimal
    unit_cost: Decimal
    transaction_id: UUID

class ConsumptionResult(BaseModel):
    batch_id: UUID
    status: str
    consumed: List[ConsumedLine]
    materials_cost: Decimal

class CostBreakdown(BaseModel):
    materials_cost: Decimal
    labor_cost: Decimal
    overhead_cost: Decimal
    total_cost: Decimal
    unit_cost: Decimal

class CompletionResult(BaseModel):
    batch_id: UUID
    status: str
    produced_quantity: Decimal
    costs: CostBreakdown
    finished_item_id: Optional[UUID] = None
    finished_transaction_id: Optional[UUID] = None

class BatchResponse(BaseModel):
    id: UUID
    batch_number: str
    model_id: UUID
    status: str
    planned_quantity: Decimal
    produced_quantity: Optional[Decimal] = None
    labor_cost: Decimal
    overhead_cost: Decimal
    materials_cost: Optional[Decimal] = None
    total_cost: Optional[Decimal] = None
    unit_cost: Optional[Decimal] = None

    class Config:
        from_attributes = True

class ModelResponse(BaseModel):
    id: UUID
    sku: str
    name: str
    finished_item_id: Optional[UUID] = None

    class Config:
        from_attributes = True
