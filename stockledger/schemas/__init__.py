# Pydantic Schemas Package
from .inventory import (
    ItemCreate, ItemResponse, TransactionCreate, TransactionResponse, ValuationSummary,
    AdjustmentCreate, CorrectionCreate, ReservationRequest, StockRequest, StockAvailability, StockAvailabilityLine,
)
from .purchase import (
    PurchaseLineCreate, PurchaseOrderCreate, PurchaseOrderResponse, ReceiveLine, ReceiveRequest,
    ReceivePreview, ReceivePreviewLine, ReceiveLineResult, PurchaseStats, SupplierTotal,
)
from .production import (
    BOMLineCreate, ModelCreate, ModelResponse, BatchCreate, BatchResponse, CompleteRequest,
    RequirementLine, ConsumptionPreview, ConsumedLine, ConsumptionResult, CostBreakdown, CompletionResult,
)
from .reconciliation import ReconciliationResult, ReconciliationSummary, VarianceStatus

__all__ = [
    "ItemCreate", "ItemResponse", "TransactionCreate", "TransactionResponse", "ValuationSummary",
    "AdjustmentCreate", "CorrectionCreate", "ReservationRequest", "StockRequest", "StockAvailability", "StockAvailabilityLine",
    "PurchaseLineCreate", "PurchaseOrderCreate", "PurchaseOrderResponse", "ReceiveLine", "ReceiveRequest",
    "ReceivePreview", "ReceivePreviewLine", "ReceiveLineResult", "PurchaseStats", "SupplierTotal",
    "BOMLineCreate", "ModelCreate", "ModelResponse", "BatchCreate", "BatchResponse", "CompleteRequest",
    "RequirementLine", "ConsumptionPreview", "ConsumedLine", "ConsumptionResult", "CostBreakdown", "CompletionResult",
    "ReconciliationResult", "ReconciliationSummary", "VarianceStatus",
]
