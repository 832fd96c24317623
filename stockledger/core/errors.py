"""
Inventory error taxonomy

Every error is recoverable by the caller (retry, correct the input, or use an
explicit override). Each carries a machine-readable code and the HTTP status
the API layer answers with.
"""
from typing import Any, Dict


class InventoryError(Exception):
    """Base class for every business error raised by the inventory core"""

    code = "INVENTORY_ERROR"
    http_status = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload = {"code": self.code, "message": self.message}
        for key, value in self.details.items():
            payload[key] = value if isinstance(value, (int, float, bool, type(None))) else str(value)
        return payload


class InvalidQuantity(InventoryError):
    code = "INVALID_QUANTITY"
    http_status = 422


class InvalidTransaction(InventoryError):
    """Structurally invalid movement: bad direction/type pair, missing or negative cost, bad link"""
    code = "INVALID_TRANSACTION"
    http_status = 422


class InsufficientStock(InventoryError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409


class OverReceipt(InventoryError):
    code = "OVER_RECEIPT"
    http_status = 409


class InvalidBatchStatus(InventoryError):
    code = "INVALID_BATCH_STATUS"
    http_status = 409


class OrderNotReceivable(InventoryError):
    code = "ORDER_NOT_RECEIVABLE"
    http_status = 409


class InvalidOrderStatus(InventoryError):
    code = "INVALID_ORDER_STATUS"
    http_status = 409


class ConcurrencyConflict(InventoryError):
    code = "CONCURRENCY_CONFLICT"
    http_status = 409


class NotFound(InventoryError):
    code = "NOT_FOUND"
    http_status = 404


class ItemNotFound(NotFound):
    code = "ITEM_NOT_FOUND"


class OrderNotFound(NotFound):
    code = "ORDER_NOT_FOUND"


class OrderLineNotFound(NotFound):
    code = "ORDER_LINE_NOT_FOUND"


class BatchNotFound(NotFound):
    code = "BATCH_NOT_FOUND"


class ModelNotFound(NotFound):
    code = "MODEL_NOT_FOUND"


class DuplicateRecord(InventoryError):
    code = "DUPLICATE_RECORD"
    http_status = 409
