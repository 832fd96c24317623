from .base import TimestampMixin, UUIDMixin
from .inventory import InventoryItem, StockTransaction, TxDirection, TxType
from .purchase import PurchaseOrder, PurchaseOrderLine, PurchaseStatus, derive_order_status
from .production import ProductModel, BOMLine, ProductionBatch, BatchConsumption, BatchStatus
from .audit import AuditLog

__all__ = [
    # Base
    "TimestampMixin", "UUIDMixin",
    # Inventory
    "InventoryItem", "StockTransaction", "TxDirection", "TxType",
    # Purchase
    "PurchaseOrder", "PurchaseOrderLine", "PurchaseStatus", "derive_order_status",
    # Production
    "ProductModel", "BOMLine", "ProductionBatch", "BatchConsumption", "BatchStatus",
    # Audit
    "AuditLog",
]
