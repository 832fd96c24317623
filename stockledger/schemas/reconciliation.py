"""
Reconciliation Schemas
"""
import enum
from pydantic import BaseModel
from typing import Dict, List
from uuid import UUID
from decimal import Decimal

class VarianceStatus(str, enum.Enum):
    OK = "OK"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"

class ReconciliationResult(BaseModel):
    """Transient comparison of one item's cache against its ledger"""
    item_id: UUID
    sku: str
    theoretical_balance: Decimal
    cached_balance: Decimal
    variance: Decimal  # cached - theoretical
    variance_percent: Decimal
    variance_value: Decimal
    status: VarianceStatus

    @property
    def is_critical(self) -> bool:
        return self.status == VarianceStatus.CRITICAL

class ReconciliationSummary(BaseModel):
    total: int
    by_status: Dict[str, int]
    critical: List[ReconciliationResult]
