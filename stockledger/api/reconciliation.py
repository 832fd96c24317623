"""
Reconciliation API - cache vs ledger integrity check
"""
from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from uuid import UUID

from stockledger.services import ReconciliationService
from .deps import get_reconciliation

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


@router.get("")
def reconcile_inventory(
    item_id: Optional[List[UUID]] = Query(None, description="Restrict to these items"),
    reconciliation: ReconciliationService = Depends(get_reconciliation),
):
    """
    Run reconciliation now
    Returns every item whose cached balance disagrees with its ledger
    """
    results = reconciliation.reconcile_inventory(item_ids=item_id)
    return {
        "results": results,
        "summary": reconciliation.summarize(results),
    }
