"""
Reconciliation Service - Compare cached item balances against the ledger
Detects cache drift; never rewrites the cache or the ledger
"""
from decimal import Decimal
from typing import Iterable, List, Optional
import logging

from sqlalchemy import case, func

from stockledger.core import LedgerStore, settings
from stockledger.models import InventoryItem, StockTransaction, TxDirection
from stockledger.schemas.reconciliation import ReconciliationResult, ReconciliationSummary, VarianceStatus
from .costing import quantize_cost, quantize_quantity
from .ledger_service import parse_uuid

logger = logging.getLogger(__name__)


class ReconciliationService:
    """
    Recomputes each item's balance from its transactions and reports the
    items whose cached quantity_on_hand disagrees.
    """

    def __init__(
        self,
        store: LedgerStore,
        warning_percent: Optional[float] = None,
        critical_percent: Optional[float] = None,
    ):
        self.store = store
        self.warning_percent = Decimal(str(
            settings.RECONCILE_WARNING_PERCENT if warning_percent is None else warning_percent
        ))
        self.critical_percent = Decimal(str(
            settings.RECONCILE_CRITICAL_PERCENT if critical_percent is None else critical_percent
        ))

    def classify(self, variance_percent: Decimal) -> VarianceStatus:
        magnitude = abs(variance_percent)
        if magnitude > self.critical_percent:
            return VarianceStatus.CRITICAL
        if magnitude > self.warning_percent:
            return VarianceStatus.WARNING
        return VarianceStatus.OK

    def reconcile_inventory(self, item_ids: Optional[Iterable] = None) -> List[ReconciliationResult]:
        """
        One result per active item whose cache differs from its ledger.

        variance = cached - theoretical
        variance_percent = variance / max(theoretical, 1) * 100

        Each cached balance is read together with its ledger sum in one
        statement, so an item and its sum always come from the same snapshot.
        Only a movement committed while that statement runs can still show
        up as a transient variance on databases without snapshot reads.
        """
        signed_quantity = case(
            (StockTransaction.direction == TxDirection.IN.value, StockTransaction.quantity),
            else_=-StockTransaction.quantity,
        )

        with self.store.session() as db:
            ledger_sums = db.query(
                StockTransaction.item_id.label("item_id"),
                func.sum(signed_quantity).label("balance"),
            )
            keys = None
            if item_ids is not None:
                keys = [parse_uuid(i) for i in item_ids]
                ledger_sums = ledger_sums.filter(StockTransaction.item_id.in_(keys))
            ledger_sums = ledger_sums.group_by(StockTransaction.item_id).subquery()

            query = db.query(InventoryItem, func.coalesce(ledger_sums.c.balance, 0))\
                .outerjoin(ledger_sums, ledger_sums.c.item_id == InventoryItem.id)\
                .filter(InventoryItem.is_active == True)
            if keys is not None:
                query = query.filter(InventoryItem.id.in_(keys))
            rows = query.order_by(InventoryItem.sku).all()

        results = []
        for item, balance in rows:
            theoretical = quantize_quantity(balance or 0)
            cached = quantize_quantity(item.quantity_on_hand or 0)
            variance = cached - theoretical
            if variance == 0:
                continue

            variance_percent = quantize_cost(variance / max(theoretical, Decimal("1")) * 100)
            result = ReconciliationResult(
                item_id=item.id,
                sku=item.sku,
                theoretical_balance=theoretical,
                cached_balance=cached,
                variance=variance,
                variance_percent=variance_percent,
                variance_value=quantize_cost(variance * Decimal(item.unit_cost or 0)),
                status=self.classify(variance_percent),
            )
            results.append(result)

            if result.is_critical:
                logger.error(
                    f"Critical variance on {item.sku}: cached={cached} ledger={theoretical} ({variance_percent}%)"
                )

        logger.info(f"Reconciled {len(rows)} items, {len(results)} with variance")
        return results

    @staticmethod
    def summarize(results: List[ReconciliationResult]) -> ReconciliationSummary:
        by_status = {status.value: 0 for status in VarianceStatus}
        for result in results:
            by_status[result.status.value] += 1
        return ReconciliationSummary(
            total=len(results),
            by_status=by_status,
            critical=[r for r in results if r.is_critical],
        )
