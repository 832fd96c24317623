# Services Package
from stockledger.core import KeyedLockRegistry, LedgerStore

from .ledger_service import LedgerService
from .purchase_service import PurchaseService
from .production_service import ProductionService
from .reconciliation_service import ReconciliationService


class InventoryServices:
    """
    The services of one store, sharing a single lock registry.

    Build one per process: two registries over the same store would not
    serialize each other's writers.
    """

    def __init__(self, store: LedgerStore, lock_timeout=None):
        self.store = store
        self.locks = KeyedLockRegistry()
        self.ledger = LedgerService(store, self.locks, lock_timeout=lock_timeout)
        self.purchases = PurchaseService(store, self.ledger)
        self.production = ProductionService(store, self.ledger)
        self.reconciliation = ReconciliationService(store)


__all__ = [
    "InventoryServices",
    "LedgerService",
    "PurchaseService",
    "ProductionService",
    "ReconciliationService",
]
