"""
Request dependencies - services live on app.state for the life of the process
"""
from fastapi import Request

from stockledger.services import (
    InventoryServices, LedgerService, ProductionService, PurchaseService, ReconciliationService,
)


def get_services(request: Request) -> InventoryServices:
    return request.app.state.services


def get_ledger(request: Request) -> LedgerService:
    return get_services(request).ledger


def get_purchases(request: Request) -> PurchaseService:
    return get_services(request).purchases


def get_production(request: Request) -> ProductionService:
    return get_services(request).production


def get_reconciliation(request: Request) -> ReconciliationService:
    return get_services(request).reconciliation
