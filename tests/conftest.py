"""
Shared fixtures: a fresh SQLite ledger store per test
"""
import pytest

from stockledger.core import LedgerStore
from stockledger.services import InventoryServices


@pytest.fixture
def store(tmp_path):
    store = LedgerStore(f"sqlite:///{tmp_path / 'ledger.db'}")
    store.open()
    store.create_all()
    yield store
    store.close()


@pytest.fixture
def services(store):
    return InventoryServices(store, lock_timeout=5)


@pytest.fixture
def ledger(services):
    return services.ledger


@pytest.fixture
def make_item(ledger):
    def _make(sku, quantity=0, cost=None, **kwargs):
        return ledger.create_item(sku=sku, name=f"Item {sku}", opening_quantity=quantity, opening_cost=cost, **kwargs)
    return _make
