"""
Reconciliation tests - cache drift is induced by writing the cache directly
"""
from decimal import Decimal

import pytest
from sqlalchemy import event

from stockledger.models import InventoryItem
from stockledger.schemas.reconciliation import VarianceStatus


@pytest.fixture
def reconciliation(services):
    return services.reconciliation


def force_cached_quantity(store, item_id, quantity):
    with store.transaction() as db:
        db.query(InventoryItem).filter(InventoryItem.id == item_id)\
            .update({InventoryItem.quantity_on_hand: Decimal(quantity)}, synchronize_session=False)


class TestReconcile:
    def test_consistent_inventory_reports_nothing(self, ledger, reconciliation, make_item):
        item = make_item("A", quantity=10, cost=2)
        ledger.append_transaction(item.id, "OUT", "SALE", 3, reference_id="SO-1")
        assert reconciliation.reconcile_inventory() == []

    def test_drift_is_reported(self, store, reconciliation, make_item):
        item = make_item("A", quantity=47, cost=2)
        force_cached_quantity(store, item.id, 50)

        (result,) = reconciliation.reconcile_inventory()

        assert result.theoretical_balance == Decimal("47")
        assert result.cached_balance == Decimal("50")
        assert result.variance == Decimal("3")
        assert result.variance_percent == Decimal("6.38")
        assert result.variance_value == Decimal("6.00")
        assert result.status == VarianceStatus.WARNING
        assert not result.is_critical

    def test_small_theoretical_balance_uses_floor_of_one(self, store, reconciliation, make_item):
        item = make_item("EMPTY")
        force_cached_quantity(store, item.id, 2)
        (result,) = reconciliation.reconcile_inventory()
        assert result.theoretical_balance == 0
        assert result.variance_percent == Decimal("200.00")
        assert result.is_critical

    def test_negative_variance_uses_magnitude(self, store, reconciliation, make_item):
        item = make_item("A", quantity=100, cost=1)
        force_cached_quantity(store, item.id, 88)
        (result,) = reconciliation.reconcile_inventory()
        assert result.variance == Decimal("-12")
        assert result.status == VarianceStatus.CRITICAL

    def test_filter_and_inactive_items(self, store, ledger, reconciliation, make_item):
        a = make_item("A", quantity=10, cost=1)
        b = make_item("B", quantity=10, cost=1)
        force_cached_quantity(store, a.id, 11)
        force_cached_quantity(store, b.id, 12)

        assert [r.sku for r in reconciliation.reconcile_inventory(item_ids=[b.id])] == ["B"]
        ledger.set_item_active(b.id, False)
        assert [r.sku for r in reconciliation.reconcile_inventory()] == ["A"]


class TestClassify:
    @pytest.mark.parametrize("percent,status", [
        ("5", VarianceStatus.OK),
        ("5.01", VarianceStatus.WARNING),
        ("10", VarianceStatus.WARNING),
        ("10.01", VarianceStatus.CRITICAL),
        ("-10.5", VarianceStatus.CRITICAL),
    ])
    def test_buckets(self, reconciliation, percent, status):
        assert reconciliation.classify(Decimal(percent)) == status

    def test_summarize(self, store, reconciliation, make_item):
        a = make_item("A", quantity=100, cost=1)
        b = make_item("B", quantity=100, cost=1)
        force_cached_quantity(store, a.id, 101)
        force_cached_quantity(store, b.id, 150)

        summary = reconciliation.summarize(reconciliation.reconcile_inventory())

        assert summary.total == 2
        assert summary.by_status == {"OK": 1, "WARNING": 0, "CRITICAL": 1}
        assert [r.sku for r in summary.critical] == ["B"]


class TestSnapshot:
    def test_balances_and_cache_are_read_in_one_statement(self, store, ledger, reconciliation, make_item):
        a = make_item("A", quantity=10, cost=1)
        make_item("EMPTY")
        ledger.append_transaction(a.id, "OUT", "SALE", 4, reference_id="SO-1")
        force_cached_quantity(store, a.id, 7)
        statements = []

        def count(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith("SELECT"):
                statements.append(statement)

        event.listen(store.engine, "before_cursor_execute", count)
        try:
            (result,) = reconciliation.reconcile_inventory()
        finally:
            event.remove(store.engine, "before_cursor_execute", count)

        assert len(statements) == 1
        assert result.sku == "A"
        assert result.theoretical_balance == Decimal("6")
        assert result.variance == Decimal("1")

    def test_item_without_movements_is_consistent(self, store, reconciliation, make_item):
        item = make_item("EMPTY")
        force_cached_quantity(store, item.id, 0)
        assert reconciliation.reconcile_inventory(item_ids=[item.id]) == []
