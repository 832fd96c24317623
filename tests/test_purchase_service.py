"""
Purchase receiving flow tests
"""
from decimal import Decimal

import pytest

from stockledger.core.errors import (
    InvalidOrderStatus, InvalidQuantity, InvalidTransaction, OrderLineNotFound, OrderNotReceivable, OverReceipt,
)
from stockledger.models import PurchaseStatus, StockTransaction, TxType
from stockledger.models.purchase import derive_order_status
from stockledger.services.audit_service import audit_history


@pytest.fixture
def purchases(services):
    return services.purchases


@pytest.fixture
def two_line_order(purchases, make_item):
    a = make_item("BOLT", quantity=10, cost=100)
    b = make_item("NUT", quantity=0)
    order = purchases.create_purchase_order(
        [
            {"item_id": a.id, "quantity": 10, "unit_cost": 200},
            {"item_id": b.id, "quantity": 4, "unit_cost": "2.50"},
        ],
        supplier_name="Acme",
    )
    return order, a, b


def purchase_rows(store):
    with store.session() as db:
        return db.query(StockTransaction).filter(StockTransaction.type == TxType.PURCHASE.value).count()


class TestOrderLifecycle:
    def test_new_order_is_draft_and_numbered(self, two_line_order):
        order, _, _ = two_line_order
        assert order.status == PurchaseStatus.DRAFT
        assert order.order_number.startswith("PO-")
        assert order.order_number.endswith("-0001")
        assert [line.line_no for line in order.lines] == [1, 2]

    def test_numbers_are_sequential(self, purchases, two_line_order):
        order, a, _ = two_line_order
        second = purchases.create_purchase_order([{"item_id": a.id, "quantity": 1, "unit_cost": 1}])
        assert second.order_number.endswith("-0002")

    def test_order_needs_lines(self, purchases):
        with pytest.raises(InvalidTransaction):
            purchases.create_purchase_order([])

    def test_place_then_cancel(self, purchases, two_line_order):
        order, _, _ = two_line_order
        assert purchases.place_order(order.id).status == PurchaseStatus.ORDERED
        with pytest.raises(InvalidOrderStatus):
            purchases.place_order(order.id)
        assert purchases.cancel_order(order.id).status == PurchaseStatus.CANCELLED
        with pytest.raises(OrderNotReceivable):
            purchases.receive_purchase(order.id)

    def test_cannot_cancel_partially_received(self, purchases, two_line_order):
        order, _, _ = two_line_order
        line = order.lines[0]
        purchases.receive_purchase(order.id, [{"line_id": line.id, "quantity": 2}])
        with pytest.raises(InvalidOrderStatus):
            purchases.cancel_order(order.id)


class TestDeriveStatus:
    class Line:
        def __init__(self, ordered, received):
            self.ordered_quantity = Decimal(ordered)
            self.received_quantity = Decimal(received)

    def test_partial_and_received(self):
        lines = [self.Line(10, 10), self.Line(4, 0)]
        assert derive_order_status("ORDERED", lines) == PurchaseStatus.PARTIAL
        lines[1].received_quantity = Decimal(4)
        assert derive_order_status("ORDERED", lines) == PurchaseStatus.RECEIVED

    def test_stored_states_pass_through(self):
        lines = [self.Line(10, 10)]
        assert derive_order_status("CANCELLED", lines) == PurchaseStatus.CANCELLED
        assert derive_order_status("DRAFT", lines) == PurchaseStatus.DRAFT


class TestReceive:
    def test_lines_fail_independently(self, services, purchases, two_line_order):
        order, a, b = two_line_order
        line1, line2 = order.lines

        results = purchases.receive_purchase(order.id, [
            {"line_id": line1.id, "quantity": 10},
            {"line_id": line2.id, "quantity": 0},
        ])

        assert results[0].success
        assert results[0].unit_cost_after == Decimal("150.00")
        assert not results[1].success
        assert results[1].error_code == InvalidQuantity.code

        assert services.ledger.get_item(a.id).quantity_on_hand == Decimal("20")
        assert services.ledger.get_item(b.id).quantity_on_hand == 0
        assert purchases.get_order(order.id).status == PurchaseStatus.PARTIAL

    def test_receive_everything_open(self, services, purchases, two_line_order):
        order, a, b = two_line_order
        purchases.place_order(order.id)
        purchases.receive_purchase(order.id, [{"line_id": order.lines[0].id, "quantity": 4}])

        results = purchases.receive_purchase(order.id)
        assert [r.quantity for r in results] == [Decimal("6"), Decimal("4")]
        order = purchases.get_order(order.id)
        assert order.status == PurchaseStatus.RECEIVED
        assert order.received_at is not None
        assert services.ledger.get_item(b.id).unit_cost == Decimal("2.50")

        with pytest.raises(OrderNotReceivable):
            purchases.receive_purchase(order.id)

    def test_over_receipt_is_refused(self, store, services, purchases, two_line_order):
        order, a, _ = two_line_order
        line = order.lines[0]

        (result,) = purchases.receive_purchase(order.id, [{"line_id": line.id, "quantity": 11}])

        assert not result.success
        assert result.error_code == OverReceipt.code
        assert services.ledger.get_item(a.id).quantity_on_hand == Decimal("10")
        assert purchase_rows(store) == 0
        assert purchases.get_order(order.id).lines[0].received_quantity == 0

    def test_receipt_cost_override(self, services, purchases, two_line_order):
        order, a, _ = two_line_order
        line = order.lines[0]
        (result,) = purchases.receive_purchase(order.id, [{"line_id": line.id, "quantity": 10, "unit_cost": 300}])
        assert result.unit_cost_after == Decimal("200.00")

    def test_receiving_a_draft_places_it(self, purchases, two_line_order):
        order, _, _ = two_line_order
        purchases.receive_purchase(order.id, [{"line_id": order.lines[1].id, "quantity": 1}])
        order = purchases.get_order(order.id)
        assert order.lifecycle_status == PurchaseStatus.ORDERED.value
        assert order.ordered_at is not None


class TestPreview:
    def test_preview_does_not_write(self, store, services, purchases, two_line_order):
        order, a, _ = two_line_order

        preview = purchases.preview_receive(order.id)

        first = preview.lines[0]
        assert first.quantity_before == Decimal("10")
        assert first.quantity_after == Decimal("20")
        assert first.cost_before == Decimal("100")
        assert first.cost_after == Decimal("150.00")
        assert preview.total_quantity == Decimal("14")
        assert preview.total_value == Decimal("2010.00")
        assert preview.cost_delta == Decimal("52.50")

        assert services.ledger.get_item(a.id).quantity_on_hand == Decimal("10")
        assert purchase_rows(store) == 0
        assert purchases.get_order(order.id).status == PurchaseStatus.DRAFT

    def test_preview_reports_line_errors(self, purchases, two_line_order):
        order, _, _ = two_line_order
        line = order.lines[0]
        preview = purchases.preview_receive(order.id, [{"line_id": line.id, "quantity": 50}])
        (entry,) = preview.lines
        assert entry.error_code == OverReceipt.code
        assert preview.total_quantity == 0


class TestMalformedLines:
    def test_malformed_line_does_not_block_the_others(self, services, purchases, two_line_order):
        order, a, b = two_line_order
        line1, line2 = order.lines

        results = purchases.receive_purchase(order.id, [
            {"line_id": line1.id, "quantity": 5},
            {"line_id": line2.id, "quantity": "abc"},
            {"line_id": "not-a-uuid", "quantity": 1},
        ])

        assert results[0].success
        assert results[0].quantity == Decimal("5")
        assert not results[1].success
        assert results[1].error_code == InvalidQuantity.code
        assert results[1].line_id == line2.id
        assert results[1].quantity is None
        assert not results[2].success
        assert results[2].error_code == OrderLineNotFound.code
        assert results[2].line_id is None
        assert services.ledger.get_item(a.id).quantity_on_hand == Decimal("15")
        assert services.ledger.get_item(b.id).quantity_on_hand == 0

    def test_malformed_cost_is_reported_per_line(self, purchases, two_line_order):
        order, _, _ = two_line_order
        line1, line2 = order.lines
        results = purchases.receive_purchase(order.id, [
            {"line_id": line1.id, "quantity": 1, "unit_cost": "cheap"},
            {"line_id": line2.id, "quantity": 1},
        ])
        assert results[0].error_code == InvalidTransaction.code
        assert results[1].success

    def test_preview_reports_malformed_lines(self, purchases, two_line_order):
        order, _, _ = two_line_order
        line1, line2 = order.lines
        preview = purchases.preview_receive(order.id, [
            {"line_id": line1.id, "quantity": 2},
            {"line_id": line2.id, "quantity": "lots"},
        ])
        ok, bad = preview.lines
        assert ok.error_code is None
        assert ok.quantity_after == Decimal("12")
        assert bad.error_code == InvalidQuantity.code
        assert bad.line_id == line2.id
        assert preview.total_quantity == Decimal("2")


class TestAudit:
    def test_order_history_is_recorded(self, store, purchases, two_line_order):
        order, _, _ = two_line_order
        line1, line2 = order.lines
        purchases.place_order(order.id, performed_by="buyer")
        purchases.receive_purchase(order.id, [{"line_id": line1.id, "quantity": 10}], received_by="clerk")
        purchases.receive_purchase(order.id, [{"line_id": line2.id, "quantity": 4}], received_by="clerk")

        history = audit_history(store, "purchase_order", order.id)

        actions = [entry.action for entry in history]
        assert actions.count("INSERT") == 1
        assert actions.count("RECEIVE") == 2
        transitions = sorted(
            (entry.before_data["status"], entry.after_data["status"])
            for entry in history if entry.action == "STATUS_CHANGE"
        )
        assert transitions == [("DRAFT", "ORDERED"), ("ORDERED", "PARTIAL"), ("PARTIAL", "RECEIVED")]
        receipts = [entry for entry in history if entry.action == "RECEIVE"]
        assert {entry.performed_by for entry in receipts} == {"clerk"}
        assert {Decimal(entry.after_data["received_quantity"]) for entry in receipts} == {Decimal("10"), Decimal("4")}

    def test_refused_receipt_leaves_no_audit_row(self, store, purchases, two_line_order):
        order, _, _ = two_line_order
        purchases.receive_purchase(order.id, [{"line_id": order.lines[0].id, "quantity": 11}])
        actions = [entry.action for entry in audit_history(store, "purchase_order", order.id)]
        assert "RECEIVE" not in actions

    def test_cancel_is_audited(self, store, purchases, two_line_order):
        order, _, _ = two_line_order
        purchases.cancel_order(order.id, performed_by="buyer")
        (cancel,) = [e for e in audit_history(store, "purchase_order", order.id) if e.action == "STATUS_CHANGE"]
        assert cancel.before_data == {"status": "DRAFT"}
        assert cancel.after_data == {"status": "CANCELLED"}
        assert cancel.performed_by == "buyer"


class TestListing:
    @pytest.fixture
    def orders(self, purchases, make_item):
        item = make_item("WASHER")
        draft = purchases.create_purchase_order(
            [{"item_id": item.id, "quantity": 10, "unit_cost": 2}], supplier_name="Acme"
        )
        partial = purchases.create_purchase_order(
            [{"item_id": item.id, "quantity": 10, "unit_cost": 3}], supplier_name="Acme"
        )
        purchases.receive_purchase(partial.id, [{"line_id": partial.lines[0].id, "quantity": 4}])
        cancelled = purchases.create_purchase_order(
            [{"item_id": item.id, "quantity": 5, "unit_cost": 100}], supplier_name="Globex"
        )
        purchases.cancel_order(cancelled.id)
        return draft, partial, cancelled

    def test_filter_by_derived_status(self, purchases, orders):
        _, partial, _ = orders
        found, total = purchases.list_purchase_orders(status=PurchaseStatus.PARTIAL)
        assert total == 1
        assert [o.id for o in found] == [partial.id]
        _, total = purchases.list_purchase_orders(status="ORDERED")
        assert total == 0

    def test_filter_by_supplier_and_page(self, purchases, orders):
        found, total = purchases.list_purchase_orders(supplier_name="Acme", per_page=1)
        assert total == 2
        assert len(found) == 1
        found, total = purchases.list_purchase_orders(page=2, per_page=2)
        assert total == 3
        assert len(found) == 1

    def test_stats(self, purchases, orders):
        stats = purchases.get_purchase_stats()
        assert stats.total == 3
        assert stats.by_status["DRAFT"] == 1
        assert stats.by_status["PARTIAL"] == 1
        assert stats.by_status["CANCELLED"] == 1
        assert stats.by_status["RECEIVED"] == 0
        # cancelled orders carry no amount
        assert stats.total_amount == Decimal("50.00")
        (acme,) = stats.by_supplier
        assert acme.supplier_name == "Acme"
        assert acme.order_count == 2
        assert acme.total_amount == Decimal("50.00")
