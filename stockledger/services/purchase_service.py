"""
Purchase Service - purchase orders, receipt preview and receipt
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple, Union
from uuid import UUID
import logging

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from stockledger.core import LedgerStore
from stockledger.core.errors import (
    DuplicateRecord, InvalidOrderStatus, InvalidQuantity, InvalidTransaction, InventoryError, ItemNotFound,
    OrderLineNotFound, OrderNotFound, OrderNotReceivable, OverReceipt,
)
from stockledger.models import (
    InventoryItem, PurchaseOrder, PurchaseOrderLine, PurchaseStatus, StockTransaction,
    TxDirection, TxType,
)
from stockledger.schemas.purchase import (
    PurchaseLineCreate, PurchaseStats, ReceiveLine, ReceiveLineResult, ReceivePreview, ReceivePreviewLine,
    SupplierTotal,
)
from .audit_service import record_audit
from .costing import quantize_cost, recompute_weighted_average
from .ledger_service import LedgerService, parse_cost, parse_quantity, parse_uuid

logger = logging.getLogger(__name__)

CLOSED_STATUSES = (PurchaseStatus.RECEIVED, PurchaseStatus.CANCELLED)
# Statuses read off the lines rather than stored
DERIVED_STATUSES = (PurchaseStatus.ORDERED, PurchaseStatus.PARTIAL, PurchaseStatus.RECEIVED)

ReceiveInput = Union[ReceiveLine, dict]


def coerce_receive_line(raw: ReceiveInput) -> ReceiveLine:
    """Validate one requested receipt line, mapping malformed fields to business errors"""
    if isinstance(raw, ReceiveLine):
        return raw
    try:
        return ReceiveLine(**raw)
    except (TypeError, ValidationError) as e:
        fields = set()
        if isinstance(e, ValidationError):
            fields = {err["loc"][0] for err in e.errors() if err.get("loc")}
        if "line_id" in fields:
            raise OrderLineNotFound(f"Malformed order line id: {raw.get('line_id')!r}", line_id=raw.get("line_id"))
        if fields == {"unit_cost"}:
            raise InvalidTransaction(f"Malformed unit cost: {raw.get('unit_cost')!r}", unit_cost=raw.get("unit_cost"))
        quantity = raw.get("quantity") if isinstance(raw, dict) else None
        raise InvalidQuantity(f"Malformed quantity: {quantity!r}", quantity=quantity)


def requested_line_id(raw: ReceiveInput) -> Optional[UUID]:
    value = raw.line_id if isinstance(raw, ReceiveLine) else (raw.get("line_id") if isinstance(raw, dict) else None)
    try:
        return parse_uuid(value, OrderLineNotFound)
    except OrderLineNotFound:
        return None


class PurchaseService:
    """Purchase order lifecycle and stock receipt"""

    def __init__(self, store: LedgerStore, ledger: LedgerService):
        self.store = store
        self.ledger = ledger

    # ===================== ORDERS =====================

    def create_purchase_order(
        self,
        lines: Sequence[Union[PurchaseLineCreate, dict]],
        supplier_name: Optional[str] = None,
        order_number: Optional[str] = None,
        note: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> PurchaseOrder:
        """Create a DRAFT order"""
        lines = [PurchaseLineCreate(**l) if isinstance(l, dict) else l for l in lines]
        if not lines:
            raise InvalidTransaction("A purchase order needs at least one line")

        try:
            with self.store.transaction() as db:
                order = PurchaseOrder(
                    order_number=order_number or self._generate_order_number(db),
                    supplier_name=supplier_name,
                    lifecycle_status=PurchaseStatus.DRAFT.value,
                    note=note,
                )
                for line_no, line in enumerate(lines, start=1):
                    item = db.query(InventoryItem).filter(InventoryItem.id == line.item_id).first()
                    if not item:
                        raise ItemNotFound(f"Inventory item not found: {line.item_id}", item_id=line.item_id)
                    order.lines.append(PurchaseOrderLine(
                        line_no=line_no,
                        item_id=item.id,
                        ordered_quantity=parse_quantity(line.quantity),
                        received_quantity=Decimal("0"),
                        unit_cost=parse_cost(line.unit_cost),
                    ))
                db.add(order)
                db.flush()
                record_audit(
                    db, "purchase_order", order.id, "INSERT",
                    after={"order_number": order.order_number, "status": PurchaseStatus.DRAFT.value, "lines": len(lines)},
                    performed_by=created_by,
                )
        except IntegrityError as e:
            raise DuplicateRecord(f"Order number already exists: {order_number}", order_number=order_number) from e

        logger.info(f"Created purchase order {order.order_number} with {len(lines)} lines")
        return self.get_order(order.id)

    def _generate_order_number(self, db: Session) -> str:
        prefix = f"PO-{datetime.now(timezone.utc).year}-"
        last = db.query(PurchaseOrder.order_number)\
            .filter(PurchaseOrder.order_number.like(f"{prefix}%"))\
            .order_by(PurchaseOrder.order_number.desc())\
            .first()
        seq = 1
        if last:
            try:
                seq = int(last[0].rsplit("-", 1)[-1]) + 1
            except ValueError:
                pass
        return f"{prefix}{seq:04d}"

    def get_order(self, order_id) -> PurchaseOrder:
        order_key = parse_uuid(order_id, OrderNotFound)
        with self.store.session() as db:
            order = self._load_order(db, order_key)
        return order

    def _load_order(self, db: Session, order_id: UUID, lock: bool = False) -> PurchaseOrder:
        query = db.query(PurchaseOrder).options(selectinload(PurchaseOrder.lines).selectinload(PurchaseOrderLine.item))
        if lock:
            query = query.with_for_update()
        order = query.filter(PurchaseOrder.id == order_id).first()
        if not order:
            raise OrderNotFound(f"Purchase order not found: {order_id}", order_id=order_id)
        return order

    def list_purchase_orders(
        self,
        status: Optional[Union[PurchaseStatus, str]] = None,
        supplier_name: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[PurchaseOrder], int]:
        """Orders newest first with the total count; ``status`` filters on the derived status"""
        status = PurchaseStatus(status) if status else None
        with self.store.session() as db:
            query = db.query(PurchaseOrder).options(selectinload(PurchaseOrder.lines))
            if status in DERIVED_STATUSES:
                query = query.filter(PurchaseOrder.lifecycle_status == PurchaseStatus.ORDERED.value)
            elif status:
                query = query.filter(PurchaseOrder.lifecycle_status == status.value)
            if supplier_name:
                query = query.filter(PurchaseOrder.supplier_name == supplier_name)
            if search:
                query = query.filter(PurchaseOrder.order_number.ilike(f"%{search}%"))
            orders = query.order_by(PurchaseOrder.created_at.desc()).all()

        if status in DERIVED_STATUSES:
            orders = [o for o in orders if o.status == status]
        offset = (page - 1) * per_page
        return orders[offset:offset + per_page], len(orders)

    def get_purchase_stats(self) -> PurchaseStats:
        """Order counts by status and ordered amounts per supplier; cancelled orders carry no amount"""
        with self.store.session() as db:
            orders = db.query(PurchaseOrder).options(selectinload(PurchaseOrder.lines)).all()

        by_status = {status.value: 0 for status in PurchaseStatus}
        suppliers: Dict[Optional[str], SupplierTotal] = {}
        total_amount = Decimal("0")
        for order in orders:
            by_status[order.status.value] += 1
            if order.status == PurchaseStatus.CANCELLED:
                continue
            amount = order.total_amount
            total_amount += amount
            entry = suppliers.setdefault(
                order.supplier_name,
                SupplierTotal(supplier_name=order.supplier_name, order_count=0, total_amount=Decimal("0")),
            )
            entry.order_count += 1
            entry.total_amount += amount

        by_supplier = sorted(suppliers.values(), key=lambda s: s.total_amount, reverse=True)
        for entry in by_supplier:
            entry.total_amount = quantize_cost(entry.total_amount)
        return PurchaseStats(
            total=len(orders),
            total_amount=quantize_cost(total_amount),
            by_status=by_status,
            by_supplier=by_supplier,
        )

    def place_order(self, order_id, performed_by: Optional[str] = None) -> PurchaseOrder:
        """DRAFT -> ORDERED"""
        order_key = parse_uuid(order_id, OrderNotFound)
        with self.store.transaction() as db:
            order = self._load_order(db, order_key, lock=True)
            if order.status != PurchaseStatus.DRAFT:
                raise InvalidOrderStatus(
                    f"Only DRAFT orders can be placed; {order.order_number} is {order.status.value}",
                    order_id=order.id,
                    status=order.status.value,
                )
            order.lifecycle_status = PurchaseStatus.ORDERED.value
            order.ordered_at = datetime.now(timezone.utc)
            record_audit(
                db, "purchase_order", order.id, "STATUS_CHANGE",
                before={"status": PurchaseStatus.DRAFT.value},
                after={"status": PurchaseStatus.ORDERED.value},
                performed_by=performed_by,
            )
        logger.info(f"Purchase order {order.order_number} placed")
        return self.get_order(order_key)

    def cancel_order(self, order_id, performed_by: Optional[str] = None) -> PurchaseOrder:
        """DRAFT/ORDERED -> CANCELLED (terminal)"""
        order_key = parse_uuid(order_id, OrderNotFound)
        with self.store.transaction() as db:
            order = self._load_order(db, order_key, lock=True)
            previous = order.status
            if previous not in (PurchaseStatus.DRAFT, PurchaseStatus.ORDERED):
                raise InvalidOrderStatus(
                    f"Cannot cancel {order.order_number} in status {previous.value}",
                    order_id=order.id,
                    status=previous.value,
                )
            order.lifecycle_status = PurchaseStatus.CANCELLED.value
            record_audit(
                db, "purchase_order", order.id, "STATUS_CHANGE",
                before={"status": previous.value},
                after={"status": PurchaseStatus.CANCELLED.value},
                performed_by=performed_by,
            )
        logger.info(f"Purchase order {order.order_number} cancelled")
        return self.get_order(order_key)

    # ===================== RECEIVING =====================

    def _receive_requests(self, order: PurchaseOrder, lines: Optional[Sequence[ReceiveInput]]) -> List[ReceiveInput]:
        """Requested lines, or every open line at its remaining quantity"""
        if lines is None:
            return [
                ReceiveLine(line_id=line.id, quantity=line.remaining_quantity)
                for line in order.lines
                if line.remaining_quantity > 0
            ]
        return list(lines)

    def preview_receive(self, order_id, lines: Optional[Sequence[ReceiveInput]] = None) -> ReceivePreview:
        """
        Impact of receiving ``lines`` on quantities and weighted-average costs.

        Read-only and lock-free: the figures may already be stale when a
        receipt follows. Lines that would be refused are reported with their
        error instead of raising.
        """
        order_key = parse_uuid(order_id, OrderNotFound)
        with self.store.session() as db:
            order = self._load_order(db, order_key)
        status = order.status
        if status in CLOSED_STATUSES:
            raise OrderNotReceivable(
                f"Purchase order {order.order_number} is {status.value}",
                order_id=order.id,
                status=status.value,
            )

        order_lines = {line.id: line for line in order.lines}
        # Simulated (quantity, cost) per item so repeated items stack up
        positions: Dict[UUID, Tuple[Decimal, Decimal]] = {}
        pending: Dict[UUID, Decimal] = {}
        preview_lines = []
        total_quantity = Decimal("0")
        total_value = Decimal("0")
        cost_delta = Decimal("0")

        for raw in self._receive_requests(order, lines):
            order_line = request = None
            try:
                request = coerce_receive_line(raw)
                order_line = order_lines.get(request.line_id)
                if order_line is None:
                    raise OrderLineNotFound(f"Line {request.line_id} is not on order {order.order_number}")
                quantity = parse_quantity(request.quantity)
                unit_cost = parse_cost(request.unit_cost) if request.unit_cost is not None else Decimal(order_line.unit_cost)
                already = pending.get(order_line.id, Decimal("0"))
                if quantity + already > order_line.remaining_quantity:
                    raise OverReceipt(
                        f"Receiving {quantity} exceeds the {order_line.remaining_quantity} remaining on line {order_line.line_no}"
                    )
            except InventoryError as e:
                preview_lines.append(ReceivePreviewLine(
                    line_id=request.line_id if request is not None else requested_line_id(raw),
                    item_id=order_line.item_id if order_line is not None else None,
                    quantity_to_receive=request.quantity if request is not None else None,
                    error_code=e.code,
                    error_message=e.message,
                ))
                continue

            item = order_line.item
            qty_before, cost_before = positions.get(
                item.id, (Decimal(item.quantity_on_hand), Decimal(item.unit_cost))
            )
            cost_after = recompute_weighted_average(qty_before, cost_before, quantity, unit_cost)
            qty_after = qty_before + quantity
            positions[item.id] = (qty_after, cost_after)
            pending[order_line.id] = already + quantity

            preview_lines.append(ReceivePreviewLine(
                line_id=order_line.id,
                item_id=item.id,
                sku=item.sku,
                quantity_to_receive=quantity,
                unit_cost=unit_cost,
                quantity_before=qty_before,
                quantity_after=qty_after,
                cost_before=cost_before,
                cost_after=cost_after,
            ))
            total_quantity += quantity
            total_value += quantity * unit_cost
            cost_delta += cost_after - cost_before

        return ReceivePreview(
            order_id=order.id,
            order_number=order.order_number,
            status=status.value,
            lines=preview_lines,
            total_quantity=total_quantity,
            total_value=total_value,
            cost_delta=cost_delta,
        )

    def receive_purchase(
        self,
        order_id,
        lines: Optional[Sequence[ReceiveInput]] = None,
        received_by: Optional[str] = None,
    ) -> List[ReceiveLineResult]:
        """
        Receive stock against an order, one ledger receipt per line.

        Lines commit independently: a refused or malformed line is reported
        in its own result and does not undo lines already received in the
        same call.
        """
        order_key = parse_uuid(order_id, OrderNotFound)
        with self.store.session() as db:
            order = self._load_order(db, order_key)
        status = order.status
        if status in CLOSED_STATUSES:
            raise OrderNotReceivable(
                f"Purchase order {order.order_number} is {status.value}",
                order_id=order.id,
                status=status.value,
            )
        if status == PurchaseStatus.DRAFT:
            # Receiving goods implies the order was placed
            self.place_order(order.id, performed_by=received_by)
            status = PurchaseStatus.ORDERED

        order_lines = {line.id: line for line in order.lines}
        results = []

        for raw in self._receive_requests(order, lines):
            order_line = request = None
            try:
                request = coerce_receive_line(raw)
                order_line = order_lines.get(request.line_id)
                if order_line is None:
                    raise OrderLineNotFound(
                        f"Line {request.line_id} is not on order {order.order_number}",
                        line_id=request.line_id,
                    )
                unit_cost = request.unit_cost if request.unit_cost is not None else order_line.unit_cost
                txn = self.ledger.append_transaction(
                    order_line.item_id,
                    TxDirection.IN,
                    TxType.PURCHASE,
                    request.quantity,
                    unit_cost,
                    reference_id=str(order.id),
                    note=f"Receipt {order.order_number} line {order_line.line_no}",
                    created_by=received_by,
                    companion=self._line_receipt(order.id, order_line.id, received_by),
                )
            except InventoryError as e:
                logger.warning(f"Receipt of a line on {order.order_number} refused: {e.message}")
                results.append(ReceiveLineResult(
                    line_id=request.line_id if request is not None else requested_line_id(raw),
                    success=False,
                    quantity=request.quantity if request is not None else None,
                    item_id=order_line.item_id if order_line is not None else None,
                    error_code=e.code,
                    error_message=e.message,
                ))
                continue

            results.append(ReceiveLineResult(
                line_id=order_line.id,
                success=True,
                quantity=txn.quantity,
                item_id=txn.item_id,
                transaction_id=txn.id,
                unit_cost_after=txn.unit_cost_after,
            ))

        order = self.get_order(order_key)
        if order.status != status:
            with self.store.transaction() as db:
                if order.status == PurchaseStatus.RECEIVED:
                    db.query(PurchaseOrder).filter(PurchaseOrder.id == order_key)\
                        .update({PurchaseOrder.received_at: datetime.now(timezone.utc)}, synchronize_session=False)
                record_audit(
                    db, "purchase_order", order_key, "STATUS_CHANGE",
                    before={"status": status.value},
                    after={"status": order.status.value},
                    performed_by=received_by,
                )

        received = sum(1 for r in results if r.success)
        logger.info(
            f"Receipt on {order.order_number}: {received}/{len(results)} lines committed, status={order.status.value}"
        )
        return results

    def _line_receipt(self, order_id: UUID, line_id: UUID, received_by: Optional[str]):
        """Companion updating the order line in the same unit as the ledger receipt"""
        def apply(db: Session, txn: StockTransaction) -> None:
            order = db.query(PurchaseOrder).filter(PurchaseOrder.id == order_id).first()
            if order.lifecycle_status == PurchaseStatus.CANCELLED.value:
                raise OrderNotReceivable(f"Purchase order {order.order_number} is CANCELLED", order_id=order_id)

            line = db.query(PurchaseOrderLine).filter(PurchaseOrderLine.id == line_id).with_for_update().first()
            remaining = line.remaining_quantity
            if Decimal(txn.quantity) > remaining:
                raise OverReceipt(
                    f"Receiving {txn.quantity} exceeds the {remaining} remaining on line {line.line_no}",
                    line_id=line_id,
                    remaining=remaining,
                    requested=txn.quantity,
                )
            before = Decimal(line.received_quantity or 0)
            line.received_quantity = before + Decimal(txn.quantity)
            record_audit(
                db, "purchase_order", order_id, "RECEIVE",
                before={"line_no": line.line_no, "received_quantity": before},
                after={"line_no": line.line_no, "received_quantity": line.received_quantity, "transaction_id": str(txn.id)},
                performed_by=received_by,
            )
        return apply
