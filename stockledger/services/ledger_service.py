"""
Inventory Ledger Service - the single mutation point for stock

Every movement goes through append_transaction, which holds the item's lock
from reading the current balance until the ledger row and the cached
quantity/cost are committed together.
"""
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterator, List, Optional, Sequence, Union
from uuid import UUID
import logging

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from stockledger.core import KeyedLockRegistry, LedgerStore, settings
from stockledger.core.errors import (
    ConcurrencyConflict, DuplicateRecord, InsufficientStock, InvalidQuantity,
    InvalidTransaction, InventoryError, ItemNotFound,
)
from stockledger.models import InventoryItem, StockTransaction, TxDirection, TxType
from stockledger.models.inventory import ALLOWED_DIRECTIONS, COST_BEARING_TYPES, NEGATIVE_STOCK_OVERRIDES
from stockledger.schemas.inventory import StockAvailability, StockAvailabilityLine, StockRequest, ValuationSummary
from .costing import quantize_cost, quantize_quantity, recompute_weighted_average, to_decimal

logger = logging.getLogger(__name__)

# Extra writes committed in the same unit as a ledger row: companion(db, txn)
Companion = Callable[[Session, StockTransaction], None]


def parse_uuid(value: Union[UUID, str], error_cls=ItemNotFound) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise error_cls(f"Unknown id: {value}", id=value)


def parse_quantity(value) -> Decimal:
    """Strictly positive quantity at ledger precision"""
    try:
        quantity = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidQuantity(f"Quantity is not a number: {value!r}", quantity=value)
    if not quantity.is_finite():
        raise InvalidQuantity(f"Quantity is not finite: {value!r}", quantity=value)
    quantity = quantize_quantity(quantity)
    if quantity <= 0:
        raise InvalidQuantity(f"Quantity must be positive, got {value}", quantity=value)
    return quantity


def parse_cost(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        cost = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidTransaction(f"Unit cost is not a number: {value!r}", unit_cost=value)
    if not cost.is_finite() or cost < 0:
        raise InvalidTransaction(f"Unit cost must be a non-negative amount, got {value}", unit_cost=value)
    return quantize_cost(cost)


class LedgerService:
    """Appends stock transactions and maintains the per-item quantity/cost cache"""

    def __init__(
        self,
        store: LedgerStore,
        locks: Optional[KeyedLockRegistry] = None,
        lock_timeout: Optional[float] = None,
    ):
        self.store = store
        self.locks = locks or KeyedLockRegistry()
        self.lock_timeout = settings.LOCK_TIMEOUT_SECONDS if lock_timeout is None else lock_timeout

    # ===================== MOVEMENTS =====================

    def append_transaction(
        self,
        item_id: Union[UUID, str],
        direction: Union[TxDirection, str],
        tx_type: Union[TxType, str],
        quantity,
        unit_cost=None,
        reference_id: Optional[str] = None,
        *,
        reason: Optional[str] = None,
        note: Optional[str] = None,
        corrects_transaction_id: Optional[Union[UUID, str]] = None,
        created_by: Optional[str] = None,
        companion: Optional[Companion] = None,
    ) -> StockTransaction:
        """
        Append one movement and update the item's cached balance.

        IN movements of a cost-bearing type with a unit cost re-blend the
        weighted average; other IN movements only add quantity. OUT movements
        never change the cost and are refused with InsufficientStock when they
        would take the balance below zero, except ADJUSTMENT and CORRECTION.
        """
        direction = self._parse_direction(direction)
        tx_type = self._parse_type(tx_type)
        quantity = parse_quantity(quantity)
        unit_cost = parse_cost(unit_cost)
        self._check_shape(direction, tx_type, unit_cost)
        item_key = parse_uuid(item_id)
        corrects_id = parse_uuid(corrects_transaction_id, InvalidTransaction) if corrects_transaction_id else None

        with self._locked_unit(item_key, f"{direction.value} {tx_type.value} {quantity}") as db:
            txn = self._post(
                db, item_key, direction, tx_type, quantity, unit_cost, reference_id,
                reason=reason, note=note, corrects_id=corrects_id, created_by=created_by,
            )
            if companion is not None:
                companion(db, txn)
                db.flush()

        logger.info(
            f"Posted {txn.direction} {txn.type} qty={txn.quantity} item={txn.item_id} "
            f"ref={txn.reference_id} -> balance={txn.balance_after} cost={txn.unit_cost_after}"
        )
        return txn

    @contextmanager
    def _locked_unit(self, item_key: UUID, label: str) -> Iterator[Session]:
        """Item lock plus one database transaction; lock and commit failures become ConcurrencyConflict"""
        try:
            with self.locks.hold(item_key, timeout=self.lock_timeout):
                with self.store.transaction() as db:
                    yield db
        except OperationalError as e:
            logger.warning(f"Ledger write for item {item_key} failed to lock/commit: {e}")
            raise ConcurrencyConflict(f"Could not commit movement for item {item_key}", item_id=item_key) from e
        except InventoryError as e:
            logger.warning(f"Rejected {label} on item {item_key}: {e.message}")
            raise

    def _post(
        self,
        db: Session,
        item_id: UUID,
        direction: TxDirection,
        tx_type: TxType,
        quantity: Decimal,
        unit_cost: Optional[Decimal],
        reference_id: Optional[str],
        reason: Optional[str] = None,
        note: Optional[str] = None,
        corrects_id: Optional[UUID] = None,
        created_by: Optional[str] = None,
    ) -> StockTransaction:
        item = db.query(InventoryItem).filter(InventoryItem.id == item_id).with_for_update().first()
        if not item:
            raise ItemNotFound(f"Inventory item not found: {item_id}", item_id=item_id)

        if corrects_id is not None:
            corrected = db.query(StockTransaction).filter(StockTransaction.id == corrects_id).first()
            if not corrected or corrected.item_id != item.id:
                raise InvalidTransaction(
                    f"Corrected transaction {corrects_id} does not belong to item {item.sku}",
                    corrects_transaction_id=corrects_id,
                )

        balance_before = Decimal(item.quantity_on_hand or 0)
        cost_before = Decimal(item.unit_cost or 0)
        now = datetime.now(timezone.utc)

        if direction == TxDirection.IN:
            balance_after = balance_before + quantity
            if unit_cost is not None:
                cost_after = recompute_weighted_average(balance_before, cost_before, quantity, unit_cost)
                item.last_cost = unit_cost
                item.last_received_at = now
            else:
                cost_after = cost_before
        else:
            balance_after = balance_before - quantity
            if balance_after < 0 and tx_type not in NEGATIVE_STOCK_OVERRIDES:
                raise InsufficientStock(
                    f"Insufficient stock for {item.sku}. Available: {balance_before}, requested: {quantity}",
                    item_id=item.id,
                    sku=item.sku,
                    available=balance_before,
                    requested=quantity,
                )
            cost_after = cost_before
            unit_cost = None

        txn = StockTransaction(
            item_id=item.id,
            direction=direction.value,
            type=tx_type.value,
            quantity=quantity,
            unit_cost=unit_cost,
            balance_after=balance_after,
            unit_cost_after=cost_after,
            reference_id=reference_id,
            reason=reason,
            corrects_transaction_id=corrects_id,
            note=note,
            created_by=created_by,
            created_at=now,
        )
        db.add(txn)

        item.quantity_on_hand = balance_after
        item.unit_cost = cost_after
        db.flush()
        return txn

    def _parse_direction(self, direction) -> TxDirection:
        try:
            return TxDirection(direction)
        except ValueError:
            raise InvalidTransaction(f"Unknown direction: {direction}", direction=direction)

    def _parse_type(self, tx_type) -> TxType:
        try:
            return TxType(tx_type)
        except ValueError:
            raise InvalidTransaction(f"Unknown transaction type: {tx_type}", type=tx_type)

    def _check_shape(self, direction: TxDirection, tx_type: TxType, unit_cost: Optional[Decimal]) -> None:
        if direction not in ALLOWED_DIRECTIONS[tx_type]:
            raise InvalidTransaction(
                f"{tx_type.value} cannot be posted as {direction.value}",
                direction=direction.value,
                type=tx_type.value,
            )
        if direction == TxDirection.IN:
            if tx_type == TxType.PURCHASE and unit_cost is None:
                raise InvalidTransaction("PURCHASE receipts require a unit cost", type=tx_type.value)
            if unit_cost is not None and tx_type not in COST_BEARING_TYPES:
                raise InvalidTransaction(
                    f"{tx_type.value} movements do not carry a unit cost",
                    type=tx_type.value,
                )

    # ===================== ITEMS =====================

    def create_item(
        self,
        sku: str,
        name: str,
        unit: str = "PIECE",
        opening_quantity=0,
        opening_cost=None,
        reorder_level=None,
    ) -> InventoryItem:
        """
        Create an item; a non-zero opening quantity is posted as an INITIAL
        receipt in the same unit of work, so a refused opening leaves no item.
        """
        try:
            opening_quantity = quantize_quantity(to_decimal(opening_quantity or 0))
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidQuantity(f"Opening quantity is not a number: {opening_quantity!r}", quantity=opening_quantity)
        if not opening_quantity.is_finite() or opening_quantity < 0:
            raise InvalidQuantity("Opening quantity cannot be negative", quantity=opening_quantity)
        opening_cost = parse_cost(opening_cost if opening_cost is not None else 0)

        try:
            with self.store.transaction() as db:
                item = InventoryItem(
                    sku=sku,
                    name=name,
                    unit=unit,
                    quantity_on_hand=Decimal("0"),
                    unit_cost=Decimal("0"),
                    reorder_level=reorder_level,
                    is_active=True,
                )
                db.add(item)
                db.flush()
                if opening_quantity > 0:
                    self._post(
                        db, item.id, TxDirection.IN, TxType.INITIAL, opening_quantity, opening_cost,
                        reference_id=f"INIT-{sku}",
                    )
        except IntegrityError as e:
            raise DuplicateRecord(f"SKU already exists: {sku}", sku=sku) from e

        logger.info(f"Created inventory item {sku} ({item.id}) with {opening_quantity} on hand")
        return item

    def set_item_active(self, item_id, is_active: bool) -> InventoryItem:
        item_key = parse_uuid(item_id)
        with self.store.transaction() as db:
            item = db.query(InventoryItem).filter(InventoryItem.id == item_key).first()
            if not item:
                raise ItemNotFound(f"Inventory item not found: {item_id}", item_id=item_id)
            item.is_active = is_active
        return item

    def get_item(self, item_id) -> InventoryItem:
        item_key = parse_uuid(item_id)
        with self.store.session() as db:
            item = db.query(InventoryItem).filter(InventoryItem.id == item_key).first()
        if not item:
            raise ItemNotFound(f"Inventory item not found: {item_id}", item_id=item_id)
        return item

    def list_items(self, active_only: bool = True) -> List[InventoryItem]:
        with self.store.session() as db:
            query = db.query(InventoryItem)
            if active_only:
                query = query.filter(InventoryItem.is_active == True)
            return query.order_by(InventoryItem.sku).all()

    def list_transactions(self, item_id, limit: int = 50) -> List[StockTransaction]:
        """Most recent movements of one item, newest first"""
        item_key = parse_uuid(item_id)
        with self.store.session() as db:
            return db.query(StockTransaction)\
                .filter(StockTransaction.item_id == item_key)\
                .order_by(StockTransaction.created_at.desc())\
                .limit(limit)\
                .all()

    def inventory_valuation(self) -> ValuationSummary:
        items = self.list_items(active_only=True)
        total_quantity = sum((Decimal(i.quantity_on_hand) for i in items), Decimal("0"))
        total_value = sum((Decimal(i.quantity_on_hand) * Decimal(i.unit_cost) for i in items), Decimal("0"))
        return ValuationSummary(
            item_count=len(items),
            total_quantity=total_quantity,
            total_value=quantize_cost(total_value),
        )

    def low_stock_items(self) -> List[InventoryItem]:
        """Active items at or below their reorder level"""
        with self.store.session() as db:
            return db.query(InventoryItem).filter(
                InventoryItem.is_active == True,
                InventoryItem.reorder_level.isnot(None),
                InventoryItem.quantity_on_hand <= InventoryItem.reorder_level,
            ).order_by(InventoryItem.sku).all()

    # ===================== ADJUSTMENTS & CORRECTIONS =====================

    def adjust_stock(self, item_id, quantity, reason: str, unit_cost=None, created_by: Optional[str] = None) -> StockTransaction:
        """Manual count adjustment; positive quantity adds stock, negative removes it"""
        if not reason or not reason.strip():
            raise InvalidTransaction("Adjustments require a reason")
        try:
            signed = to_decimal(quantity)
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidQuantity(f"Quantity is not a number: {quantity!r}", quantity=quantity)
        direction = TxDirection.IN if signed > 0 else TxDirection.OUT
        return self.append_transaction(
            item_id, direction, TxType.ADJUSTMENT, abs(signed),
            unit_cost=unit_cost if direction == TxDirection.IN else None,
            reference_id=f"ADJ-{datetime.now(timezone.utc):%Y%m%d%H%M%S}",
            reason=reason,
            created_by=created_by,
        )

    def record_correction(
        self,
        item_id,
        direction: Union[TxDirection, str],
        quantity,
        reason: str,
        corrects_transaction_id=None,
        created_by: Optional[str] = None,
    ) -> StockTransaction:
        """Compensating movement; the erroneous row stays in the ledger untouched"""
        if not reason or not reason.strip():
            raise InvalidTransaction("Corrections require a reason")
        return self.append_transaction(
            item_id, direction, TxType.CORRECTION, quantity,
            reference_id=str(corrects_transaction_id) if corrects_transaction_id else None,
            reason=reason,
            corrects_transaction_id=corrects_transaction_id,
            created_by=created_by,
        )

    # ===================== RESERVATIONS =====================

    def reserve_stock(self, item_id, quantity, reference_id: str) -> StockTransaction:
        """Hold stock for a pending order (OUT RESERVE)"""
        if not reference_id:
            raise InvalidTransaction("Reservations require a reference id")
        return self.append_transaction(item_id, TxDirection.OUT, TxType.RESERVE, quantity, reference_id=reference_id)

    def release_reservation(self, item_id, quantity, reference_id: str) -> StockTransaction:
        """Return reserved stock to inventory (IN RELEASE, cost-less)"""
        if not reference_id:
            raise InvalidTransaction("Releases require a reference id")
        return self.append_transaction(
            item_id, TxDirection.IN, TxType.RELEASE, quantity,
            reference_id=reference_id,
            companion=self._reservation_guard(reference_id),
        )

    def fulfil_reservation(self, item_id, quantity, reference_id: str) -> StockTransaction:
        """
        Turn a reservation into a permanent sale: RELEASE the hold, then SALE.

        Both rows commit in one unit under the item lock. If the sale is
        refused the release is rolled back with it and the hold stays.
        """
        if not reference_id:
            raise InvalidTransaction("Fulfilment requires a reference id")
        quantity = parse_quantity(quantity)
        item_key = parse_uuid(item_id)

        with self._locked_unit(item_key, f"fulfilment of {quantity} for {reference_id}") as db:
            release = self._post(db, item_key, TxDirection.IN, TxType.RELEASE, quantity, None, reference_id)
            self._reservation_guard(reference_id)(db, release)
            sale = self._post(db, item_key, TxDirection.OUT, TxType.SALE, quantity, None, reference_id)

        logger.info(
            f"Fulfilled reservation {reference_id}: qty={quantity} item={item_key} -> balance={sale.balance_after}"
        )
        return sale

    def outstanding_reserved(self, item_id, reference_id: str) -> Decimal:
        item_key = parse_uuid(item_id)
        with self.store.session() as db:
            return self._outstanding_reserved(db, item_key, reference_id)

    def _outstanding_reserved(self, db: Session, item_id: UUID, reference_id: str) -> Decimal:
        total = db.query(
            func.coalesce(func.sum(
                case(
                    (StockTransaction.type == TxType.RESERVE.value, StockTransaction.quantity),
                    (StockTransaction.type == TxType.RELEASE.value, -StockTransaction.quantity),
                    else_=0,
                )
            ), 0)
        ).filter(
            StockTransaction.item_id == item_id,
            StockTransaction.reference_id == reference_id,
        ).scalar()
        return quantize_quantity(total or 0)

    def _reservation_guard(self, reference_id: str) -> Companion:
        def guard(db: Session, txn: StockTransaction) -> None:
            outstanding = self._outstanding_reserved(db, txn.item_id, reference_id)
            if outstanding < 0:
                raise InvalidQuantity(
                    f"Release of {txn.quantity} exceeds the stock reserved for {reference_id}",
                    reference_id=reference_id,
                    quantity=txn.quantity,
                )
        return guard

    # ===================== AVAILABILITY =====================

    def check_stock_availability(self, requests: Sequence[Union[StockRequest, dict]]) -> StockAvailability:
        """
        Whether current stock covers every requested quantity.

        Read-only; unknown items are reported with nothing available rather
        than raising.
        """
        requests = [StockRequest(**r) if isinstance(r, dict) else r for r in requests]
        lines = []
        with self.store.session() as db:
            for request in requests:
                requested = parse_quantity(request.quantity)
                item = db.query(InventoryItem).filter(InventoryItem.id == request.item_id).first()
                available = Decimal(item.quantity_on_hand) if item else Decimal("0")
                shortage = max(Decimal("0"), requested - available)
                lines.append(StockAvailabilityLine(
                    item_id=request.item_id,
                    sku=item.sku if item else None,
                    found=item is not None,
                    requested=requested,
                    available=available,
                    shortage=shortage,
                    sufficient=item is not None and shortage == 0,
                ))
        return StockAvailability(available=all(line.sufficient for line in lines), lines=lines)
