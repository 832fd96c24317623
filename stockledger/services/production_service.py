"""
Production Service - BOM models, batches, material consumption and completion
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_FLOOR
from typing import List, Optional, Sequence, Tuple, Union
from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from stockledger.core import LedgerStore
from stockledger.core.errors import (
    BatchNotFound, DuplicateRecord, InsufficientStock, InvalidBatchStatus, InvalidQuantity,
    InventoryError, ItemNotFound, ModelNotFound,
)
from stockledger.models import (
    BatchConsumption, BatchStatus, BOMLine, InventoryItem, ProductionBatch, ProductModel,
    StockTransaction, TxDirection, TxType,
)
from stockledger.schemas.production import (
    BOMLineCreate, CompletionResult, ConsumedLine, ConsumptionPreview, ConsumptionResult,
    CostBreakdown, RequirementLine,
)
from .audit_service import record_audit
from .costing import quantize_cost, quantize_quantity, to_decimal
from .ledger_service import LedgerService, parse_cost, parse_quantity, parse_uuid

logger = logging.getLogger(__name__)

CONSUMABLE_STATUSES = (BatchStatus.PLANNED.value, BatchStatus.IN_PROGRESS.value)


class ProductionService:
    """Turns components into finished goods through the ledger"""

    def __init__(self, store: LedgerStore, ledger: LedgerService):
        self.store = store
        self.ledger = ledger

    def _batch_lock(self, batch_id: UUID):
        return self.ledger.locks.hold(("batch", batch_id), timeout=self.ledger.lock_timeout)

    # ===================== MODELS =====================

    def create_model(
        self,
        sku: str,
        name: str,
        bom: Sequence[Union[BOMLineCreate, dict]] = (),
        finished_item_id=None,
    ) -> ProductModel:
        bom = [BOMLineCreate(**b) if isinstance(b, dict) else b for b in bom]
        finished_key = parse_uuid(finished_item_id) if finished_item_id else None

        try:
            with self.store.transaction() as db:
                if finished_key and not db.query(InventoryItem).filter(InventoryItem.id == finished_key).first():
                    raise ItemNotFound(f"Finished item not found: {finished_item_id}", item_id=finished_item_id)

                model = ProductModel(sku=sku, name=name, finished_item_id=finished_key)
                for line in bom:
                    if not db.query(InventoryItem).filter(InventoryItem.id == line.component_item_id).first():
                        raise ItemNotFound(
                            f"Component item not found: {line.component_item_id}",
                            item_id=line.component_item_id,
                        )
                    waste_factor = to_decimal(line.waste_factor)
                    if waste_factor < 1:
                        raise InvalidQuantity(f"Waste factor must be at least 1, got {waste_factor}")
                    model.bom_lines.append(BOMLine(
                        component_item_id=line.component_item_id,
                        quantity_per_unit=parse_quantity(line.quantity_per_unit),
                        waste_factor=waste_factor,
                    ))
                db.add(model)
                db.flush()
        except IntegrityError as e:
            raise DuplicateRecord(f"Model {sku} already exists or repeats a component", sku=sku) from e

        logger.info(f"Created product model {sku} with {len(bom)} BOM lines")
        return self.get_model(model.id)

    def get_model(self, model_id) -> ProductModel:
        model_key = parse_uuid(model_id, ModelNotFound)
        with self.store.session() as db:
            model = db.query(ProductModel)\
                .options(selectinload(ProductModel.bom_lines).selectinload(BOMLine.component_item))\
                .filter(ProductModel.id == model_key)\
                .first()
        if not model:
            raise ModelNotFound(f"Product model not found: {model_id}", model_id=model_id)
        return model

    # ===================== BATCHES =====================

    def create_batch(
        self,
        model_id,
        planned_quantity,
        labor_cost=0,
        overhead_cost=0,
        note: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> ProductionBatch:
        model_key = parse_uuid(model_id, ModelNotFound)
        planned = parse_quantity(planned_quantity)

        try:
            with self.store.transaction() as db:
                if not db.query(ProductModel).filter(ProductModel.id == model_key).first():
                    raise ModelNotFound(f"Product model not found: {model_id}", model_id=model_id)
                batch = ProductionBatch(
                    batch_number=self._generate_batch_number(db),
                    model_id=model_key,
                    status=BatchStatus.PLANNED.value,
                    planned_quantity=planned,
                    labor_cost=parse_cost(labor_cost or 0),
                    overhead_cost=parse_cost(overhead_cost or 0),
                    note=note,
                )
                db.add(batch)
                db.flush()
                record_audit(
                    db, "production_batch", batch.id, "INSERT",
                    after={"batch_number": batch.batch_number, "status": batch.status, "planned_quantity": planned},
                    performed_by=created_by,
                )
        except IntegrityError as e:
            raise DuplicateRecord("Batch number already taken, retry the create") from e

        logger.info(f"Created batch {batch.batch_number} for {planned} units")
        return batch

    def _generate_batch_number(self, db: Session) -> str:
        prefix = f"LOT-{datetime.now(timezone.utc).year}-"
        last = db.query(ProductionBatch.batch_number)\
            .filter(ProductionBatch.batch_number.like(f"{prefix}%"))\
            .order_by(ProductionBatch.batch_number.desc())\
            .first()
        seq = 1
        if last:
            try:
                seq = int(last[0].rsplit("-", 1)[-1]) + 1
            except ValueError:
                pass
        return f"{prefix}{seq:04d}"

    def get_batch(self, batch_id) -> ProductionBatch:
        batch_key = parse_uuid(batch_id, BatchNotFound)
        with self.store.session() as db:
            return self._load_batch(db, batch_key)

    def _load_batch(self, db: Session, batch_id: UUID, lock: bool = False) -> ProductionBatch:
        query = db.query(ProductionBatch).options(
            selectinload(ProductionBatch.consumptions),
            selectinload(ProductionBatch.model).selectinload(ProductModel.bom_lines).selectinload(BOMLine.component_item),
        )
        if lock:
            query = query.with_for_update()
        batch = query.filter(ProductionBatch.id == batch_id).first()
        if not batch:
            raise BatchNotFound(f"Production batch not found: {batch_id}", batch_id=batch_id)
        return batch

    def list_batches(
        self,
        status: Optional[Union[BatchStatus, str]] = None,
        model_id=None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[ProductionBatch], int]:
        """Batches newest first with the total count"""
        with self.store.session() as db:
            query = db.query(ProductionBatch)
            if status:
                query = query.filter(ProductionBatch.status == BatchStatus(status).value)
            if model_id:
                query = query.filter(ProductionBatch.model_id == parse_uuid(model_id, ModelNotFound))
            total = query.count()
            batches = query.options(selectinload(ProductionBatch.model))\
                .order_by(ProductionBatch.created_at.desc())\
                .offset((page - 1) * per_page)\
                .limit(per_page)\
                .all()
        return batches, total

    def start_batch(self, batch_id, performed_by: Optional[str] = None) -> ProductionBatch:
        """PLANNED -> IN_PROGRESS"""
        batch_key = parse_uuid(batch_id, BatchNotFound)
        with self._batch_lock(batch_key):
            with self.store.transaction() as db:
                batch = self._load_batch(db, batch_key, lock=True)
                if batch.status != BatchStatus.PLANNED.value:
                    raise InvalidBatchStatus(
                        f"Batch {batch.batch_number} is {batch.status}, expected PLANNED",
                        batch_id=batch.id,
                        status=batch.status,
                    )
                batch.status = BatchStatus.IN_PROGRESS.value
                batch.started_at = datetime.now(timezone.utc)
                record_audit(
                    db, "production_batch", batch.id, "STATUS_CHANGE",
                    before={"status": BatchStatus.PLANNED.value},
                    after={"status": BatchStatus.IN_PROGRESS.value},
                    performed_by=performed_by,
                )
        logger.info(f"Batch {batch.batch_number} started")
        return self.get_batch(batch_key)

    # ===================== CONSUMPTION =====================

    @staticmethod
    def _requirements(batch: ProductionBatch) -> List[Tuple[BOMLine, Decimal]]:
        """(bom line, required quantity) per component for the batch's planned quantity"""
        planned = Decimal(batch.planned_quantity)
        return [
            (line, quantize_quantity(Decimal(line.quantity_per_unit) * Decimal(line.waste_factor) * planned))
            for line in batch.model.bom_lines
        ]

    def _check_consumable(self, batch: ProductionBatch) -> None:
        if batch.status not in CONSUMABLE_STATUSES:
            raise InvalidBatchStatus(
                f"Batch {batch.batch_number} is {batch.status}; materials can only be consumed while PLANNED or IN_PROGRESS",
                batch_id=batch.id,
                status=batch.status,
            )

    def preview_consumption(self, batch_id) -> ConsumptionPreview:
        """
        Material requirements of a batch against current stock.

        Shortages are reported, not raised. max_producible is how many whole
        units current stock could cover, capped at the planned quantity.
        """
        batch_key = parse_uuid(batch_id, BatchNotFound)
        with self.store.session() as db:
            batch = self._load_batch(db, batch_key)
        self._check_consumable(batch)

        planned = Decimal(batch.planned_quantity)
        requirements = []
        materials_cost = Decimal("0")
        max_producible = planned

        for line, required in self._requirements(batch):
            item = line.component_item
            available = Decimal(item.quantity_on_hand)
            shortage = max(Decimal("0"), required - available)
            total_cost = quantize_cost(required * Decimal(item.unit_cost))
            materials_cost += total_cost

            per_unit = Decimal(line.quantity_per_unit) * Decimal(line.waste_factor)
            coverable = (available / per_unit).to_integral_value(rounding=ROUND_FLOOR) if available > 0 else Decimal("0")
            max_producible = min(max_producible, coverable)

            requirements.append(RequirementLine(
                item_id=item.id,
                sku=item.sku,
                name=item.name,
                quantity_per_unit=line.quantity_per_unit,
                waste_factor=line.waste_factor,
                required_quantity=required,
                available_quantity=available,
                shortage=shortage,
                unit_cost=item.unit_cost,
                total_cost=total_cost,
                sufficient=shortage == 0,
            ))

        return ConsumptionPreview(
            batch_id=batch.id,
            batch_number=batch.batch_number,
            status=batch.status,
            planned_quantity=planned,
            requirements=requirements,
            feasible=all(r.sufficient for r in requirements),
            materials_cost=quantize_cost(materials_cost),
            max_producible=max_producible,
        )

    def consume_production(self, batch_id, created_by: Optional[str] = None) -> ConsumptionResult:
        """
        Consume every BOM component of a batch, all or nothing.

        All components are checked against stock first; the first shortage
        raises InsufficientStock and nothing is posted. If a component still
        runs short while posting, the components already consumed are put
        back with CORRECTION receipts linked to their consumption rows.
        """
        batch_key = parse_uuid(batch_id, BatchNotFound)
        with self._batch_lock(batch_key):
            with self.store.session() as db:
                batch = self._load_batch(db, batch_key)
                self._check_consumable(batch)
                if batch.consumptions:
                    raise InvalidBatchStatus(
                        f"Materials for batch {batch.batch_number} were already consumed",
                        batch_id=batch.id,
                        status=batch.status,
                    )
                requirements = self._requirements(batch)

                for line, required in requirements:
                    item = db.query(InventoryItem).filter(InventoryItem.id == line.component_item_id).first()
                    available = Decimal(item.quantity_on_hand)
                    if available < required:
                        logger.warning(
                            f"Batch {batch.batch_number} blocked: {item.sku} has {available}, needs {required}"
                        )
                        raise InsufficientStock(
                            f"Insufficient stock for {item.sku}. Available: {available}, required: {required}",
                            item_id=item.id,
                            sku=item.sku,
                            available=available,
                            requested=required,
                            batch_id=batch.id,
                        )

            consumed: List[StockTransaction] = []
            try:
                for line, required in requirements:
                    txn = self.ledger.append_transaction(
                        line.component_item_id,
                        TxDirection.OUT,
                        TxType.PRODUCTION,
                        required,
                        reference_id=str(batch.id),
                        note=f"Consumed by {batch.batch_number}",
                        created_by=created_by,
                        companion=self._record_consumption(batch.id),
                    )
                    consumed.append(txn)
            except InventoryError:
                self._compensate(batch, consumed, created_by)
                raise

            materials_cost = quantize_cost(sum(
                (Decimal(t.quantity) * Decimal(t.unit_cost_after) for t in consumed), Decimal("0")
            ))
            now = datetime.now(timezone.utc)
            with self.store.transaction() as db:
                row = self._load_batch(db, batch_key, lock=True)
                row.materials_cost = materials_cost
                row.consumed_at = now
                previous = row.status
                if row.status == BatchStatus.PLANNED.value:
                    row.status = BatchStatus.IN_PROGRESS.value
                    row.started_at = now
                status = row.status
                record_audit(
                    db, "production_batch", row.id, "CONSUME",
                    before={"status": previous},
                    after={"status": status, "components": len(consumed), "materials_cost": materials_cost},
                    performed_by=created_by,
                )

        logger.info(f"Batch {batch.batch_number} consumed {len(consumed)} components, materials={materials_cost}")
        return ConsumptionResult(
            batch_id=batch.id,
            status=status,
            consumed=[
                ConsumedLine(item_id=t.item_id, quantity=t.quantity, unit_cost=t.unit_cost_after, transaction_id=t.id)
                for t in consumed
            ],
            materials_cost=materials_cost,
        )

    def _record_consumption(self, batch_id: UUID):
        def apply(db: Session, txn: StockTransaction) -> None:
            db.add(BatchConsumption(
                batch_id=batch_id,
                item_id=txn.item_id,
                transaction_id=txn.id,
                quantity=txn.quantity,
                unit_cost=txn.unit_cost_after,
            ))
        return apply

    def _compensate(self, batch: ProductionBatch, consumed: List[StockTransaction], created_by: Optional[str]) -> int:
        """
        Put back every consumed component. A failed return is logged and the
        rest are still attempted; its consumption row stays on the batch so
        cancel_batch can return it later. Returns the number of failures.
        """
        failures = 0
        for txn in reversed(consumed):
            logger.warning(f"Reverting consumption of {txn.quantity} on item {txn.item_id} for {batch.batch_number}")
            try:
                self.ledger.append_transaction(
                    txn.item_id,
                    TxDirection.IN,
                    TxType.CORRECTION,
                    txn.quantity,
                    reference_id=str(batch.id),
                    reason=f"Partial consumption of {batch.batch_number} rolled back",
                    corrects_transaction_id=txn.id,
                    created_by=created_by,
                    companion=self._drop_consumption(txn.id),
                )
            except InventoryError as e:
                failures += 1
                logger.error(
                    f"Could not revert consumption {txn.id} of item {txn.item_id} for {batch.batch_number}: {e.message}"
                )
        return failures

    def _drop_consumption(self, transaction_id: UUID):
        def apply(db: Session, txn: StockTransaction) -> None:
            db.query(BatchConsumption)\
                .filter(BatchConsumption.transaction_id == transaction_id)\
                .delete(synchronize_session=False)
        return apply

    # ===================== COMPLETION =====================

    def complete_batch(
        self,
        batch_id,
        produced_quantity,
        waste_quantity=0,
        performed_by: Optional[str] = None,
    ) -> CompletionResult:
        """
        Close an IN_PROGRESS batch and cost its output.

        unit cost = (materials + labor + overhead) / produced quantity. When
        the model names a finished item, the produced quantity is received
        into it at that cost in the same unit of work that closes the batch.
        A batch whose model has a BOM must have consumed its materials first;
        a model without BOM lines completes at its charges alone.
        """
        batch_key = parse_uuid(batch_id, BatchNotFound)
        produced = parse_quantity(produced_quantity)
        waste = quantize_quantity(to_decimal(waste_quantity or 0))
        if waste < 0:
            raise InvalidQuantity(f"Waste quantity cannot be negative, got {waste_quantity}", quantity=waste_quantity)

        with self._batch_lock(batch_key):
            with self.store.session() as db:
                batch = self._load_batch(db, batch_key)
            if batch.status != BatchStatus.IN_PROGRESS.value:
                raise InvalidBatchStatus(
                    f"Batch {batch.batch_number} is {batch.status}, expected IN_PROGRESS",
                    batch_id=batch.id,
                    status=batch.status,
                )
            consumptions = [c for c in batch.consumptions if not c.is_returned]
            if batch.model.bom_lines and not consumptions:
                raise InvalidBatchStatus(
                    f"Materials for batch {batch.batch_number} have not been consumed",
                    batch_id=batch.id,
                    status=batch.status,
                )

            materials = quantize_cost(sum(
                (Decimal(c.quantity) * Decimal(c.unit_cost) for c in consumptions), Decimal("0")
            ))
            labor = Decimal(batch.labor_cost or 0)
            overhead = Decimal(batch.overhead_cost or 0)
            total = quantize_cost(materials + labor + overhead)
            unit_cost = quantize_cost(total / produced)
            costs = CostBreakdown(
                materials_cost=materials,
                labor_cost=labor,
                overhead_cost=overhead,
                total_cost=total,
                unit_cost=unit_cost,
            )

            close = self._close_batch(batch_key, produced, waste, costs, performed_by)
            finished_item_id = batch.model.finished_item_id
            finished_txn = None
            if finished_item_id:
                finished_txn = self.ledger.append_transaction(
                    finished_item_id,
                    TxDirection.IN,
                    TxType.PRODUCTION,
                    produced,
                    unit_cost,
                    reference_id=str(batch.id),
                    note=f"Output of {batch.batch_number}",
                    created_by=performed_by,
                    companion=lambda db, txn: close(db),
                )
            else:
                with self.store.transaction() as db:
                    close(db)

        logger.info(
            f"Batch {batch.batch_number} completed: {produced} units at {unit_cost} "
            f"(materials={materials}, labor={labor}, overhead={overhead})"
        )
        return CompletionResult(
            batch_id=batch.id,
            status=BatchStatus.DONE.value,
            produced_quantity=produced,
            costs=costs,
            finished_item_id=finished_item_id,
            finished_transaction_id=finished_txn.id if finished_txn else None,
        )

    def _close_batch(
        self,
        batch_id: UUID,
        produced: Decimal,
        waste: Decimal,
        costs: CostBreakdown,
        performed_by: Optional[str] = None,
    ):
        def apply(db: Session) -> None:
            row = db.query(ProductionBatch).filter(ProductionBatch.id == batch_id).with_for_update().first()
            if row.status != BatchStatus.IN_PROGRESS.value:
                raise InvalidBatchStatus(
                    f"Batch {row.batch_number} is {row.status}, expected IN_PROGRESS",
                    batch_id=batch_id,
                    status=row.status,
                )
            row.status = BatchStatus.DONE.value
            row.produced_quantity = produced
            row.waste_quantity = waste
            row.materials_cost = costs.materials_cost
            row.total_cost = costs.total_cost
            row.unit_cost = costs.unit_cost
            row.completed_at = datetime.now(timezone.utc)
            record_audit(
                db, "production_batch", batch_id, "STATUS_CHANGE",
                before={"status": BatchStatus.IN_PROGRESS.value},
                after={"status": BatchStatus.DONE.value, "produced_quantity": produced, "unit_cost": costs.unit_cost},
                performed_by=performed_by,
            )
        return apply

    def cancel_batch(self, batch_id, reason: Optional[str] = None, performed_by: Optional[str] = None) -> ProductionBatch:
        """
        Cancel a PLANNED/IN_PROGRESS batch, returning consumed materials at their consumption cost.

        Each return is marked on its consumption row in the same unit as the
        receipt, so a cancel that fails half way can be retried and only puts
        back what is still out.
        """
        batch_key = parse_uuid(batch_id, BatchNotFound)
        with self._batch_lock(batch_key):
            with self.store.session() as db:
                batch = self._load_batch(db, batch_key)
            self._check_consumable(batch)

            pending = [c for c in batch.consumptions if not c.is_returned]
            for consumption in pending:
                self.ledger.append_transaction(
                    consumption.item_id,
                    TxDirection.IN,
                    TxType.ADJUSTMENT,
                    consumption.quantity,
                    consumption.unit_cost,
                    reference_id=str(batch.id),
                    reason=reason or f"Cancelled batch {batch.batch_number}",
                    created_by=performed_by,
                    companion=self._mark_returned(consumption.id),
                )

            with self.store.transaction() as db:
                row = self._load_batch(db, batch_key, lock=True)
                previous = row.status
                row.status = BatchStatus.CANCELLED.value
                if reason:
                    row.note = f"{row.note}\n{reason}" if row.note else reason
                record_audit(
                    db, "production_batch", row.id, "STATUS_CHANGE",
                    before={"status": previous},
                    after={"status": BatchStatus.CANCELLED.value, "returned": len(pending), "reason": reason},
                    performed_by=performed_by,
                )

        logger.info(f"Batch {batch.batch_number} cancelled, {len(pending)} components returned")
        return self.get_batch(batch_key)

    def _mark_returned(self, consumption_id: UUID):
        """Companion flagging a consumption as returned; refuses a second return of the same row"""
        def apply(db: Session, txn: StockTransaction) -> None:
            updated = db.query(BatchConsumption)\
                .filter(BatchConsumption.id == consumption_id, BatchConsumption.returned_transaction_id.is_(None))\
                .update(
                    {
                        BatchConsumption.returned_transaction_id: txn.id,
                        BatchConsumption.returned_at: datetime.now(timezone.utc),
                    },
                    synchronize_session=False,
                )
            if not updated:
                raise InvalidBatchStatus(
                    f"Consumption {consumption_id} was already returned",
                    consumption_id=consumption_id,
                )
        return apply
