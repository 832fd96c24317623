"""
Production Models - finished-good recipes (BOM) and production batches
"""
import enum

from sqlalchemy import Column, String, Numeric, ForeignKey, Text, DateTime, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
from stockledger.core import Base
from .base import UUIDMixin, TimestampMixin, utcnow


class BatchStatus(str, enum.Enum):
    PLANNED = "PLANNED"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


class ProductModel(Base, UUIDMixin, TimestampMixin):
    """Finished-good model owning a bill of materials"""
    __tablename__ = "product_model"

    sku = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(300), nullable=False)
    # Inventory item credited when a batch of this model completes
    finished_item_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_item.id"))

    # Relationships
    bom_lines = relationship("BOMLine", back_populates="model", cascade="all, delete-orphan")
    finished_item = relationship("InventoryItem")


class BOMLine(Base, UUIDMixin):
    """Bill of Materials line - static recipe data"""
    __tablename__ = "bom_line"
    __table_args__ = (
        UniqueConstraint("model_id", "component_item_id", name="uq_bom_line_model_component"),
    )

    model_id = Column(Uuid(as_uuid=True), ForeignKey("product_model.id"), nullable=False, index=True)
    component_item_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_item.id"), nullable=False)
    quantity_per_unit = Column(Numeric(18, 4), nullable=False)
    waste_factor = Column(Numeric(6, 4), nullable=False, default=1)  # 1.05 = 5% material loss

    # Relationships
    model = relationship("ProductModel", back_populates="bom_lines")
    component_item = relationship("InventoryItem")


class ProductionBatch(Base, UUIDMixin, TimestampMixin):
    """Production batch of one model"""
    __tablename__ = "production_batch"

    batch_number = Column(String(30), unique=True, nullable=False, index=True)
    model_id = Column(Uuid(as_uuid=True), ForeignKey("product_model.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=BatchStatus.PLANNED.value)

    planned_quantity = Column(Numeric(18, 4), nullable=False)
    produced_quantity = Column(Numeric(18, 4))
    waste_quantity = Column(Numeric(18, 4))

    # Allocated charges
    labor_cost = Column(Numeric(14, 2), nullable=False, default=0)
    overhead_cost = Column(Numeric(14, 2), nullable=False, default=0)

    # Realized costs (set on consumption / completion)
    materials_cost = Column(Numeric(14, 2))
    total_cost = Column(Numeric(14, 2))
    unit_cost = Column(Numeric(14, 2))

    started_at = Column(DateTime(timezone=True))
    consumed_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    note = Column(Text)

    # Relationships
    model = relationship("ProductModel")
    consumptions = relationship("BatchConsumption", back_populates="batch", cascade="all, delete-orphan")


class BatchConsumption(Base, UUIDMixin):
    """Component consumed by a batch, valued at the item's cost when consumed"""
    __tablename__ = "batch_consumption"

    batch_id = Column(Uuid(as_uuid=True), ForeignKey("production_batch.id"), nullable=False, index=True)
    item_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_item.id"), nullable=False)
    transaction_id = Column(Uuid(as_uuid=True), ForeignKey("stock_transaction.id"), nullable=False)
    quantity = Column(Numeric(18, 4), nullable=False)
    unit_cost = Column(Numeric(14, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Set once the material is put back into stock by a cancellation
    returned_transaction_id = Column(Uuid(as_uuid=True), ForeignKey("stock_transaction.id"))
    returned_at = Column(DateTime(timezone=True))

    # Relationships
    batch = relationship("ProductionBatch", back_populates="consumptions")
    item = relationship("InventoryItem")

    @property
    def is_returned(self) -> bool:
        return self.returned_transaction_id is not None
