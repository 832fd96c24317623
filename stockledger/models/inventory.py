"""
Inventory Models

- InventoryItem (cached on-hand quantity and weighted-average unit cost)
- StockTransaction (append-only movements; the source of truth for quantity)
"""
import enum

from sqlalchemy import Column, String, Numeric, Boolean, DateTime, ForeignKey, Text, Index, Uuid
from sqlalchemy.orm import relationship
from stockledger.core import Base
from .base import UUIDMixin, TimestampMixin, utcnow


class TxDirection(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"


class TxType(str, enum.Enum):
    PURCHASE = "PURCHASE"
    PRODUCTION = "PRODUCTION"
    ADJUSTMENT = "ADJUSTMENT"
    SALE = "SALE"
    RESERVE = "RESERVE"
    RELEASE = "RELEASE"
    INITIAL = "INITIAL"
    CORRECTION = "CORRECTION"


# Directions each type may be posted with
ALLOWED_DIRECTIONS = {
    TxType.PURCHASE: {TxDirection.IN},
    TxType.RELEASE: {TxDirection.IN},
    TxType.INITIAL: {TxDirection.IN},
    TxType.SALE: {TxDirection.OUT},
    TxType.RESERVE: {TxDirection.OUT},
    TxType.PRODUCTION: {TxDirection.IN, TxDirection.OUT},
    TxType.ADJUSTMENT: {TxDirection.IN, TxDirection.OUT},
    TxType.CORRECTION: {TxDirection.IN, TxDirection.OUT},
}

# OUT types allowed to drive quantity_on_hand below zero (known-loss overrides)
NEGATIVE_STOCK_OVERRIDES = {TxType.ADJUSTMENT, TxType.CORRECTION}

# IN types whose unit cost is blended into the item's weighted average
COST_BEARING_TYPES = {TxType.PURCHASE, TxType.ADJUSTMENT, TxType.PRODUCTION, TxType.INITIAL}


class InventoryItem(Base, UUIDMixin, TimestampMixin):
    """Stock-keeping item with its denormalized balance"""
    __tablename__ = "inventory_item"

    sku = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(300), nullable=False)
    unit = Column(String(20), nullable=False, default="PIECE")  # PIECE, METER, KG, ...
    is_active = Column(Boolean, nullable=False, default=True)

    # Cache - verified against the ledger by reconciliation
    quantity_on_hand = Column(Numeric(18, 4), nullable=False, default=0)
    unit_cost = Column(Numeric(14, 2), nullable=False, default=0)  # weighted average
    last_cost = Column(Numeric(14, 2))
    last_received_at = Column(DateTime(timezone=True))

    reorder_level = Column(Numeric(18, 4))

    # Relationships
    transactions = relationship("StockTransaction", back_populates="item", order_by="StockTransaction.created_at")

    def __repr__(self):
        return f"<InventoryItem {self.sku} qty={self.quantity_on_hand} cost={self.unit_cost}>"


class StockTransaction(Base, UUIDMixin):
    """Stock Movement Ledger - rows are never updated or deleted"""
    __tablename__ = "stock_transaction"
    __table_args__ = (
        Index("ix_stock_transaction_item_created", "item_id", "created_at"),
    )

    item_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_item.id"), nullable=False)

    direction = Column(String(3), nullable=False)  # IN, OUT
    type = Column(String(20), nullable=False, index=True)  # TxType values
    quantity = Column(Numeric(18, 4), nullable=False)  # always positive
    unit_cost = Column(Numeric(14, 2))  # NULL for OUT and cost-less IN

    # Snapshots after this movement
    balance_after = Column(Numeric(18, 4), nullable=False)
    unit_cost_after = Column(Numeric(14, 2), nullable=False)

    # Reference
    reference_id = Column(String(64), index=True)  # purchase order / batch / sales order
    reason = Column(Text)
    corrects_transaction_id = Column(Uuid(as_uuid=True), ForeignKey("stock_transaction.id"))

    # Metadata
    note = Column(Text)
    created_by = Column(String(100))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    item = relationship("InventoryItem", back_populates="transactions")

    @property
    def signed_quantity(self):
        return self.quantity if self.direction == TxDirection.IN else -self.quantity

    def __repr__(self):
        return f"<StockTransaction {self.direction} {self.type} {self.quantity} item={self.item_id}>"
