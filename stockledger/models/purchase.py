"""
Purchase Order Models
"""
import enum
from decimal import Decimal
from typing import Iterable

from sqlalchemy import Column, String, Integer, Numeric, ForeignKey, Text, DateTime, Uuid
from sqlalchemy.orm import relationship
from stockledger.core import Base
from .base import UUIDMixin, TimestampMixin


class PurchaseStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ORDERED = "ORDERED"
    PARTIAL = "PARTIAL"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


def derive_order_status(lifecycle_status: str, lines: Iterable["PurchaseOrderLine"]) -> PurchaseStatus:
    """
    Status of an order from its stored lifecycle state and its line items.

    Only DRAFT, ORDERED and CANCELLED are ever stored; PARTIAL and RECEIVED
    are read off the received quantities every time.
    """
    lifecycle = PurchaseStatus(lifecycle_status)
    if lifecycle in (PurchaseStatus.CANCELLED, PurchaseStatus.DRAFT):
        return lifecycle

    lines = list(lines)
    if lines and all(Decimal(line.received_quantity or 0) >= Decimal(line.ordered_quantity) for line in lines):
        return PurchaseStatus.RECEIVED
    if any(Decimal(line.received_quantity or 0) > 0 for line in lines):
        return PurchaseStatus.PARTIAL
    return PurchaseStatus.ORDERED


class PurchaseOrder(Base, UUIDMixin, TimestampMixin):
    """Supplier purchase order"""
    __tablename__ = "purchase_order"

    order_number = Column(String(30), unique=True, nullable=False, index=True)
    supplier_name = Column(String(200))
    lifecycle_status = Column(String(20), nullable=False, default=PurchaseStatus.DRAFT.value)
    ordered_at = Column(DateTime(timezone=True))
    received_at = Column(DateTime(timezone=True))
    note = Column(Text)

    # Relationships
    lines = relationship(
        "PurchaseOrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.line_no",
    )

    @property
    def status(self) -> PurchaseStatus:
        return derive_order_status(self.lifecycle_status, self.lines)

    @property
    def total_amount(self) -> Decimal:
        return sum((Decimal(line.ordered_quantity) * Decimal(line.unit_cost) for line in self.lines), Decimal("0"))


class PurchaseOrderLine(Base, UUIDMixin):
    """Purchase order line item"""
    __tablename__ = "purchase_order_line"

    order_id = Column(Uuid(as_uuid=True), ForeignKey("purchase_order.id"), nullable=False, index=True)
    line_no = Column(Integer, nullable=False, default=1)
    item_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_item.id"), nullable=False)

    ordered_quantity = Column(Numeric(18, 4), nullable=False)
    received_quantity = Column(Numeric(18, 4), nullable=False, default=0)
    unit_cost = Column(Numeric(14, 2), nullable=False)

    # Relationships
    order = relationship("PurchaseOrder", back_populates="lines")
    item = relationship("InventoryItem")

    @property
    def remaining_quantity(self) -> Decimal:
        return Decimal(self.ordered_quantity) - Decimal(self.received_quantity or 0)
