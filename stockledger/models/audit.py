"""
Audit Log Model
"""
from sqlalchemy import Column, String, DateTime, JSON
from stockledger.core import Base
from .base import UUIDMixin, utcnow


class AuditLog(Base, UUIDMixin):
    """Audit Log for purchase order and production batch changes"""
    __tablename__ = "audit_log"

    table_name = Column(String(100), nullable=False, index=True)
    record_id = Column(String(50), nullable=False, index=True)

    action = Column(String(20), nullable=False)  # INSERT, STATUS_CHANGE, RECEIVE, CONSUME

    performed_by = Column(String(100))
    performed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    # Before/After data
    before_data = Column(JSON)
    after_data = Column(JSON)
