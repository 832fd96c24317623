"""
Audit trail for purchase order and production batch changes
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from stockledger.core import LedgerStore
from stockledger.models import AuditLog


def _jsonable(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if data is None:
        return None
    return {key: str(value) if isinstance(value, Decimal) else value for key, value in data.items()}


def record_audit(
    db: Session,
    table_name: str,
    record_id,
    action: str,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    performed_by: Optional[str] = None,
) -> AuditLog:
    """Add an audit row to the caller's unit of work; it commits with the change it describes"""
    audit = AuditLog(
        table_name=table_name,
        record_id=str(record_id),
        action=action,
        performed_by=performed_by,
        before_data=_jsonable(before),
        after_data=_jsonable(after),
    )
    db.add(audit)
    return audit


def audit_history(store: LedgerStore, table_name: str, record_id) -> List[AuditLog]:
    """Audit rows of one record, oldest first"""
    with store.session() as db:
        return db.query(AuditLog)\
            .filter(AuditLog.table_name == table_name, AuditLog.record_id == str(record_id))\
            .order_by(AuditLog.performed_at)\
            .all()
