from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.models.audit import AuditLog


def log_audit(
    db: Session,
    *,
    actor: Optional[str],
    action: str,  # "CREATE" | "UPDATE" | "DEACTIVATE" | "DELETE" | "WRITE_OFF"
    table_name: str,
    record_id: Any,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Add one audit event to the caller's transaction.
    Not committed here: the audit row lands or rolls back with the change it describes.
    """
    log = AuditLog(
        actor=actor or "system",
        action=action,
        table_name=table_name,
        record_id=str(record_id),
        old_values=old_values,
        new_values=new_values,
    )
    db.add(log)
    return log
