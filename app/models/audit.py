from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
)

from app.db.base import Base
from app.utils.timezone import now_ist


class AuditLog(Base):
    """
    Edit audit trail.
    Medication edits / deactivations, allocation edits / removals and
    batch write-offs write here, inside the same transaction as the change itself.
    """
    __tablename__ = "audit_logs"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)

    actor = Column(String(120), nullable=False, default="system")
    action = Column(String(20), nullable=False)  # CREATE / UPDATE / DEACTIVATE / DELETE / WRITE_OFF

    table_name = Column(String(255), nullable=False)
    record_id = Column(String(100), nullable=False)  # generic pk, stored as string

    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=now_ist, nullable=False)
