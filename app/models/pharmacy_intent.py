# FILE: app/models/pharmacy_intent.py
from __future__ import annotations

import enum
from datetime import datetime
from typing import List

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, Text,
    ForeignKey, Enum, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.services.ledger_errors import InvalidQuantity
from app.utils.timezone import now_ist

Money = Numeric(14, 2)

_MYSQL_OPTS = {
    "mysql_engine": "InnoDB",
    "mysql_charset": "utf8mb4",
    "mysql_collate": "utf8mb4_unicode_ci",
}


class IntentDepartment(str, enum.Enum):
    """
    Where an intent row currently sits.
    RECLAIM_POOL is a catalog bucket for exhausted rows, never a target for new stock.
    """
    INJECTION_ROOM = "injection room"
    ICU = "icu"
    CAUSATH = "causath"
    NICU = "nicu"
    LABOUR_WORD = "labour word"
    MIONES = "miones"
    MAJOR_OT = "major ot"
    RECLAIM_POOL = "reclaim pool"

    @property
    def is_reclaim_pool(self) -> bool:
        return self is IntentDepartment.RECLAIM_POOL

    @property
    def label(self) -> str:
        if self in (IntentDepartment.ICU, IntentDepartment.NICU):
            return self.value.upper()
        if self is IntentDepartment.MAJOR_OT:
            return "Major OT"
        return self.value.title()

    @classmethod
    def clinical(cls) -> List["IntentDepartment"]:
        return [d for d in cls if not d.is_reclaim_pool]


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


IntentDepartmentType = Enum(
    IntentDepartment,
    name="intent_department",
    values_callable=_enum_values,
    validate_strings=True,
)


class IntentMedicine(Base):
    """
    Units of one medication batch earmarked for a clinical department.

    State:
      active      quantity > 0, department = origin_department
      zero        quantity == 0, still in origin_department (shows in the monitor)
      reclassified quantity == 0, department = RECLAIM_POOL (terminal)

    A reclassified row is never refilled; new units for the same
    department/batch get a new row.
    """
    __tablename__ = "pharmacy_intent_medicines"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_intent_quantity_non_negative"),
        Index("ix_intent_med_batch_dept", "medication_id", "batch_number", "department"),
        Index("ix_intent_department_created", "department", "created_at"),
        _MYSQL_OPTS,
    )

    id = Column(Integer, primary_key=True, index=True)
    medication_id = Column(Integer, ForeignKey("pharmacy_medications.id"), nullable=False, index=True)
    medication_name = Column(String(255), nullable=False, default="")
    batch_number = Column(String(100), nullable=False)

    department = Column(IntentDepartmentType, nullable=False)
    origin_department = Column(IntentDepartmentType, nullable=False)

    quantity = Column(Integer, nullable=False, default=0)
    unit_price = Column(Money, nullable=False, default=0)
    # batch_number was in the batch registry when the units were taken
    batch_tracked = Column(Boolean, nullable=False, default=False)

    created_by = Column(String(120), nullable=False, default="system")
    created_at = Column(DateTime, default=now_ist, nullable=False)
    updated_at = Column(DateTime, default=now_ist, onupdate=now_ist, nullable=False)
    reclassified_at = Column(DateTime, nullable=True)

    medication = relationship("Medication")

    @property
    def is_reclassified(self) -> bool:
        return self.department == IntentDepartment.RECLAIM_POOL

    @property
    def state(self) -> str:
        if self.is_reclassified:
            return "reclassified"
        return "active" if (self.quantity or 0) > 0 else "zero"

    def reclassify_to_reclaim_pool(self, at: datetime) -> None:
        """zero -> reclassified. The only way a row enters the reclaim pool."""
        if self.is_reclassified:
            raise InvalidQuantity(
                f"Allocation {self.id} is already in the reclaim pool.",
                quantity=self.quantity,
            )
        if (self.quantity or 0) != 0:
            raise InvalidQuantity(
                f"Allocation {self.id} still holds {self.quantity} units; only empty allocations can be reclassified.",
                quantity=self.quantity,
                limit=0,
            )
        self.department = IntentDepartment.RECLAIM_POOL
        self.reclassified_at = at


class MovedMedicine(Base):
    """
    Append-only audit of units leaving a department for the reclaim pool.
    Snapshots batch and price so history survives later edits.
    """
    __tablename__ = "pharmacy_moved_medicines"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_moved_quantity_non_negative"),
        Index("ix_moved_medication_created", "medication_id", "created_at"),
        Index("ix_moved_from_department", "from_department", "created_at"),
        _MYSQL_OPTS,
    )

    id = Column(Integer, primary_key=True, index=True)
    medication_id = Column(Integer, ForeignKey("pharmacy_medications.id"), nullable=False, index=True)
    # snapshot reference: the allocation row may later be removed
    allocation_id = Column(Integer, nullable=False, index=True)

    quantity = Column(Integer, nullable=False)
    from_department = Column(IntentDepartmentType, nullable=False)
    to_department = Column(IntentDepartmentType, nullable=False, default=IntentDepartment.RECLAIM_POOL)

    batch_number = Column(String(100), nullable=False)
    unit_price = Column(Money, nullable=False, default=0)

    actor = Column(String(120), nullable=False, default="system")
    reason = Column(Text, nullable=False, default="")

    created_at = Column(DateTime, default=now_ist, nullable=False)

    medication = relationship("Medication")
