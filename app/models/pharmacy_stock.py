# FILE: app/models/pharmacy_stock.py
from __future__ import annotations

import enum

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Numeric,
    ForeignKey, Enum, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.utils.timezone import now_ist

Money = Numeric(14, 2)

_MYSQL_OPTS = {
    "mysql_engine": "InnoDB",
    "mysql_charset": "utf8mb4",
    "mysql_collate": "utf8mb4_unicode_ci",
}


class MedicationStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class BatchStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    RETIRED = "RETIRED"


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


class Medication(Base):
    """
    Medication master + cached stock counters.

    available_stock: units not yet allocated to any department
    total_stock:     every unit ever received, less written-off units
                     (sales/moves/allocations do not change it)

    The counters are a cache over the ledgers (receipts, write-offs,
    allocations, movements, sales); app.services.reconciliation rebuilds them.
    """
    __tablename__ = "pharmacy_medications"
    __table_args__ = (
        CheckConstraint("available_stock >= 0", name="ck_med_available_non_negative"),
        CheckConstraint("total_stock >= available_stock", name="ck_med_total_gte_available"),
        Index("ix_med_name_manufacturer", "name", "manufacturer"),
        _MYSQL_OPTS,
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    generic_name = Column(String(255), nullable=False, default="")
    manufacturer = Column(String(255), nullable=False)
    category = Column(String(120), nullable=False, default="")
    unit = Column(String(50), nullable=False, default="unit")

    # "name|manufacturer" lower-cased while active, NULL once deactivated;
    # the unique index keeps one active medication per pair.
    catalog_key = Column(String(520), nullable=True, unique=True)

    available_stock = Column(Integer, nullable=False, default=0)
    total_stock = Column(Integer, nullable=False, default=0)
    minimum_stock_level = Column(Integer, nullable=False, default=0)

    mrp = Column(Money, nullable=False, default=0)
    status = Column(
        Enum(MedicationStatus, name="medication_status", values_callable=_enum_values),
        nullable=False,
        default=MedicationStatus.ACTIVE,
    )

    # optimistic guard for read-modify-write on the counters
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=now_ist, nullable=False)
    updated_at = Column(DateTime, default=now_ist, onupdate=now_ist, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    batches = relationship("MedicineBatch", back_populates="medication", order_by="MedicineBatch.id")
    receipts = relationship("StockReceipt", back_populates="medication", order_by="StockReceipt.id")

    @property
    def is_active(self) -> bool:
        return self.status == MedicationStatus.ACTIVE


class MedicineBatch(Base):
    """
    One received lot of a medication (shared expiry + cost).
    Retired (never deleted) once empty and past expiry.
    """
    __tablename__ = "pharmacy_medicine_batches"
    __table_args__ = (
        UniqueConstraint("medication_id", "batch_number", name="uq_batch_medication_number"),
        CheckConstraint("current_quantity >= 0", name="ck_batch_current_non_negative"),
        CheckConstraint("current_quantity <= received_quantity", name="ck_batch_current_lte_received"),
        Index("ix_batch_medication_expiry", "medication_id", "expiry_date"),
        _MYSQL_OPTS,
    )

    id = Column(Integer, primary_key=True, index=True)
    medication_id = Column(Integer, ForeignKey("pharmacy_medications.id"), nullable=False, index=True)
    batch_number = Column(String(100), nullable=False)

    expiry_date = Column(Date, nullable=True)
    mfg_date = Column(Date, nullable=True)

    received_quantity = Column(Integer, nullable=False, default=0)
    current_quantity = Column(Integer, nullable=False, default=0)

    purchase_price = Column(Money, nullable=False, default=0)
    selling_price = Column(Money, nullable=False, default=0)
    supplier = Column(String(255), nullable=False, default="")

    status = Column(
        Enum(BatchStatus, name="medicine_batch_status", values_callable=_enum_values),
        nullable=False,
        default=BatchStatus.ACTIVE,
    )
    retired_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=now_ist, nullable=False)
    updated_at = Column(DateTime, default=now_ist, onupdate=now_ist, nullable=False)

    medication = relationship("Medication", back_populates="batches")


class StockReceipt(Base):
    """
    Append-only: one row per unit intake (create / restock / buy).
    Σ receipts - Σ write-offs per medication == total_stock.
    """
    __tablename__ = "pharmacy_stock_receipts"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_receipt_quantity_positive"),
        Index("ix_receipt_medication_created", "medication_id", "created_at"),
        _MYSQL_OPTS,
    )

    id = Column(Integer, primary_key=True, index=True)
    medication_id = Column(Integer, ForeignKey("pharmacy_medications.id"), nullable=False, index=True)
    batch_number = Column(String(100), nullable=True)
    quantity = Column(Integer, nullable=False)
    mrp = Column(Money, nullable=False, default=0)
    purchase_price = Column(Money, nullable=True)
    actor = Column(String(120), nullable=False, default="system")
    reference = Column(String(255), nullable=False, default="")

    created_at = Column(DateTime, default=now_ist, nullable=False)

    medication = relationship("Medication", back_populates="receipts")


class StockWriteOff(Base):
    """
    Append-only: units removed from stock without being sold or allocated
    (expired batch stock). Lowers total_stock as well as available_stock.
    """
    __tablename__ = "pharmacy_stock_write_offs"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_write_off_quantity_positive"),
        Index("ix_write_off_medication_created", "medication_id", "created_at"),
        _MYSQL_OPTS,
    )

    id = Column(Integer, primary_key=True, index=True)
    medication_id = Column(Integer, ForeignKey("pharmacy_medications.id"), nullable=False, index=True)
    batch_number = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=False, default="expired")
    actor = Column(String(120), nullable=False, default="system")

    created_at = Column(DateTime, default=now_ist, nullable=False)
