# FILE: app/models/pharmacy_sales.py
from __future__ import annotations

from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric,
    ForeignKey, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.utils.timezone import now_ist

Money = Numeric(14, 2)


class SaleTransaction(Base):
    """
    Immutable record of one billed line item.
    Source of truth for revenue and units sold; the medication counters
    are rebuilt from these rows when they drift.
    """
    __tablename__ = "pharmacy_sale_transactions"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_quantity_positive"),
        CheckConstraint("total_amount >= 0", name="ck_sale_total_non_negative"),
        Index("ix_sale_medication_created", "medication_id", "created_at"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = Column(Integer, primary_key=True, index=True)
    medication_id = Column(Integer, ForeignKey("pharmacy_medications.id"), nullable=False, index=True)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Money, nullable=False)
    total_amount = Column(Money, nullable=False)

    counterparty = Column(String(255), nullable=False, default="")
    actor = Column(String(120), nullable=False, default="system")
    reference = Column(String(255), nullable=False, default="")  # e.g. invoice number

    # client-supplied; a retry with the same key returns the original row
    idempotency_key = Column(String(120), nullable=True, unique=True, index=True)

    created_at = Column(DateTime, default=now_ist, nullable=False)

    medication = relationship("Medication")
    batch_lines = relationship(
        "SaleBatchLine",
        back_populates="sale",
        order_by="SaleBatchLine.id",
        cascade="all, delete-orphan",
    )


class SaleBatchLine(Base):
    """Which batch each sold unit came from (FEFO split). batch_number NULL = unbatched stock."""
    __tablename__ = "pharmacy_sale_batch_lines"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_line_quantity_positive"),
        Index("ix_sale_line_batch", "medication_id", "batch_number"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("pharmacy_sale_transactions.id"), nullable=False, index=True)
    medication_id = Column(Integer, ForeignKey("pharmacy_medications.id"), nullable=False)
    batch_number = Column(String(100), nullable=True)
    quantity = Column(Integer, nullable=False)

    sale = relationship("SaleTransaction", back_populates="batch_lines")
