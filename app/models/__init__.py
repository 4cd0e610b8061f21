# app/models/__init__.py
from .audit import AuditLog
from .pharmacy_stock import (
    BatchStatus,
    Medication,
    MedicationStatus,
    MedicineBatch,
    StockReceipt,
    StockWriteOff,
)
from .pharmacy_intent import IntentDepartment, IntentMedicine, MovedMedicine
from .pharmacy_sales import SaleBatchLine, SaleTransaction

__all__ = [
    "AuditLog",
    "BatchStatus",
    "Medication",
    "MedicationStatus",
    "MedicineBatch",
    "StockReceipt",
    "StockWriteOff",
    "IntentDepartment",
    "IntentMedicine",
    "MovedMedicine",
    "SaleBatchLine",
    "SaleTransaction",
]
