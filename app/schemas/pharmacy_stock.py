# FILE: app/schemas/pharmacy_stock.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.pharmacy_stock import BatchStatus, MedicationStatus


# -------------------------
# Medication master
# -------------------------
# Quantity / price rules are checked by the ledger services so that every
# violation is reported together; schemas only enforce shape.
class MedicationCreateIn(BaseModel):
    name: str
    manufacturer: str
    category: str = ""
    unit: str = "unit"
    generic_name: str = ""
    mrp: Decimal
    initial_quantity: int = 0
    minimum_stock_level: int = 0


class MedicationUpdateIn(BaseModel):
    name: Optional[str] = None
    manufacturer: Optional[str] = None
    generic_name: Optional[str] = None
    category: Optional[str] = None
    unit: Optional[str] = None
    mrp: Optional[Decimal] = None
    minimum_stock_level: Optional[int] = None


class RestockIn(BaseModel):
    additional_quantity: int
    new_mrp: Optional[Decimal] = None
    reference: str = ""


class MedicationOut(BaseModel):
    id: int
    name: str
    generic_name: str
    manufacturer: str
    category: str
    unit: str
    available_stock: int
    total_stock: int
    minimum_stock_level: int
    mrp: Decimal
    status: MedicationStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# -------------------------
# Procurement ("Buy Medicine")
# -------------------------
class BuyMedicineIn(BaseModel):
    name: str = ""
    manufacturer: str = ""
    quantity: int = 0
    mrp: Decimal = Decimal("0")
    category: Optional[str] = None
    generic_name: Optional[str] = None
    unit: Optional[str] = None

    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None
    mfg_date: Optional[date] = None
    purchase_price: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None
    supplier: Optional[str] = None


class BatchImportIn(BaseModel):
    rows: List[BuyMedicineIn] = Field(default_factory=list)


# -------------------------
# Batch registry
# -------------------------
class BatchOut(BaseModel):
    id: int
    medication_id: int
    batch_number: str
    expiry_date: Optional[date]
    mfg_date: Optional[date]
    received_quantity: int
    current_quantity: int
    purchase_price: Decimal
    selling_price: Decimal
    supplier: str
    status: BatchStatus
    retired_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class WriteOffIn(BaseModel):
    quantity: Optional[int] = None  # None = everything left in the batch
    reason: str = "expired"


class WriteOffOut(BaseModel):
    id: int
    medication_id: int
    batch_number: str
    quantity: int
    reason: str
    actor: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WriteOffResultOut(BaseModel):
    write_off: WriteOffOut
    medication: MedicationOut
    batch: BatchOut


class BuyResultOut(BaseModel):
    created: bool
    medication: MedicationOut
    batch: Optional[BatchOut] = None


class ImportRowResultOut(BaseModel):
    row: int
    ok: bool
    created: bool = False
    medication_id: Optional[int] = None
    batch_number: Optional[str] = None
    error: Optional[dict] = None


class ImportResultOut(BaseModel):
    total: int
    created: int
    restocked: int
    failed: int
    rows: List[ImportRowResultOut] = Field(default_factory=list)


class BatchStatsOut(BaseModel):
    medication_id: int
    batch_number: str
    remaining_units: int
    sold_this_month: int
    purchased_this_month: int
    month_start: datetime
    month_end: datetime
