# FILE: app/schemas/pharmacy_intent.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.pharmacy_intent import IntentDepartment


# -------------------------
# Enums (Intent / Distribution UI filters)
# -------------------------
class IntentFilter(str, Enum):
    ALL = "all"
    RECENT = "recent"
    HIGH_VALUE = "high-value"
    LOW_STOCK = "low-stock"


class DateRange(str, Enum):
    ALL = "all"
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"


# -------------------------
# Inputs
# -------------------------
class AllocateIn(BaseModel):
    medication_id: int
    batch_number: str
    department: IntentDepartment
    quantity: int
    unit_price: Optional[Decimal] = None


class AdjustAllocationIn(BaseModel):
    new_quantity: int


class MoveIn(BaseModel):
    quantity: int
    reason: str = ""


class ReclassifyIn(BaseModel):
    reason: str = ""


# -------------------------
# Outputs
# -------------------------
class DepartmentOut(BaseModel):
    key: str
    label: str


class IntentMedicineOut(BaseModel):
    id: int
    medication_id: int
    medication_name: str
    batch_number: str
    department: IntentDepartment
    origin_department: IntentDepartment
    quantity: int
    unit_price: Decimal
    state: str
    created_by: str
    created_at: datetime
    updated_at: datetime
    reclassified_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class MovedMedicineOut(BaseModel):
    id: int
    medication_id: int
    allocation_id: int
    quantity: int
    from_department: IntentDepartment
    to_department: IntentDepartment
    batch_number: str
    unit_price: Decimal
    actor: str
    reason: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class MoveResultOut(BaseModel):
    allocation: IntentMedicineOut
    movement: MovedMedicineOut
    reclassified: bool


class RemoveResultOut(BaseModel):
    allocation_id: int
    medication_id: int
    returned_quantity: int
    available_stock: int


class DepartmentSearchHitOut(BaseModel):
    medication_id: int
    medication_name: str
    departments: List[str] = Field(default_factory=list)
    total_quantity: int


class DepartmentSummaryOut(BaseModel):
    department: str
    label: str
    item_count: int
    total_quantity: int
    total_value: Decimal
    low_stock_count: int
    zero_count: int
