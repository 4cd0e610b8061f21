# FILE: app/schemas/pharmacy_reports.py
from __future__ import annotations

from decimal import Decimal
from typing import List

from pydantic import BaseModel, Field


class DepartmentValueOut(BaseModel):
    department: str
    quantity: int
    value: Decimal


class InventoryValueOut(BaseModel):
    central_units: int
    central_value: Decimal
    department_units: int
    department_value: Decimal
    total_value: Decimal
    by_department: List[DepartmentValueOut] = Field(default_factory=list)


class ExpiryCountOut(BaseModel):
    department: str
    expired: int
    expiring_soon: int
    expired_units: int
    expiring_soon_units: int
