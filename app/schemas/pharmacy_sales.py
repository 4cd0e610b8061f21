# FILE: app/schemas/pharmacy_sales.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SaleCreateIn(BaseModel):
    medication_id: int
    quantity: int
    unit_price: Decimal
    counterparty: str = ""
    reference: str = ""
    total_amount: Optional[Decimal] = None  # discounted total, else quantity x unit_price
    batch_number: Optional[str] = None
    idempotency_key: Optional[str] = None


class SaleBatchLineOut(BaseModel):
    batch_number: Optional[str]
    quantity: int

    model_config = ConfigDict(from_attributes=True)


class SaleOut(BaseModel):
    id: int
    medication_id: int
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    counterparty: str
    actor: str
    reference: str
    idempotency_key: Optional[str] = None
    created_at: datetime
    batch_lines: List[SaleBatchLineOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class RecomputeOut(BaseModel):
    medication_id: int
    before: int
    after: int
    drift: int


class LedgerCheckOut(BaseModel):
    medication_id: int
    name: str
    total_stock: int
    available_stock: int
    received: int
    written_off: int = 0
    allocated: int
    moved: int
    sold: int
    expected_available: int
    drift: Dict[str, Any] = Field(default_factory=dict)
    consistent: bool
