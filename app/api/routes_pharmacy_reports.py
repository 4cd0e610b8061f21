# FILE: app/api/routes_pharmacy_reports.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.api.response import ledger_err, ok
from app.models.pharmacy_intent import IntentDepartment
from app.schemas.pharmacy_intent import MovedMedicineOut
from app.schemas.pharmacy_reports import ExpiryCountOut, InventoryValueOut
from app.services import ledger_reports
from app.services.ledger_errors import LedgerError

router = APIRouter(prefix="/pharmacy/reports", tags=["pharmacy-reports"])


@router.get("/inventory-value")
def inventory_value(db: Session = Depends(get_db)):
    return ok(InventoryValueOut(**ledger_reports.get_inventory_value(db)).model_dump())


@router.get("/expiry-by-department")
def expiry_by_department(
    days: Optional[int] = Query(None, ge=0, le=3650),
    db: Session = Depends(get_db),
):
    try:
        rows = ledger_reports.get_expiry_counts_by_department(db, days=days)
        return ok([ExpiryCountOut(**r).model_dump() for r in rows])
    except LedgerError as e:
        return ledger_err(e)


@router.get("/movements")
def movements(
    medication_id: Optional[int] = Query(None),
    department: Optional[IntentDepartment] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    try:
        rows = ledger_reports.list_movements(
            db,
            medication_id=medication_id,
            department=department,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=offset,
        )
        return ok([MovedMedicineOut.model_validate(m).model_dump() for m in rows])
    except LedgerError as e:
        return ledger_err(e)
