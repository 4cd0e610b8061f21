# FILE: app/api/routes_pharmacy_intent.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import current_actor, get_db
from app.api.response import ledger_err, ok
from app.db.session import atomic
from app.models.pharmacy_intent import IntentDepartment
from app.schemas.pharmacy_intent import (
    AdjustAllocationIn,
    AllocateIn,
    DateRange,
    DepartmentOut,
    DepartmentSearchHitOut,
    DepartmentSummaryOut,
    IntentFilter,
    IntentMedicineOut,
    MovedMedicineOut,
    MoveIn,
    MoveResultOut,
    ReclassifyIn,
    RemoveResultOut,
)
from app.services import intent_service, stock_ledger
from app.services.ledger_errors import LedgerError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/pharmacy/intent", tags=["pharmacy-intent"])


def _row_out(row) -> dict:
    return IntentMedicineOut.model_validate(row).model_dump()


# =========================
# DEPARTMENT VIEWS
# =========================
@router.get("/departments")
def list_departments():
    return ok([DepartmentOut(**d).model_dump() for d in intent_service.list_departments()])


@router.get("/departments/{department}/medicines")
def department_medicines(
    department: IntentDepartment,
    filter_type: IntentFilter = Query(IntentFilter.ALL),
    date_range: DateRange = Query(DateRange.ALL),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    try:
        rows = intent_service.list_department_inventory(
            db, department, filter_type=filter_type, date_range=date_range, search=search
        )
        return ok([_row_out(r) for r in rows])
    except LedgerError as e:
        return ledger_err(e)


@router.get("/departments/{department}/summary")
def department_summary(department: IntentDepartment, db: Session = Depends(get_db)):
    try:
        summary = intent_service.get_department_summary(db, department)
        return ok(DepartmentSummaryOut(**summary).model_dump())
    except LedgerError as e:
        return ledger_err(e)


@router.get("/search")
def search(q: str = Query("", max_length=120), db: Session = Depends(get_db)):
    hits = intent_service.search_across_departments(db, q)
    return ok([DepartmentSearchHitOut(**h).model_dump() for h in hits])


@router.get("/zero-quantity")
def zero_quantity(
    department: Optional[IntentDepartment] = Query(None),
    db: Session = Depends(get_db),
):
    try:
        rows = intent_service.list_zero_quantity_allocations(db, department)
        return ok([_row_out(r) for r in rows])
    except LedgerError as e:
        return ledger_err(e)


# =========================
# ALLOCATIONS
# =========================
@router.post("/allocations")
def allocate(
    payload: AllocateIn,
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
):
    try:
        with atomic(db):
            row = stock_ledger.allocate_to_department(db, **payload.model_dump(), actor=actor)
        return ok(_row_out(row), status_code=201)
    except LedgerError as e:
        return ledger_err(e)


@router.get("/allocations/{allocation_id}")
def get_allocation(allocation_id: int, db: Session = Depends(get_db)):
    try:
        return ok(_row_out(stock_ledger.get_allocation(db, allocation_id)))
    except LedgerError as e:
        return ledger_err(e)


@router.patch("/allocations/{allocation_id}")
def adjust_allocation(
    allocation_id: int,
    payload: AdjustAllocationIn,
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
):
    try:
        with atomic(db):
            row = stock_ledger.adjust_allocation_quantity(db, allocation_id, payload.new_quantity, actor=actor)
        return ok(_row_out(row))
    except LedgerError as e:
        return ledger_err(e)


@router.delete("/allocations/{allocation_id}")
def remove_allocation(
    allocation_id: int,
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
):
    try:
        with atomic(db):
            med, returned = stock_ledger.remove_allocation(db, allocation_id, actor=actor)
        out = RemoveResultOut(
            allocation_id=allocation_id,
            medication_id=med.id,
            returned_quantity=returned,
            available_stock=med.available_stock,
        )
        return ok(out.model_dump())
    except LedgerError as e:
        return ledger_err(e)


@router.post("/allocations/{allocation_id}/move")
def move_medicine(
    allocation_id: int,
    payload: MoveIn,
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
):
    try:
        with atomic(db):
            row, mv, reclassified = intent_service.move_medicine(
                db, allocation_id=allocation_id, quantity=payload.quantity, reason=payload.reason, actor=actor
            )
        out = MoveResultOut(
            allocation=IntentMedicineOut.model_validate(row),
            movement=MovedMedicineOut.model_validate(mv),
            reclassified=reclassified,
        )
        return ok(out.model_dump())
    except LedgerError as e:
        return ledger_err(e)


@router.post("/allocations/{allocation_id}/reclassify")
def reclassify(
    allocation_id: int,
    payload: ReclassifyIn,
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
):
    try:
        with atomic(db):
            row, mv = intent_service.reclassify_zero_allocation(db, allocation_id, reason=payload.reason, actor=actor)
        out = MoveResultOut(
            allocation=IntentMedicineOut.model_validate(row),
            movement=MovedMedicineOut.model_validate(mv),
            reclassified=True,
        )
        return ok(out.model_dump())
    except LedgerError as e:
        return ledger_err(e)
