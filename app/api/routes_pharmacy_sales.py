# FILE: app/api/routes_pharmacy_sales.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import current_actor, get_db
from app.api.response import ledger_err, ok
from app.db.session import atomic
from app.schemas.pharmacy_sales import LedgerCheckOut, RecomputeOut, SaleCreateIn, SaleOut
from app.services import reconciliation, sales_ledger
from app.services.ledger_errors import LedgerError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/pharmacy", tags=["pharmacy-sales"])


# =========================
# SALES LEDGER
# =========================
@router.post("/sales")
def record_sale(
    payload: SaleCreateIn,
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
):
    try:
        with atomic(db):
            sale, replayed = sales_ledger.record_sale(db, **payload.model_dump(), actor=actor)
        return ok(
            SaleOut.model_validate(sale).model_dump(),
            meta={"replayed": replayed},
            status_code=200 if replayed else 201,
        )
    except LedgerError as e:
        return ledger_err(e)


@router.get("/sales")
def list_sales(
    medication_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    try:
        rows = sales_ledger.list_sales(
            db, medication_id=medication_id, date_from=date_from, date_to=date_to, limit=limit, offset=offset
        )
        return ok([SaleOut.model_validate(s).model_dump() for s in rows])
    except LedgerError as e:
        return ledger_err(e)


@router.get("/sales/{sale_id}")
def get_sale(sale_id: int, db: Session = Depends(get_db)):
    try:
        return ok(SaleOut.model_validate(sales_ledger.get_sale(db, sale_id)).model_dump())
    except LedgerError as e:
        return ledger_err(e)


# =========================
# RECONCILIATION
# =========================
@router.post("/medications/{medication_id}/recompute-stock")
def recompute_stock(medication_id: int, db: Session = Depends(get_db)):
    try:
        with atomic(db):
            res = reconciliation.recompute_available_stock(db, medication_id)
        return ok(RecomputeOut(**res).model_dump())
    except LedgerError as e:
        return ledger_err(e)


@router.get("/medications/{medication_id}/verify")
def verify_medication(medication_id: int, db: Session = Depends(get_db)):
    try:
        return ok(LedgerCheckOut(**reconciliation.verify_medication_ledger(db, medication_id)).model_dump())
    except LedgerError as e:
        return ledger_err(e)


@router.get("/ledger/verify")
def verify_all(db: Session = Depends(get_db)):
    reports = reconciliation.verify_all_medications(db)
    return ok(
        [LedgerCheckOut(**r).model_dump() for r in reports],
        meta={"inconsistent": sum(1 for r in reports if not r["consistent"])},
    )
