# FILE: app/api/routes_pharmacy_stock.py
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import current_actor, get_db
from app.api.response import ledger_err, ok
from app.db.session import atomic
from app.schemas.pharmacy_stock import (
    BatchImportIn,
    BatchOut,
    BatchStatsOut,
    BuyMedicineIn,
    BuyResultOut,
    ImportResultOut,
    MedicationCreateIn,
    MedicationOut,
    MedicationUpdateIn,
    RestockIn,
    WriteOffIn,
    WriteOffOut,
    WriteOffResultOut,
)
from app.services import batch_registry, ledger_reports, procurement, stock_ledger
from app.services.ledger_errors import LedgerError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/pharmacy", tags=["pharmacy-stock"])


def _med_out(med) -> dict:
    return MedicationOut.model_validate(med).model_dump()


# =========================
# MEDICATION MASTER
# =========================
@router.get("/medications")
def list_medications(
    search: Optional[str] = Query(None),
    active_only: bool = Query(True),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    rows = stock_ledger.list_medications(db, search=search, active_only=active_only, limit=limit, offset=offset)
    return ok([_med_out(m) for m in rows])


@router.get("/medications/low-stock")
def list_low_stock(db: Session = Depends(get_db)):
    return ok([_med_out(m) for m in stock_ledger.list_low_stock_medications(db)])


@router.get("/medications/{medication_id}")
def get_medication(medication_id: int, db: Session = Depends(get_db)):
    try:
        return ok(_med_out(stock_ledger.get_medication(db, medication_id)))
    except LedgerError as e:
        return ledger_err(e)


@router.post("/medications")
def create_medication(
    payload: MedicationCreateIn,
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
):
    try:
        with atomic(db):
            med = stock_ledger.create_medication(db, **payload.model_dump(), actor=actor)
        return ok(_med_out(med), status_code=201)
    except LedgerError as e:
        return ledger_err(e)


@router.patch("/medications/{medication_id}")
def update_medication(
    medication_id: int,
    payload: MedicationUpdateIn,
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
):
    try:
        with atomic(db):
            med = stock_ledger.update_medication(
                db, medication_id, actor=actor, **payload.model_dump(exclude_unset=True)
            )
        return ok(_med_out(med))
    except LedgerError as e:
        return ledger_err(e)


@router.post("/medications/{medication_id}/deactivate")
def deactivate_medication(
    medication_id: int,
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
):
    try:
        with atomic(db):
            med = stock_ledger.deactivate_medication(db, medication_id, actor=actor)
        return ok(_med_out(med))
    except LedgerError as e:
        return ledger_err(e)


@router.post("/medications/{medication_id}/restock")
def restock_medication(
    medication_id: int,
    payload: RestockIn,
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
):
    try:
        with atomic(db):
            med = stock_ledger.restock(
                db,
                medication_id,
                payload.additional_quantity,
                payload.new_mrp,
                actor=actor,
                reference=payload.reference,
            )
        return ok(_med_out(med))
    except LedgerError as e:
        return ledger_err(e)


# =========================
# PROCUREMENT
# =========================
@router.post("/buy")
def buy_medicine(
    payload: BuyMedicineIn,
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
):
    try:
        with atomic(db):
            res = procurement.buy_medicine(db, **payload.model_dump(), actor=actor)
        out = BuyResultOut(
            created=res.created,
            medication=MedicationOut.model_validate(res.medication),
            batch=BatchOut.model_validate(res.batch) if res.batch else None,
        )
        return ok(out.model_dump(), status_code=201 if res.created else 200)
    except LedgerError as e:
        return ledger_err(e)


@router.post("/batches/import")
def import_batches(
    payload: BatchImportIn,
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
):
    # per-row failures are part of the result; only unexpected errors abort
    with atomic(db):
        res = procurement.import_batch_rows(db, payload.rows, actor=actor)
    return ok(ImportResultOut.model_validate(asdict(res)).model_dump())


# =========================
# BATCH REGISTRY
# =========================
@router.get("/medications/{medication_id}/batches")
def list_batches(
    medication_id: int,
    only_available: bool = Query(False),
    db: Session = Depends(get_db),
):
    try:
        stock_ledger.get_medication(db, medication_id)
        rows = batch_registry.list_batches(db, medication_id, only_available=only_available)
        return ok([BatchOut.model_validate(b).model_dump() for b in rows])
    except LedgerError as e:
        return ledger_err(e)


@router.get("/medications/{medication_id}/batches/{batch_number}/stats")
def batch_stats(medication_id: int, batch_number: str, db: Session = Depends(get_db)):
    try:
        stats = ledger_reports.get_batch_stock_stats(db, medication_id, batch_number)
        return ok(BatchStatsOut(**stats).model_dump())
    except LedgerError as e:
        return ledger_err(e)


@router.post("/medications/{medication_id}/batches/{batch_number}/write-off")
def write_off_batch(
    medication_id: int,
    batch_number: str,
    payload: WriteOffIn,
    db: Session = Depends(get_db),
    actor: str = Depends(current_actor),
):
    try:
        with atomic(db):
            med, batch, row = stock_ledger.write_off_batch_stock(
                db, medication_id, batch_number, quantity=payload.quantity, reason=payload.reason, actor=actor
            )
        out = WriteOffResultOut(
            write_off=WriteOffOut.model_validate(row),
            medication=MedicationOut.model_validate(med),
            batch=BatchOut.model_validate(batch),
        )
        return ok(out.model_dump(), status_code=201)
    except LedgerError as e:
        return ledger_err(e)


@router.get("/medications/{medication_id}/write-offs")
def list_write_offs(medication_id: int, db: Session = Depends(get_db)):
    try:
        stock_ledger.get_medication(db, medication_id)
        rows = stock_ledger.list_write_offs(db, medication_id)
        return ok([WriteOffOut.model_validate(r).model_dump() for r in rows])
    except LedgerError as e:
        return ledger_err(e)


@router.post("/batches/retire-exhausted")
def retire_exhausted(db: Session = Depends(get_db)):
    with atomic(db):
        rows = batch_registry.retire_exhausted_batches(db)
    return ok([BatchOut.model_validate(b).model_dump() for b in rows])
