# FILE: app/services/batch_registry.py
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from app.models.pharmacy_stock import BatchStatus, MedicineBatch
from app.services.ledger_errors import DuplicateBatch, InsufficientStock, NotFound
from app.utils.timezone import now_ist, today_ist

logger = logging.getLogger(__name__)


def norm_batch_number(batch_number: Optional[str]) -> Optional[str]:
    s = (batch_number or "").strip()
    return s or None


def _fefo_order():
    # MySQL-safe NULLS LAST: non-null expiry first, earliest first
    return (
        case((MedicineBatch.expiry_date.is_(None), 1), else_=0).asc(),
        MedicineBatch.expiry_date.asc(),
        MedicineBatch.id.asc(),
    )


def find_batch(
    db: Session,
    medication_id: int,
    batch_number: str,
    *,
    lock: bool = False,
) -> Optional[MedicineBatch]:
    q = db.query(MedicineBatch).filter(
        MedicineBatch.medication_id == medication_id,
        MedicineBatch.batch_number == batch_number,
    )
    if lock:
        q = q.with_for_update()
    return q.first()


def get_batch(db: Session, medication_id: int, batch_number: str) -> MedicineBatch:
    b = find_batch(db, medication_id, batch_number)
    if not b:
        raise NotFound("Batch", f"{medication_id}/{batch_number}")
    return b


def list_batches(
    db: Session,
    medication_id: int,
    *,
    only_available: bool = False,
) -> List[MedicineBatch]:
    q = db.query(MedicineBatch).filter(MedicineBatch.medication_id == medication_id)
    if only_available:
        q = q.filter(
            MedicineBatch.current_quantity > 0,
            MedicineBatch.status == BatchStatus.ACTIVE,
        )
    return q.order_by(*_fefo_order()).all()


def _apply_batch_facts(
    b: MedicineBatch,
    *,
    expiry_date: Optional[date],
    mfg_date: Optional[date],
    purchase_price: Optional[Decimal],
    selling_price: Optional[Decimal],
    supplier: Optional[str],
) -> None:
    if expiry_date is not None:
        b.expiry_date = expiry_date
    if mfg_date is not None:
        b.mfg_date = mfg_date
    if purchase_price is not None:
        b.purchase_price = purchase_price
    if selling_price is not None:
        b.selling_price = selling_price
    if supplier:
        b.supplier = supplier.strip()


def register_batch(
    db: Session,
    *,
    medication_id: int,
    batch_number: str,
    quantity: int,
    expiry_date: Optional[date] = None,
    mfg_date: Optional[date] = None,
    purchase_price: Optional[Decimal] = None,
    selling_price: Optional[Decimal] = None,
    supplier: Optional[str] = None,
) -> MedicineBatch:
    """
    Strict create: the batch number must be new for this medication.
    Units are counted here only; the medication counters are the caller's job.
    """
    if find_batch(db, medication_id, batch_number, lock=True):
        raise DuplicateBatch(medication_id, batch_number)

    b = MedicineBatch(
        medication_id=medication_id,
        batch_number=batch_number,
        received_quantity=quantity,
        current_quantity=quantity,
        purchase_price=Decimal("0"),
        selling_price=Decimal("0"),
        supplier="",
        status=BatchStatus.ACTIVE,
    )
    _apply_batch_facts(
        b,
        expiry_date=expiry_date,
        mfg_date=mfg_date,
        purchase_price=purchase_price,
        selling_price=selling_price,
        supplier=supplier,
    )
    db.add(b)
    db.flush()
    logger.info("Registered batch %s for medication %s (%s units)", batch_number, medication_id, quantity)
    return b


def upsert_batch(
    db: Session,
    *,
    medication_id: int,
    batch_number: str,
    quantity: int,
    expiry_date: Optional[date] = None,
    mfg_date: Optional[date] = None,
    purchase_price: Optional[Decimal] = None,
    selling_price: Optional[Decimal] = None,
    supplier: Optional[str] = None,
) -> MedicineBatch:
    """Additive receive: received and current both grow by `quantity`."""
    b = find_batch(db, medication_id, batch_number, lock=True)
    if not b:
        return register_batch(
            db,
            medication_id=medication_id,
            batch_number=batch_number,
            quantity=quantity,
            expiry_date=expiry_date,
            mfg_date=mfg_date,
            purchase_price=purchase_price,
            selling_price=selling_price,
            supplier=supplier,
        )

    b.received_quantity = (b.received_quantity or 0) + quantity
    b.current_quantity = (b.current_quantity or 0) + quantity
    if b.status == BatchStatus.RETIRED and b.current_quantity > 0:
        b.status = BatchStatus.ACTIVE
        b.retired_at = None
    _apply_batch_facts(
        b,
        expiry_date=expiry_date,
        mfg_date=mfg_date,
        purchase_price=purchase_price,
        selling_price=selling_price,
        supplier=supplier,
    )
    db.flush()
    logger.info("Received %s more units into batch %s (medication %s)", quantity, batch_number, medication_id)
    return b


def take_from_batch(b: MedicineBatch, quantity: int) -> None:
    current = b.current_quantity or 0
    if quantity > current:
        raise InsufficientStock(quantity, current, scope=f"batch {b.batch_number}")
    b.current_quantity = current - quantity


def return_to_batch(b: MedicineBatch, quantity: int) -> None:
    b.current_quantity = min((b.current_quantity or 0) + quantity, b.received_quantity or 0)
    if b.status == BatchStatus.RETIRED and b.current_quantity > 0:
        b.status = BatchStatus.ACTIVE
        b.retired_at = None


def retire_batch(b: MedicineBatch, at: datetime) -> None:
    b.status = BatchStatus.RETIRED
    b.retired_at = at


def is_expired(b: MedicineBatch, today: date) -> bool:
    return b.expiry_date is not None and b.expiry_date < today


def batched_units(db: Session, medication_id: int) -> int:
    """Units the registry still holds for a medication, expired batches included."""
    return int(
        db.query(func.coalesce(func.sum(MedicineBatch.current_quantity), 0))
        .filter(MedicineBatch.medication_id == medication_id)
        .scalar()
        or 0
    )


def pick_batches_fefo(
    db: Session,
    *,
    medication_id: int,
    quantity: int,
    today: Optional[date] = None,
) -> Tuple[List[Tuple[MedicineBatch, int]], int]:
    """
    FEFO (First-Expiry-First-Out) split over registered batches.

    - ACTIVE batches with stock only, expired ones skipped
    - earliest expiry first, NULL expiry last
    - rows locked FOR UPDATE
    Returns (picks, remainder). The remainder is stock the registry does not
    track (units received without a batch number).
    """
    today = today or today_ist()
    q = (
        db.query(MedicineBatch)
        .filter(
            MedicineBatch.medication_id == medication_id,
            MedicineBatch.current_quantity > 0,
            MedicineBatch.status == BatchStatus.ACTIVE,
            or_(MedicineBatch.expiry_date.is_(None), MedicineBatch.expiry_date >= today),
        )
        .order_by(*_fefo_order())
        .with_for_update()
    )

    remaining = quantity
    picks: List[Tuple[MedicineBatch, int]] = []
    for b in q.all():
        if remaining <= 0:
            break
        take = min(b.current_quantity or 0, remaining)
        if take <= 0:
            continue
        picks.append((b, take))
        remaining -= take

    return picks, remaining


def retire_exhausted_batches(
    db: Session,
    *,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> List[MedicineBatch]:
    """Empty + expired batches become RETIRED; rows are kept for audit."""
    today = today or today_ist()
    rows = (
        db.query(MedicineBatch)
        .filter(
            MedicineBatch.status == BatchStatus.ACTIVE,
            MedicineBatch.current_quantity == 0,
            MedicineBatch.expiry_date.isnot(None),
            MedicineBatch.expiry_date < today,
        )
        .with_for_update()
        .all()
    )
    stamp = now or now_ist()
    for b in rows:
        retire_batch(b, stamp)
    db.flush()
    if rows:
        logger.info("Retired %s exhausted batches", len(rows))
    return rows
