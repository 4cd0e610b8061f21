# FILE: app/services/sales_ledger.py
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.models.pharmacy_sales import SaleBatchLine, SaleTransaction
from app.services.batch_registry import (
    batched_units,
    find_batch,
    norm_batch_number,
    pick_batches_fefo,
    take_from_batch,
)
from app.services.ledger_errors import (
    IdempotencyConflict,
    InsufficientStock,
    InvalidQuantity,
    NotFound,
    ValidationError,
    ViolationCollector,
)
from app.services.stock_ledger import D, check_non_negative_money, lock_medication

logger = logging.getLogger(__name__)

MONEY = Decimal("0.01")


def _round_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY, rounding=ROUND_HALF_UP)


def _find_by_key(db: Session, key: str) -> Optional[SaleTransaction]:
    return db.query(SaleTransaction).filter(SaleTransaction.idempotency_key == key).first()


def _sale_total(price: Decimal, quantity: int, total_amount: Optional[Any]) -> Decimal:
    return _round_money(D(total_amount)) if total_amount is not None else _round_money(price * quantity)


def _same_payload(
    existing: SaleTransaction,
    *,
    medication_id: int,
    quantity: int,
    unit_price: Any,
    total_amount: Optional[Any],
) -> bool:
    if existing.medication_id != medication_id or existing.quantity != quantity:
        return False
    try:
        price = D(unit_price)
        total = _sale_total(price, quantity, total_amount)
    except (InvalidOperation, TypeError, ValueError):
        return False
    return (
        _round_money(price) == _round_money(D(existing.unit_price))
        and total == _round_money(D(existing.total_amount))
    )


def _replay(existing: SaleTransaction, **payload: Any) -> SaleTransaction:
    if not _same_payload(existing, **payload):
        logger.warning(
            "Idempotency key %s reused with a different payload (sale %s)",
            existing.idempotency_key, existing.id,
        )
        raise IdempotencyConflict(existing.idempotency_key, existing.id)
    logger.info("Replayed sale %s for idempotency key %s", existing.id, existing.idempotency_key)
    return existing


def record_sale(
    db: Session,
    *,
    medication_id: int,
    quantity: int,
    unit_price: Any,
    counterparty: str = "",
    actor: str = "system",
    reference: str = "",
    total_amount: Optional[Any] = None,
    batch_number: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    today: Optional[date] = None,
) -> Tuple[SaleTransaction, bool]:
    """
    Ledger-first sale of already-available stock.

    The SaleTransaction (and its batch split) is written first; the
    available_stock counter and batch quantities follow in the same
    transaction. total_stock does not change.
    Returns (sale, replayed); replayed=True means the idempotency key matched
    an earlier sale and nothing was written.
    """
    key = (idempotency_key or "").strip() or None
    payload = dict(
        medication_id=medication_id, quantity=quantity, unit_price=unit_price, total_amount=total_amount
    )
    if key:
        existing = _find_by_key(db, key)
        if existing:
            return _replay(existing, **payload), True

    if quantity is None or quantity <= 0:
        raise InvalidQuantity(f"quantity must be > 0; got {quantity}", quantity=quantity, limit=0)

    v = ViolationCollector()
    if unit_price is None:
        v.add("unit_price", "is required")
    check_non_negative_money(v, "unit_price", unit_price)
    check_non_negative_money(v, "total_amount", total_amount)
    v.raise_if_any()

    med = lock_medication(db, medication_id)
    available = med.available_stock or 0
    if quantity > available:
        raise InsufficientStock(quantity, available)

    bn = norm_batch_number(batch_number)
    if bn:
        batch = find_batch(db, med.id, bn, lock=True)
        if not batch:
            raise NotFound("Batch", f"{med.id}/{bn}")
        if quantity > (batch.current_quantity or 0):
            raise InsufficientStock(quantity, batch.current_quantity or 0, scope=f"batch {bn}")
        picks, remainder = [(batch, quantity)], 0
    else:
        picks, remainder = pick_batches_fefo(db, medication_id=med.id, quantity=quantity, today=today)
        if remainder > 0:
            # units still sitting in a batch (expired ones included) are never sold as unbatched
            unbatched = max(0, available - batched_units(db, med.id))
            if remainder > unbatched:
                sellable = quantity - remainder + unbatched
                raise InsufficientStock(quantity, sellable, scope="non-expired stock")

    price = D(unit_price)
    total = _sale_total(price, quantity, total_amount)

    sale = SaleTransaction(
        medication_id=med.id,
        quantity=quantity,
        unit_price=price,
        total_amount=total,
        counterparty=(counterparty or "").strip(),
        actor=actor or "system",
        reference=(reference or "").strip(),
        idempotency_key=key,
    )
    for b, take in picks:
        sale.batch_lines.append(SaleBatchLine(medication_id=med.id, batch_number=b.batch_number, quantity=take))
    if remainder > 0:
        sale.batch_lines.append(SaleBatchLine(medication_id=med.id, batch_number=None, quantity=remainder))

    try:
        with db.begin_nested():
            db.add(sale)
            db.flush()
    except IntegrityError:
        # a concurrent request with the same key committed first
        existing = _find_by_key(db, key) if key else None
        if not existing:
            raise
        return _replay(existing, **payload), True

    for b, take in picks:
        take_from_batch(b, take)
    med.available_stock = available - quantity
    db.flush()

    logger.info(
        "Recorded sale %s: %s units of medication %s total=%s by %s",
        sale.id, quantity, med.id, total, actor,
    )
    return sale, False


def get_sale(db: Session, sale_id: int) -> SaleTransaction:
    sale = (
        db.query(SaleTransaction)
        .options(selectinload(SaleTransaction.batch_lines))
        .filter(SaleTransaction.id == sale_id)
        .first()
    )
    if not sale:
        raise NotFound("Sale", sale_id)
    return sale


def list_sales(
    db: Session,
    *,
    medication_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: int = 200,
    offset: int = 0,
) -> List[SaleTransaction]:
    if date_from and date_to and date_from > date_to:
        raise ValidationError([{"field": "date_from", "message": "must not be after date_to"}])

    q = db.query(SaleTransaction).options(selectinload(SaleTransaction.batch_lines))
    if medication_id is not None:
        q = q.filter(SaleTransaction.medication_id == medication_id)
    if date_from:
        q = q.filter(SaleTransaction.created_at >= date_from)
    if date_to:
        q = q.filter(SaleTransaction.created_at <= date_to)
    return q.order_by(SaleTransaction.created_at.desc(), SaleTransaction.id.desc()).offset(offset).limit(limit).all()
