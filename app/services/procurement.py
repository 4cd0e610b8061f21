# FILE: app/services/procurement.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.models.pharmacy_stock import Medication, MedicineBatch
from app.services.batch_registry import find_batch, norm_batch_number, register_batch, upsert_batch
from app.services.ledger_errors import DuplicateBatch, LedgerError, ViolationCollector
from app.services.stock_ledger import (
    D,
    check_identity,
    check_non_negative_money,
    check_positive_money,
    create_medication,
    find_active_medication,
    restock,
)

logger = logging.getLogger(__name__)

BUY_FIELDS = (
    "name",
    "manufacturer",
    "quantity",
    "mrp",
    "category",
    "generic_name",
    "unit",
    "batch_number",
    "expiry_date",
    "mfg_date",
    "purchase_price",
    "selling_price",
    "supplier",
)


@dataclass
class BuyResult:
    medication: Medication
    created: bool
    batch: Optional[MedicineBatch] = None


@dataclass
class ImportRowResult:
    row: int
    ok: bool
    created: bool = False
    medication_id: Optional[int] = None
    batch_number: Optional[str] = None
    error: Optional[Dict[str, Any]] = None


@dataclass
class ImportResult:
    total: int = 0
    created: int = 0
    restocked: int = 0
    failed: int = 0
    rows: List[ImportRowResult] = field(default_factory=list)


def _validate_buy(
    *,
    name: str,
    manufacturer: str,
    quantity: Any,
    mrp: Any,
    purchase_price: Any,
    selling_price: Any,
    expiry_date: Optional[date],
    mfg_date: Optional[date],
) -> None:
    v = ViolationCollector()
    check_identity(v, name, manufacturer)
    whole = isinstance(quantity, int) and not isinstance(quantity, bool)
    v.check(whole and quantity > 0, "quantity", "must be a whole number > 0")
    check_positive_money(v, "mrp", mrp)
    check_non_negative_money(v, "purchase_price", purchase_price)
    check_non_negative_money(v, "selling_price", selling_price)
    if expiry_date and mfg_date:
        v.check(expiry_date > mfg_date, "expiry_date", "must be after mfg_date")
    v.raise_if_any()


def buy_medicine(
    db: Session,
    *,
    name: str,
    manufacturer: str,
    quantity: int,
    mrp: Any,
    category: Optional[str] = None,
    generic_name: Optional[str] = None,
    unit: Optional[str] = None,
    batch_number: Optional[str] = None,
    expiry_date: Optional[date] = None,
    mfg_date: Optional[date] = None,
    purchase_price: Optional[Any] = None,
    selling_price: Optional[Any] = None,
    supplier: Optional[str] = None,
    actor: str = "system",
    allow_batch_merge: bool = True,
    reference: str = "",
) -> BuyResult:
    """
    Procurement entry point keyed by (name, manufacturer), case-insensitive.

    1) active match -> restock (quantity, mrp)
    2) no match     -> create with available = total = quantity
    3) batch number -> batch registry receives the same units
       (allow_batch_merge=False: an existing batch fails with DuplicateBatch)
    Every input violation is reported together, before any write.
    """
    name = (name or "").strip()
    manufacturer = (manufacturer or "").strip()
    bn = norm_batch_number(batch_number)

    _validate_buy(
        name=name,
        manufacturer=manufacturer,
        quantity=quantity,
        mrp=mrp,
        purchase_price=purchase_price,
        selling_price=selling_price,
        expiry_date=expiry_date,
        mfg_date=mfg_date,
    )

    existing = find_active_medication(db, name, manufacturer, lock=True)
    if existing and bn and not allow_batch_merge and find_batch(db, existing.id, bn):
        raise DuplicateBatch(existing.id, bn)

    if existing:
        med = restock(
            db,
            existing.id,
            quantity,
            mrp,
            actor=actor,
            batch_number=bn,
            purchase_price=purchase_price,
            reference=reference or "purchase",
        )
        created = False
    else:
        med = create_medication(
            db,
            name=name,
            manufacturer=manufacturer,
            mrp=mrp,
            initial_quantity=quantity,
            category=category or "",
            unit=unit or "unit",
            generic_name=generic_name or "",
            actor=actor,
            batch_number=bn,
            purchase_price=purchase_price,
            reference=reference or "purchase",
        )
        created = True

    batch = None
    if bn:
        batch_fn = upsert_batch if allow_batch_merge else register_batch
        batch = batch_fn(
            db,
            medication_id=med.id,
            batch_number=bn,
            quantity=quantity,
            expiry_date=expiry_date,
            mfg_date=mfg_date,
            purchase_price=D(purchase_price) if purchase_price is not None else None,
            selling_price=D(selling_price) if selling_price is not None else D(mrp),
            supplier=supplier,
        )

    logger.info(
        "Bought %s units of '%s' / '%s' -> medication %s (%s)%s by %s",
        quantity, name, manufacturer, med.id, "created" if created else "restocked",
        f" batch {bn}" if bn else "", actor,
    )
    return BuyResult(medication=med, created=created, batch=batch)


def _row_payload(row: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    data = row.model_dump() if isinstance(row, BaseModel) else dict(row)
    return {k: data.get(k) for k in BUY_FIELDS}


def import_batch_rows(
    db: Session,
    rows: Iterable[Union[BaseModel, Dict[str, Any]]],
    *,
    actor: str = "system",
) -> ImportResult:
    """
    Batch Import tool: one SAVEPOINT per row, so a bad row is rolled back
    alone and the rest still land. Batch numbers must be new per medication.
    """
    result = ImportResult()

    for idx, row in enumerate(rows, start=1):
        result.total += 1
        payload = _row_payload(row)
        bn = norm_batch_number(payload.get("batch_number"))
        try:
            with db.begin_nested():
                res = buy_medicine(db, **payload, actor=actor, allow_batch_merge=False, reference=f"import row {idx}")
        except LedgerError as e:
            result.failed += 1
            result.rows.append(ImportRowResult(row=idx, ok=False, batch_number=bn, error=e.to_dict()))
            logger.warning("Import row %s rejected: %s", idx, e)
            continue

        if res.created:
            result.created += 1
        else:
            result.restocked += 1
        result.rows.append(
            ImportRowResult(
                row=idx,
                ok=True,
                created=res.created,
                medication_id=res.medication.id,
                batch_number=bn,
            )
        )

    logger.info(
        "Batch import by %s: total=%s created=%s restocked=%s failed=%s",
        actor, result.total, result.created, result.restocked, result.failed,
    )
    return result
