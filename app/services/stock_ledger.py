# FILE: app/services/stock_ledger.py
"""
Medication master + central stock counters + department allocations.

Counter rules (per medication):
  - receipts (create / restock) raise available_stock and total_stock
  - allocations move units available -> department (total unchanged)
  - removing / shrinking an allocation moves them back
  - writing off expired batch stock lowers available_stock and total_stock
Every read-modify-write locks the medication row first (FOR UPDATE), then the
batch, then the allocation. Nothing here commits; the caller owns the transaction.
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.pharmacy_intent import IntentDepartment, IntentMedicine
from app.models.pharmacy_stock import Medication, MedicationStatus, MedicineBatch, StockReceipt, StockWriteOff
from app.services.audit_logger import log_audit
from app.services.batch_registry import (
    find_batch,
    is_expired,
    norm_batch_number,
    retire_batch,
    return_to_batch,
    take_from_batch,
)
from app.services.ledger_errors import (
    DuplicateMedication,
    InsufficientStock,
    InvalidQuantity,
    NotFound,
    ValidationError,
    ViolationCollector,
)
from app.utils.timezone import now_ist, today_ist

logger = logging.getLogger(__name__)


def D(v, default="0") -> Decimal:
    if v is None:
        return Decimal(default)
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v))


def _clean(s: Optional[str]) -> str:
    return (s or "").strip()


def catalog_key(name: str, manufacturer: str) -> str:
    return f"{_clean(name).lower()}|{_clean(manufacturer).lower()}"


def check_identity(v: ViolationCollector, name: str, manufacturer: str) -> None:
    v.check(len(name) >= 2, "name", "must be at least 2 characters")
    v.check(len(manufacturer) >= 2, "manufacturer", "must be at least 2 characters")


def parse_money(v: ViolationCollector, field: str, value: Any) -> Optional[Decimal]:
    """Decimal for `value`, or None with a violation recorded when it is not a number."""
    if value is None:
        return None
    try:
        d = D(value)
    except (InvalidOperation, ValueError):
        d = None
    if d is None or not d.is_finite():
        v.add(field, f"must be a number; got {value!r}")
        return None
    return d


def check_positive_money(v: ViolationCollector, field: str, value: Any) -> None:
    if value is None:
        v.add(field, "must be > 0")
        return
    d = parse_money(v, field, value)
    if d is not None:
        v.check(d > 0, field, "must be > 0")


def check_non_negative_money(v: ViolationCollector, field: str, value: Any) -> None:
    d = parse_money(v, field, value)
    if d is not None:
        v.check(d >= 0, field, "must be >= 0")


# ---------- lookups ----------


def get_medication(db: Session, medication_id: int) -> Medication:
    med = db.get(Medication, medication_id)
    if not med:
        raise NotFound("Medication", medication_id)
    return med


def lock_medication(db: Session, medication_id: int) -> Medication:
    med = (
        db.query(Medication)
        .filter(Medication.id == medication_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not med:
        raise NotFound("Medication", medication_id)
    return med


def find_active_medication(
    db: Session, name: str, manufacturer: str, *, lock: bool = False
) -> Optional[Medication]:
    q = db.query(Medication).filter(
        Medication.catalog_key == catalog_key(name, manufacturer),
        Medication.status == MedicationStatus.ACTIVE,
    )
    if lock:
        q = q.with_for_update()
    return q.first()


def list_medications(
    db: Session,
    *,
    search: Optional[str] = None,
    active_only: bool = True,
    limit: int = 200,
    offset: int = 0,
) -> List[Medication]:
    q = db.query(Medication)
    if active_only:
        q = q.filter(Medication.status == MedicationStatus.ACTIVE)
    term = _clean(search)
    if term:
        like = f"%{term}%"
        q = q.filter(
            or_(
                Medication.name.ilike(like),
                Medication.generic_name.ilike(like),
                Medication.manufacturer.ilike(like),
            )
        )
    return q.order_by(Medication.name.asc(), Medication.id.asc()).offset(offset).limit(limit).all()


def list_low_stock_medications(db: Session) -> List[Medication]:
    return (
        db.query(Medication)
        .filter(
            Medication.status == MedicationStatus.ACTIVE,
            Medication.available_stock <= Medication.minimum_stock_level,
        )
        .order_by(Medication.available_stock.asc(), Medication.name.asc())
        .all()
    )


def _snapshot(med: Medication) -> Dict[str, Any]:
    return {
        "name": med.name,
        "generic_name": med.generic_name,
        "manufacturer": med.manufacturer,
        "category": med.category,
        "unit": med.unit,
        "mrp": str(med.mrp),
        "minimum_stock_level": med.minimum_stock_level,
        "status": MedicationStatus(med.status).value,
    }


def _append_receipt(
    db: Session,
    med: Medication,
    quantity: int,
    *,
    actor: str,
    batch_number: Optional[str],
    purchase_price: Optional[Decimal],
    reference: str,
) -> StockReceipt:
    r = StockReceipt(
        medication_id=med.id,
        batch_number=batch_number,
        quantity=quantity,
        mrp=med.mrp,
        purchase_price=D(purchase_price) if purchase_price is not None else None,
        actor=actor or "system",
        reference=_clean(reference),
    )
    db.add(r)
    return r


# ---------- master ----------


def create_medication(
    db: Session,
    *,
    name: str,
    manufacturer: str,
    mrp: Any,
    initial_quantity: int = 0,
    category: str = "",
    unit: str = "unit",
    generic_name: str = "",
    minimum_stock_level: int = 0,
    actor: str = "system",
    batch_number: Optional[str] = None,
    purchase_price: Optional[Any] = None,
    reference: str = "",
) -> Medication:
    name, manufacturer = _clean(name), _clean(manufacturer)

    v = ViolationCollector()
    check_identity(v, name, manufacturer)
    v.check(initial_quantity is not None and initial_quantity >= 0, "initial_quantity", "must be >= 0")
    check_positive_money(v, "mrp", mrp)
    v.check(minimum_stock_level is None or minimum_stock_level >= 0, "minimum_stock_level", "must be >= 0")
    v.raise_if_any()

    existing = find_active_medication(db, name, manufacturer)
    if existing:
        raise DuplicateMedication(name, manufacturer, existing.id)

    qty = int(initial_quantity)
    med = Medication(
        name=name,
        manufacturer=manufacturer,
        generic_name=_clean(generic_name),
        category=_clean(category),
        unit=_clean(unit) or "unit",
        catalog_key=catalog_key(name, manufacturer),
        available_stock=qty,
        total_stock=qty,
        minimum_stock_level=int(minimum_stock_level or 0),
        mrp=D(mrp),
        status=MedicationStatus.ACTIVE,
    )
    try:
        with db.begin_nested():
            db.add(med)
            db.flush()
    except IntegrityError as e:
        # lost the race against a concurrent create of the same pair
        raise DuplicateMedication(name, manufacturer) from e

    if qty > 0:
        _append_receipt(
            db,
            med,
            qty,
            actor=actor,
            batch_number=norm_batch_number(batch_number),
            purchase_price=purchase_price,
            reference=reference or "initial stock",
        )

    log_audit(
        db,
        actor=actor,
        action="CREATE",
        table_name=Medication.__tablename__,
        record_id=med.id,
        new_values={**_snapshot(med), "initial_quantity": qty},
    )
    db.flush()
    logger.info("Created medication %s '%s' / '%s' with %s units by %s", med.id, name, manufacturer, qty, actor)
    return med


def restock(
    db: Session,
    medication_id: int,
    additional_quantity: int,
    new_mrp: Optional[Any] = None,
    *,
    actor: str = "system",
    batch_number: Optional[str] = None,
    purchase_price: Optional[Any] = None,
    reference: str = "",
) -> Medication:
    if additional_quantity is None or additional_quantity <= 0:
        raise InvalidQuantity(
            f"additional quantity must be > 0; got {additional_quantity}",
            quantity=additional_quantity,
            limit=0,
        )

    if new_mrp is not None:
        v = ViolationCollector()
        check_positive_money(v, "new_mrp", new_mrp)
        v.raise_if_any()

    med = lock_medication(db, medication_id)
    if not med.is_active:
        raise ValidationError([{"field": "medication_id", "message": "medication is inactive"}])

    if new_mrp is not None:
        med.mrp = D(new_mrp)

    med.available_stock = (med.available_stock or 0) + additional_quantity
    med.total_stock = (med.total_stock or 0) + additional_quantity

    _append_receipt(
        db,
        med,
        additional_quantity,
        actor=actor,
        batch_number=norm_batch_number(batch_number),
        purchase_price=purchase_price,
        reference=reference or "restock",
    )
    db.flush()
    logger.info("Restocked medication %s +%s units by %s", med.id, additional_quantity, actor)
    return med


def update_medication(
    db: Session,
    medication_id: int,
    *,
    actor: str = "system",
    name: Optional[str] = None,
    manufacturer: Optional[str] = None,
    generic_name: Optional[str] = None,
    category: Optional[str] = None,
    unit: Optional[str] = None,
    mrp: Optional[Any] = None,
    minimum_stock_level: Optional[int] = None,
) -> Medication:
    """Catalog edit. Stock counters are never touched here."""
    med = lock_medication(db, medication_id)
    before = _snapshot(med)

    new_name = _clean(name) if name is not None else med.name
    new_mfr = _clean(manufacturer) if manufacturer is not None else med.manufacturer

    v = ViolationCollector()
    check_identity(v, new_name, new_mfr)
    if mrp is not None:
        check_positive_money(v, "mrp", mrp)
    if minimum_stock_level is not None:
        v.check(minimum_stock_level >= 0, "minimum_stock_level", "must be >= 0")
    v.raise_if_any()

    key = catalog_key(new_name, new_mfr)
    if med.is_active and key != med.catalog_key:
        clash = find_active_medication(db, new_name, new_mfr)
        if clash and clash.id != med.id:
            raise DuplicateMedication(new_name, new_mfr, clash.id)
        med.catalog_key = key

    med.name = new_name
    med.manufacturer = new_mfr
    if generic_name is not None:
        med.generic_name = _clean(generic_name)
    if category is not None:
        med.category = _clean(category)
    if unit is not None:
        med.unit = _clean(unit) or "unit"
    if mrp is not None:
        med.mrp = D(mrp)
    if minimum_stock_level is not None:
        med.minimum_stock_level = int(minimum_stock_level)

    after = _snapshot(med)
    changed = {k for k in after if after[k] != before[k]}
    if not changed:
        return med

    try:
        with db.begin_nested():
            db.flush()
    except IntegrityError as e:
        raise DuplicateMedication(new_name, new_mfr) from e

    log_audit(
        db,
        actor=actor,
        action="UPDATE",
        table_name=Medication.__tablename__,
        record_id=med.id,
        old_values={k: before[k] for k in changed},
        new_values={k: after[k] for k in changed},
    )
    db.flush()
    logger.info("Updated medication %s fields=%s by %s", med.id, sorted(changed), actor)
    return med


def deactivate_medication(db: Session, medication_id: int, *, actor: str = "system") -> Medication:
    med = lock_medication(db, medication_id)
    if not med.is_active:
        return med

    before = _snapshot(med)
    med.status = MedicationStatus.INACTIVE
    # frees the (name, manufacturer) pair for a new active medication
    med.catalog_key = None

    log_audit(
        db,
        actor=actor,
        action="DEACTIVATE",
        table_name=Medication.__tablename__,
        record_id=med.id,
        old_values={"status": before["status"]},
        new_values={"status": MedicationStatus.INACTIVE.value},
    )
    db.flush()
    logger.info("Deactivated medication %s by %s", med.id, actor)
    return med


# ---------- write-offs ----------


def write_off_batch_stock(
    db: Session,
    medication_id: int,
    batch_number: str,
    *,
    quantity: Optional[int] = None,
    reason: str = "expired",
    actor: str = "system",
    today: Optional[date] = None,
) -> Tuple[Medication, MedicineBatch, StockWriteOff]:
    """
    Take expired units out of stock for good.

    quantity=None writes off everything left in the batch. The units leave
    the batch, available_stock and total_stock together; a StockWriteOff row
    and an audit event record the removal. An emptied batch is retired.
    """
    med = lock_medication(db, medication_id)
    bn = norm_batch_number(batch_number)
    batch = find_batch(db, med.id, bn, lock=True) if bn else None
    if not batch:
        raise NotFound("Batch", f"{med.id}/{bn}")

    today = today or today_ist()
    if not is_expired(batch, today):
        raise ValidationError(
            [{"field": "batch_number", "message": f"batch {bn} is not expired; only expired stock can be written off"}]
        )

    on_hand = batch.current_quantity or 0
    qty = on_hand if quantity is None else quantity
    if qty is None or qty <= 0:
        raise InvalidQuantity(f"write-off quantity must be > 0; got {qty}", quantity=qty, limit=0)
    if qty > on_hand:
        raise InsufficientStock(qty, on_hand, scope=f"batch {bn}")
    available = med.available_stock or 0
    if qty > available:
        raise InsufficientStock(qty, available)

    take_from_batch(batch, qty)
    med.available_stock = available - qty
    med.total_stock = (med.total_stock or 0) - qty
    if batch.current_quantity == 0:
        retire_batch(batch, now_ist())

    row = StockWriteOff(
        medication_id=med.id,
        batch_number=bn,
        quantity=qty,
        reason=_clean(reason) or "expired",
        actor=actor or "system",
    )
    db.add(row)

    log_audit(
        db,
        actor=actor,
        action="WRITE_OFF",
        table_name=MedicineBatch.__tablename__,
        record_id=batch.id,
        old_values={"current_quantity": on_hand},
        new_values={"current_quantity": batch.current_quantity, "reason": row.reason},
    )
    db.flush()
    logger.info("Wrote off %s units of batch %s (medication %s, %s) by %s", qty, bn, med.id, row.reason, actor)
    return med, batch, row


def list_write_offs(db: Session, medication_id: int) -> List[StockWriteOff]:
    return (
        db.query(StockWriteOff)
        .filter(StockWriteOff.medication_id == medication_id)
        .order_by(StockWriteOff.created_at.desc(), StockWriteOff.id.desc())
        .all()
    )


# ---------- allocations ----------


DepartmentLike = Union[IntentDepartment, str]


def clinical_department(value: DepartmentLike) -> IntentDepartment:
    """Resolve a department for new stock. The reclaim pool is not a valid target."""
    try:
        dept = value if isinstance(value, IntentDepartment) else IntentDepartment(_clean(value).lower())
    except ValueError:
        dept = None
    if dept is None or dept.is_reclaim_pool:
        allowed = ", ".join(d.value for d in IntentDepartment.clinical())
        raise ValidationError([{"field": "department", "message": f"must be one of: {allowed}"}])
    return dept


def lock_allocation(db: Session, allocation_id: int) -> Tuple[IntentMedicine, Medication]:
    """Medication first, then the allocation row: the same order allocate uses."""
    row = db.get(IntentMedicine, allocation_id)
    if not row:
        raise NotFound("Allocation", allocation_id)
    med = lock_medication(db, row.medication_id)
    row = (
        db.query(IntentMedicine)
        .filter(IntentMedicine.id == allocation_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not row:
        raise NotFound("Allocation", allocation_id)
    return row, med


def allocate_to_department(
    db: Session,
    *,
    medication_id: int,
    batch_number: str,
    department: DepartmentLike,
    quantity: int,
    unit_price: Optional[Any] = None,
    actor: str = "system",
) -> IntentMedicine:
    """
    All-or-nothing: quantity must fit in available_stock (and in the batch,
    when the batch is registered). Tops up the live row for the same
    (medication, batch, department) or opens a new one.
    """
    dept = clinical_department(department)
    bn = norm_batch_number(batch_number)
    if not bn:
        raise ValidationError([{"field": "batch_number", "message": "is required"}])
    if quantity is None or quantity <= 0:
        raise InvalidQuantity(f"quantity must be > 0; got {quantity}", quantity=quantity, limit=0)
    v = ViolationCollector()
    check_non_negative_money(v, "unit_price", unit_price)
    v.raise_if_any()

    med = lock_medication(db, medication_id)
    if not med.is_active:
        raise ValidationError([{"field": "medication_id", "message": "medication is inactive"}])

    available = med.available_stock or 0
    if quantity > available:
        raise InsufficientStock(quantity, available)

    batch = find_batch(db, med.id, bn, lock=True)
    if batch:
        take_from_batch(batch, quantity)

    if unit_price is not None:
        price = D(unit_price)
    elif batch and D(batch.selling_price) > 0:
        price = D(batch.selling_price)
    else:
        price = D(med.mrp)

    row = (
        db.query(IntentMedicine)
        .filter(
            IntentMedicine.medication_id == med.id,
            IntentMedicine.batch_number == bn,
            IntentMedicine.department == dept,
            IntentMedicine.quantity > 0,
            IntentMedicine.batch_tracked == bool(batch),
        )
        .order_by(IntentMedicine.id.asc())
        .with_for_update()
        .first()
    )
    if row:
        row.quantity = (row.quantity or 0) + quantity
    else:
        row = IntentMedicine(
            medication_id=med.id,
            medication_name=med.name,
            batch_number=bn,
            department=dept,
            origin_department=dept,
            quantity=quantity,
            unit_price=price,
            batch_tracked=bool(batch),
            created_by=actor or "system",
        )
        db.add(row)

    med.available_stock = available - quantity
    db.flush()
    logger.info(
        "Allocated %s units of medication %s batch %s to %s (allocation %s) by %s",
        quantity, med.id, bn, dept.value, row.id, actor,
    )
    return row


def adjust_allocation_quantity(
    db: Session,
    allocation_id: int,
    new_quantity: int,
    *,
    actor: str = "system",
) -> IntentMedicine:
    if new_quantity is None or new_quantity < 0:
        raise InvalidQuantity(f"new quantity must be >= 0; got {new_quantity}", quantity=new_quantity, limit=0)

    row, med = lock_allocation(db, allocation_id)
    if row.is_reclassified:
        raise InvalidQuantity(
            f"Allocation {row.id} is in the reclaim pool and cannot be edited.",
            quantity=new_quantity,
        )
    if row.state == "zero" and new_quantity > 0:
        # zero is terminal for the row; new units get a new allocation id
        raise InvalidQuantity(
            f"Allocation {row.id} is exhausted and cannot be refilled; "
            f"allocate the units to {IntentDepartment(row.department).value} again instead.",
            quantity=new_quantity,
            limit=0,
        )

    old = row.quantity or 0
    delta = new_quantity - old
    if delta == 0:
        return row

    available = med.available_stock or 0
    batch = find_batch(db, med.id, row.batch_number, lock=True) if row.batch_tracked else None
    if delta > 0:
        if delta > available:
            raise InsufficientStock(delta, available)
        if batch:
            take_from_batch(batch, delta)
    elif batch:
        return_to_batch(batch, -delta)

    med.available_stock = available - delta
    row.quantity = new_quantity

    log_audit(
        db,
        actor=actor,
        action="UPDATE",
        table_name=IntentMedicine.__tablename__,
        record_id=row.id,
        old_values={"quantity": old},
        new_values={"quantity": new_quantity},
    )
    db.flush()
    logger.info("Adjusted allocation %s %s -> %s (medication %s) by %s", row.id, old, new_quantity, med.id, actor)
    return row


def remove_allocation(
    db: Session,
    allocation_id: int,
    *,
    actor: str = "system",
) -> Tuple[Medication, int]:
    """Delete the row; its quantity returns to available_stock (total_stock unchanged)."""
    row, med = lock_allocation(db, allocation_id)
    if row.is_reclassified:
        raise InvalidQuantity(
            f"Allocation {row.id} is in the reclaim pool and is kept as history.",
            quantity=row.quantity,
        )

    returned = row.quantity or 0
    if returned and row.batch_tracked:
        batch = find_batch(db, med.id, row.batch_number, lock=True)
        if batch:
            return_to_batch(batch, returned)

    med.available_stock = (med.available_stock or 0) + returned

    log_audit(
        db,
        actor=actor,
        action="DELETE",
        table_name=IntentMedicine.__tablename__,
        record_id=row.id,
        old_values={
            "medication_id": row.medication_id,
            "batch_number": row.batch_number,
            "department": IntentDepartment(row.department).value,
            "quantity": returned,
        },
    )
    db.delete(row)
    db.flush()
    logger.info("Removed allocation %s, returned %s units to medication %s by %s", allocation_id, returned, med.id, actor)
    return med, returned


def get_allocation(db: Session, allocation_id: int) -> IntentMedicine:
    row = db.get(IntentMedicine, allocation_id)
    if not row:
        raise NotFound("Allocation", allocation_id)
    return row


def allocated_units(db: Session, medication_id: int) -> int:
    return int(
        db.query(func.coalesce(func.sum(IntentMedicine.quantity), 0))
        .filter(IntentMedicine.medication_id == medication_id)
        .scalar()
        or 0
    )
