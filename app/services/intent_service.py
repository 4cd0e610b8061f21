# FILE: app/services/intent_service.py
from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.pharmacy_intent import IntentDepartment, IntentMedicine, MovedMedicine
from app.schemas.pharmacy_intent import DateRange, IntentFilter
from app.services.ledger_errors import InvalidQuantity, ValidationError
from app.services.stock_ledger import D, DepartmentLike, clinical_department, lock_allocation
from app.utils.timezone import now_ist, one_month_back, start_of_day

logger = logging.getLogger(__name__)


def list_departments() -> List[Dict[str, str]]:
    return [{"key": d.value, "label": d.label} for d in IntentDepartment.clinical()]


def _append_movement(
    db: Session,
    row: IntentMedicine,
    quantity: int,
    *,
    from_department: IntentDepartment,
    actor: str,
    reason: str,
) -> MovedMedicine:
    mv = MovedMedicine(
        medication_id=row.medication_id,
        allocation_id=row.id,
        quantity=quantity,
        from_department=from_department,
        to_department=IntentDepartment.RECLAIM_POOL,
        batch_number=row.batch_number,
        unit_price=row.unit_price,
        actor=actor or "system",
        reason=(reason or "").strip(),
    )
    db.add(mv)
    return mv


def move_medicine(
    db: Session,
    *,
    allocation_id: int,
    quantity: int,
    reason: str = "",
    actor: str = "system",
    now: Optional[datetime] = None,
) -> Tuple[IntentMedicine, MovedMedicine, bool]:
    """
    Move units out of a department allocation into the reclaim pool.

    Quantity update, movement row and (when the row empties) reclassification
    are flushed together; the caller's transaction makes them one unit.
    Moved units do not return to available_stock.
    Returns (allocation, movement, reclassified).
    """
    row, med = lock_allocation(db, allocation_id)

    current = row.quantity or 0
    if quantity is None or quantity <= 0 or quantity > current:
        raise InvalidQuantity(
            f"quantity must be > 0 and <= {current} (allocation {row.id}); requested {quantity}",
            quantity=quantity,
            limit=current,
        )

    source = IntentDepartment(row.department)
    remaining = current - quantity
    row.quantity = remaining
    mv = _append_movement(db, row, quantity, from_department=source, actor=actor, reason=reason)

    reclassified = False
    if remaining == 0:
        row.reclassify_to_reclaim_pool(now or now_ist())
        reclassified = True

    db.flush()
    logger.info(
        "Moved %s units from allocation %s (%s, medication %s) to reclaim pool by %s%s",
        quantity, row.id, source.value, med.id, actor, "; reclassified" if reclassified else "",
    )
    return row, mv, reclassified


def reclassify_zero_allocation(
    db: Session,
    allocation_id: int,
    *,
    reason: str = "",
    actor: str = "system",
    now: Optional[datetime] = None,
) -> Tuple[IntentMedicine, MovedMedicine]:
    """zero -> reclassified for rows emptied by a manual edit rather than a move."""
    row, med = lock_allocation(db, allocation_id)
    source = IntentDepartment(row.department)

    row.reclassify_to_reclaim_pool(now or now_ist())
    mv = _append_movement(
        db, row, 0, from_department=source, actor=actor, reason=reason or "zero quantity reclassified"
    )
    db.flush()
    logger.info("Reclassified empty allocation %s (%s, medication %s) by %s", row.id, source.value, med.id, actor)
    return row, mv


def list_zero_quantity_allocations(
    db: Session, department: Optional[DepartmentLike] = None
) -> List[IntentMedicine]:
    q = db.query(IntentMedicine).filter(
        IntentMedicine.quantity == 0,
        IntentMedicine.department != IntentDepartment.RECLAIM_POOL,
    )
    if department is not None:
        q = q.filter(IntentMedicine.department == clinical_department(department))
    return q.order_by(IntentMedicine.updated_at.desc(), IntentMedicine.id.desc()).all()


def _as_enum(enum_cls, value, field: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value or "all").strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError([{"field": field, "message": f"must be one of: {allowed}"}])


def list_department_inventory(
    db: Session,
    department: DepartmentLike,
    *,
    filter_type: Union[IntentFilter, str] = IntentFilter.ALL,
    date_range: Union[DateRange, str] = DateRange.ALL,
    search: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[IntentMedicine]:
    """Live rows (quantity > 0) of one department, narrowed like the distribution screen."""
    dept = clinical_department(department)
    ftype = _as_enum(IntentFilter, filter_type, "filter_type")
    drange = _as_enum(DateRange, date_range, "date_range")
    now = now or now_ist()

    q = db.query(IntentMedicine).filter(
        IntentMedicine.department == dept,
        IntentMedicine.quantity > 0,
    )

    term = (search or "").strip()
    if term:
        q = q.filter(IntentMedicine.medication_name.ilike(f"%{term}%"))

    if ftype == IntentFilter.RECENT:
        q = q.filter(IntentMedicine.created_at >= now - timedelta(days=settings.RECENT_DAYS))
    elif ftype == IntentFilter.HIGH_VALUE:
        q = q.filter(IntentMedicine.quantity * IntentMedicine.unit_price > settings.HIGH_VALUE_THRESHOLD)
    elif ftype == IntentFilter.LOW_STOCK:
        q = q.filter(IntentMedicine.quantity < settings.LOW_STOCK_THRESHOLD)

    if drange == DateRange.TODAY:
        q = q.filter(IntentMedicine.created_at >= start_of_day(now.date()))
    elif drange == DateRange.WEEK:
        q = q.filter(IntentMedicine.created_at >= now - timedelta(days=7))
    elif drange == DateRange.MONTH:
        q = q.filter(IntentMedicine.created_at >= one_month_back(now))

    return q.order_by(IntentMedicine.created_at.desc(), IntentMedicine.id.desc()).all()


def search_across_departments(db: Session, term: str) -> List[Dict[str, Any]]:
    """Live allocations whose medication name matches, grouped per medication."""
    term = (term or "").strip()
    if not term:
        return []

    rows = (
        db.query(IntentMedicine)
        .filter(
            IntentMedicine.quantity > 0,
            IntentMedicine.department != IntentDepartment.RECLAIM_POOL,
            IntentMedicine.medication_name.ilike(f"%{term}%"),
        )
        .order_by(IntentMedicine.medication_name.asc(), IntentMedicine.id.asc())
        .all()
    )

    grouped: "OrderedDict[int, Dict[str, Any]]" = OrderedDict()
    for r in rows:
        hit = grouped.setdefault(
            r.medication_id,
            {
                "medication_id": r.medication_id,
                "medication_name": r.medication_name,
                "departments": [],
                "total_quantity": 0,
            },
        )
        dept = IntentDepartment(r.department).value
        if dept not in hit["departments"]:
            hit["departments"].append(dept)
        hit["total_quantity"] += r.quantity or 0
    return list(grouped.values())


def get_department_summary(db: Session, department: DepartmentLike) -> Dict[str, Any]:
    dept = clinical_department(department)
    rows = db.query(IntentMedicine).filter(IntentMedicine.department == dept).all()

    live = [r for r in rows if (r.quantity or 0) > 0]
    total_value = sum((D(r.unit_price) * (r.quantity or 0) for r in live), Decimal("0"))
    return {
        "department": dept.value,
        "label": dept.label,
        "item_count": len(live),
        "total_quantity": sum(r.quantity or 0 for r in live),
        "total_value": total_value.quantize(Decimal("0.01")),
        "low_stock_count": sum(1 for r in live if r.quantity < settings.LOW_STOCK_THRESHOLD),
        "zero_count": len(rows) - len(live),
    }
