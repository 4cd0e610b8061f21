# FILE: app/services/ledger_reports.py
from __future__ import annotations

from collections import OrderedDict
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.pharmacy_intent import IntentDepartment, IntentMedicine, MovedMedicine
from app.models.pharmacy_sales import SaleBatchLine, SaleTransaction
from app.models.pharmacy_stock import Medication, MedicationStatus, MedicineBatch, StockReceipt
from app.services.batch_registry import get_batch
from app.services.ledger_errors import ValidationError
from app.services.stock_ledger import D, clinical_department
from app.utils.timezone import month_bounds_ist, today_ist

ZERO = Decimal("0")
MONEY = Decimal("0.01")


def get_inventory_value(db: Session) -> Dict[str, Any]:
    """Central stock at mrp + live department stock at its snapshot price."""
    central_units = 0
    central_value = ZERO
    for available, mrp in (
        db.query(Medication.available_stock, Medication.mrp)
        .filter(Medication.status == MedicationStatus.ACTIVE)
        .all()
    ):
        central_units += available or 0
        central_value += D(mrp) * (available or 0)

    by_dept: "OrderedDict[str, Dict[str, Any]]" = OrderedDict(
        (d.value, {"department": d.value, "quantity": 0, "value": ZERO}) for d in IntentDepartment.clinical()
    )
    for dept, qty, price in (
        db.query(IntentMedicine.department, IntentMedicine.quantity, IntentMedicine.unit_price)
        .filter(IntentMedicine.quantity > 0)
        .all()
    ):
        slot = by_dept[IntentDepartment(dept).value]
        slot["quantity"] += qty
        slot["value"] += D(price) * qty

    dept_units = sum(s["quantity"] for s in by_dept.values())
    dept_value = sum((s["value"] for s in by_dept.values()), ZERO)
    for s in by_dept.values():
        s["value"] = s["value"].quantize(MONEY)

    return {
        "central_units": central_units,
        "central_value": central_value.quantize(MONEY),
        "department_units": dept_units,
        "department_value": dept_value.quantize(MONEY),
        "total_value": (central_value + dept_value).quantize(MONEY),
        "by_department": list(by_dept.values()),
    }


def list_movements(
    db: Session,
    *,
    medication_id: Optional[int] = None,
    department: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: int = 200,
    offset: int = 0,
) -> List[MovedMedicine]:
    if date_from and date_to and date_from > date_to:
        raise ValidationError([{"field": "date_from", "message": "must not be after date_to"}])

    q = db.query(MovedMedicine)
    if medication_id is not None:
        q = q.filter(MovedMedicine.medication_id == medication_id)
    if department:
        q = q.filter(MovedMedicine.from_department == clinical_department(department))
    if date_from:
        q = q.filter(MovedMedicine.created_at >= date_from)
    if date_to:
        q = q.filter(MovedMedicine.created_at <= date_to)
    return q.order_by(MovedMedicine.created_at.desc(), MovedMedicine.id.desc()).offset(offset).limit(limit).all()


def get_expiry_counts_by_department(
    db: Session,
    *,
    days: Optional[int] = None,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Live allocations whose registered batch is expired / expires within `days`."""
    days = settings.EXPIRY_ALERT_DAYS if days is None else days
    if days < 0:
        raise ValidationError([{"field": "days", "message": "must be >= 0"}])
    today = today or today_ist()
    horizon = today + timedelta(days=days)

    counts: "OrderedDict[str, Dict[str, Any]]" = OrderedDict(
        (
            d.value,
            {"department": d.value, "expired": 0, "expiring_soon": 0, "expired_units": 0, "expiring_soon_units": 0},
        )
        for d in IntentDepartment.clinical()
    )

    rows = (
        db.query(IntentMedicine.department, IntentMedicine.quantity, MedicineBatch.expiry_date)
        .join(
            MedicineBatch,
            and_(
                MedicineBatch.medication_id == IntentMedicine.medication_id,
                MedicineBatch.batch_number == IntentMedicine.batch_number,
            ),
        )
        .filter(
            IntentMedicine.quantity > 0,
            IntentMedicine.department != IntentDepartment.RECLAIM_POOL,
            MedicineBatch.expiry_date.isnot(None),
            MedicineBatch.expiry_date <= horizon,
        )
        .all()
    )
    for dept, qty, expiry in rows:
        slot = counts[IntentDepartment(dept).value]
        if expiry < today:
            slot["expired"] += 1
            slot["expired_units"] += qty
        else:
            slot["expiring_soon"] += 1
            slot["expiring_soon_units"] += qty
    return list(counts.values())


def get_batch_stock_stats(
    db: Session,
    medication_id: int,
    batch_number: str,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Batch card numbers for the current IST calendar month:
      remaining_units      batch current quantity
      sold_this_month      Σ sale batch lines for this batch
      purchased_this_month Σ receipts tagged with this batch
    """
    batch = get_batch(db, medication_id, batch_number)
    start, end = month_bounds_ist(now)

    sold = (
        db.query(func.coalesce(func.sum(SaleBatchLine.quantity), 0))
        .join(SaleTransaction, SaleTransaction.id == SaleBatchLine.sale_id)
        .filter(
            SaleBatchLine.medication_id == medication_id,
            SaleBatchLine.batch_number == batch.batch_number,
            SaleTransaction.created_at >= start,
            SaleTransaction.created_at < end,
        )
        .scalar()
    )
    purchased = (
        db.query(func.coalesce(func.sum(StockReceipt.quantity), 0))
        .filter(
            StockReceipt.medication_id == medication_id,
            StockReceipt.batch_number == batch.batch_number,
            StockReceipt.created_at >= start,
            StockReceipt.created_at < end,
        )
        .scalar()
    )

    return {
        "medication_id": medication_id,
        "batch_number": batch.batch_number,
        "remaining_units": batch.current_quantity or 0,
        "sold_this_month": int(sold or 0),
        "purchased_this_month": int(purchased or 0),
        "month_start": start,
        "month_end": end,
    }
