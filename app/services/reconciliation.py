# FILE: app/services/reconciliation.py
"""
Rebuild / verify the cached medication counters from the append-only ledgers.

    total_stock     == Σ receipts - Σ write-offs
    available_stock == total_stock - Σ allocations - Σ movements - Σ sales

Written-off units leave total_stock and available_stock together, so they
do not appear in the available_stock formula.
Reclassified allocation rows hold 0, so moved units are counted once,
through the movement ledger.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.pharmacy_intent import MovedMedicine
from app.models.pharmacy_sales import SaleTransaction
from app.models.pharmacy_stock import Medication, StockReceipt, StockWriteOff
from app.services.ledger_errors import ConsistencyError
from app.services.stock_ledger import allocated_units, get_medication, lock_medication

logger = logging.getLogger(__name__)


def _sum_quantity(db: Session, column, medication_column, medication_id: int) -> int:
    return int(
        db.query(func.coalesce(func.sum(column), 0))
        .filter(medication_column == medication_id)
        .scalar()
        or 0
    )


def ledger_totals(db: Session, medication_id: int) -> Dict[str, int]:
    return {
        "received": _sum_quantity(db, StockReceipt.quantity, StockReceipt.medication_id, medication_id),
        "written_off": _sum_quantity(db, StockWriteOff.quantity, StockWriteOff.medication_id, medication_id),
        "allocated": allocated_units(db, medication_id),
        "moved": _sum_quantity(db, MovedMedicine.quantity, MovedMedicine.medication_id, medication_id),
        "sold": _sum_quantity(db, SaleTransaction.quantity, SaleTransaction.medication_id, medication_id),
    }


def recompute_available_stock(db: Session, medication_id: int) -> Dict[str, int]:
    """
    Overwrite available_stock with the ledger-derived value.
    Raises ConsistencyError when the ledgers cannot be reconciled with total_stock.
    """
    med = lock_medication(db, medication_id)
    t = ledger_totals(db, med.id)

    total = med.total_stock or 0
    derived = total - t["allocated"] - t["moved"] - t["sold"]
    if derived < 0:
        raise ConsistencyError(
            med.id,
            {"total_stock": total, **t},
        )

    before = med.available_stock or 0
    drift = before - derived
    if drift:
        logger.warning(
            "available_stock drift on medication %s: cached=%s derived=%s; overwriting",
            med.id, before, derived,
        )
        med.available_stock = derived
        db.flush()

    return {"medication_id": med.id, "before": before, "after": derived, "drift": drift}


def _check(db: Session, med: Medication) -> Dict[str, Any]:
    t = ledger_totals(db, med.id)
    total = med.total_stock or 0
    available = med.available_stock or 0
    expected_available = total - t["allocated"] - t["moved"] - t["sold"]

    drift: Dict[str, int] = {}
    expected_total = t["received"] - t["written_off"]
    if total != expected_total:
        drift["total_stock"] = total - expected_total
    if available != expected_available:
        drift["available_stock"] = available - expected_available

    return {
        "medication_id": med.id,
        "name": med.name,
        "total_stock": total,
        "available_stock": available,
        **t,
        "expected_available": expected_available,
        "drift": drift,
        "consistent": not drift,
    }


def verify_medication_ledger(db: Session, medication_id: int) -> Dict[str, Any]:
    report = _check(db, get_medication(db, medication_id))
    if not report["consistent"]:
        logger.warning("Ledger drift on medication %s: %s", medication_id, report["drift"])
        raise ConsistencyError(medication_id, report["drift"])
    return report


def verify_all_medications(db: Session) -> List[Dict[str, Any]]:
    """One report per medication; drift is reported, never raised."""
    reports = [_check(db, med) for med in db.query(Medication).order_by(Medication.id.asc()).all()]
    bad = [r["medication_id"] for r in reports if not r["consistent"]]
    if bad:
        logger.warning("Ledger drift on %s medications: %s", len(bad), bad)
    return reports
