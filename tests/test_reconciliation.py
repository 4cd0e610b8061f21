"""
Conservation of units across available / allocated / moved / sold, and
rebuilding the cached counters from the ledgers.
"""
import random
from decimal import Decimal

import pytest
from sqlalchemy import func

from app.db.session import atomic
from app.models.pharmacy_intent import IntentDepartment, IntentMedicine, MovedMedicine
from app.models.pharmacy_sales import SaleTransaction
from app.models.pharmacy_stock import Medication
from app.services import intent_service, reconciliation, sales_ledger, stock_ledger
from app.services.ledger_errors import ConsistencyError, InsufficientStock, InvalidQuantity, LedgerError


def _sum(db, column, owner, med_id):
    return db.query(func.coalesce(func.sum(column), 0)).filter(owner == med_id).scalar()


def assert_conserved(db, med_id):
    med = db.get(Medication, med_id)
    db.refresh(med)
    allocated = _sum(db, IntentMedicine.quantity, IntentMedicine.medication_id, med_id)
    moved = _sum(db, MovedMedicine.quantity, MovedMedicine.medication_id, med_id)
    sold = _sum(db, SaleTransaction.quantity, SaleTransaction.medication_id, med_id)
    assert med.available_stock >= 0
    assert med.total_stock == med.available_stock + allocated + moved + sold


class TestScenario:

    def test_allocate_move_sell_round_trip(self, db, make_medication, allocate):
        """100 == 50 available + 0 active + 30 reclaimed + 20 sold."""
        med = make_medication(name="Paracetamol 500mg", manufacturer="ACME", quantity=100, mrp="10")
        assert (med.available_stock, med.total_stock) == (100, 100)

        row = allocate(med, 30, department="icu", batch_number="B1")
        db.refresh(med)
        assert med.available_stock == 70

        with atomic(db):
            row, mv, reclassified = intent_service.move_medicine(db, allocation_id=row.id, quantity=30)
        assert reclassified is True
        assert row.quantity == 0
        assert row.department == IntentDepartment.RECLAIM_POOL
        assert db.query(MovedMedicine).count() == 1
        db.refresh(med)
        assert med.available_stock == 70

        with atomic(db):
            sale, _ = sales_ledger.record_sale(db, medication_id=med.id, quantity=20, unit_price=Decimal("10"))
        assert sale.total_amount == Decimal("200.00")
        db.refresh(med)
        assert med.available_stock == 50

        totals = reconciliation.ledger_totals(db, med.id)
        assert totals == {"received": 100, "written_off": 0, "allocated": 0, "moved": 30, "sold": 20}
        assert_conserved(db, med.id)

        with atomic(db):
            res = reconciliation.recompute_available_stock(db, med.id)
        assert res == {"medication_id": med.id, "before": 50, "after": 50, "drift": 0}


class TestRandomizedSequences:

    def test_conservation_and_no_over_allocation(self, db, make_medication):
        """Random allocate/adjust/move/remove/sell/restock never breaks conservation."""
        rng = random.Random(20261016)
        med = make_medication(name="Ondansetron 4mg", manufacturer="Intas", quantity=200, mrp="3")
        med_id = med.id
        departments = [d.value for d in IntentDepartment.clinical()]
        rejected = 0

        for step in range(250):
            db.refresh(med)
            available = med.available_stock
            live = (
                db.query(IntentMedicine)
                .filter(IntentMedicine.medication_id == med_id, IntentMedicine.quantity > 0)
                .all()
            )
            op = rng.choice(["allocate", "allocate", "adjust", "move", "remove", "sell", "restock"])
            if op in ("adjust", "move", "remove") and not live:
                op = "allocate"

            try:
                with atomic(db):
                    if op == "allocate":
                        qty = rng.randint(1, available + 15)
                        try:
                            stock_ledger.allocate_to_department(
                                db,
                                medication_id=med_id,
                                batch_number=rng.choice(["B1", "B2", "B3"]),
                                department=rng.choice(departments),
                                quantity=qty,
                            )
                        except InsufficientStock:
                            assert qty > available
                            raise
                    elif op == "adjust":
                        row = rng.choice(live)
                        new_qty = rng.randint(0, row.quantity + available + 10)
                        try:
                            stock_ledger.adjust_allocation_quantity(db, row.id, new_qty)
                        except InsufficientStock:
                            assert new_qty - row.quantity > available
                            raise
                    elif op == "move":
                        row = rng.choice(live)
                        intent_service.move_medicine(db, allocation_id=row.id, quantity=rng.randint(1, row.quantity))
                    elif op == "remove":
                        stock_ledger.remove_allocation(db, rng.choice(live).id)
                    elif op == "sell":
                        sales_ledger.record_sale(
                            db, medication_id=med_id, quantity=rng.randint(1, available + 5), unit_price=Decimal("3")
                        )
                    else:
                        stock_ledger.restock(db, med_id, rng.randint(1, 20))
            except (InsufficientStock, InvalidQuantity):
                rejected += 1

            assert_conserved(db, med_id)

        assert rejected > 0

        db.refresh(med)
        cached = med.available_stock
        with atomic(db):
            res = reconciliation.recompute_available_stock(db, med_id)
        assert res["after"] == cached
        assert res["drift"] == 0
        assert reconciliation.verify_medication_ledger(db, med_id)["consistent"] is True


class TestDriftDetection:

    def test_drift_is_detected_and_healed(self, db, make_medication, allocate):
        med = make_medication(quantity=100)
        allocate(med, 30)
        med.available_stock = 10  # simulated crash between ledger append and counter update
        db.commit()

        with pytest.raises(ConsistencyError) as exc:
            reconciliation.verify_medication_ledger(db, med.id)
        assert exc.value.drift == {"available_stock": -60}

        with atomic(db):
            res = reconciliation.recompute_available_stock(db, med.id)
        assert res["before"] == 10
        assert res["after"] == 70
        assert res["drift"] == -60
        assert reconciliation.verify_medication_ledger(db, med.id)["consistent"] is True

    def test_verify_all_reports_without_raising(self, db, make_medication):
        good = make_medication(name="Atorvastatin 10mg", manufacturer="Ranbaxy", quantity=10)
        bad = make_medication(name="Clopidogrel 75mg", manufacturer="Ranbaxy", quantity=10)
        bad.available_stock = 4
        db.commit()

        reports = {r["medication_id"]: r for r in reconciliation.verify_all_medications(db)}
        assert reports[good.id]["consistent"] is True
        assert reports[bad.id]["consistent"] is False
        assert reports[bad.id]["drift"] == {"available_stock": -6}

    def test_unreconcilable_ledger_raises(self, db, make_medication):
        med = make_medication(quantity=10)
        db.add(SaleTransaction(medication_id=med.id, quantity=25, unit_price=Decimal("1"), total_amount=Decimal("25")))
        db.commit()

        with pytest.raises(ConsistencyError):
            with atomic(db):
                reconciliation.recompute_available_stock(db, med.id)
        db.refresh(med)
        assert med.available_stock == 10

    def test_ledger_errors_share_a_base(self):
        assert issubclass(ConsistencyError, LedgerError)
        assert ConsistencyError(1, {"available_stock": 2}).code == "CONSISTENCY_ERROR"
