"""
Movement recorder, zero-quantity monitor and department views.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.db.session import atomic
from app.models.pharmacy_intent import IntentDepartment, IntentMedicine, MovedMedicine
from app.services import intent_service, stock_ledger
from app.services.ledger_errors import InvalidQuantity, ValidationError


def _move(db, allocation_id, quantity, **kw):
    with atomic(db):
        return intent_service.move_medicine(db, allocation_id=allocation_id, quantity=quantity, actor="tester", **kw)


class TestMoveMedicine:

    def test_partial_move_keeps_row_active(self, db, make_medication, allocate):
        med = make_medication(quantity=100)
        row = allocate(med, 30)

        row, mv, reclassified = _move(db, row.id, 10, reason="expired strip")

        assert reclassified is False
        assert row.quantity == 20
        assert row.department == IntentDepartment.ICU
        assert mv.quantity == 10
        assert mv.from_department == IntentDepartment.ICU
        assert mv.to_department == IntentDepartment.RECLAIM_POOL
        assert mv.reason == "expired strip"
        db.refresh(med)
        assert med.available_stock == 70

    def test_exhausting_move_reclassifies_exactly_once(self, db, make_medication, allocate):
        """One movement, one reclassification; a second move fails."""
        med = make_medication(quantity=100)
        row = allocate(med, 30, batch_number="B1")
        row_id = row.id

        row, mv, reclassified = _move(db, row_id, 30)
        assert reclassified is True
        assert row.id == row_id
        assert row.quantity == 0
        assert row.department == IntentDepartment.RECLAIM_POOL
        assert row.origin_department == IntentDepartment.ICU
        assert row.reclassified_at is not None
        assert mv.batch_number == "B1"
        assert mv.unit_price == Decimal("10.00")

        with pytest.raises(InvalidQuantity):
            _move(db, row_id, 1)

        assert db.query(MovedMedicine).filter_by(allocation_id=row_id).count() == 1
        db.refresh(med)
        assert med.available_stock == 70

    @pytest.mark.parametrize("qty", [0, -3, 31])
    def test_out_of_range_quantity(self, db, make_medication, allocate, qty):
        row = allocate(make_medication(), 30)
        with pytest.raises(InvalidQuantity) as exc:
            _move(db, row.id, qty)
        assert "<= 30" in str(exc.value)
        assert db.query(MovedMedicine).count() == 0

    def test_reopening_creates_new_row(self, db, make_medication, allocate):
        med = make_medication()
        old = allocate(med, 10)
        old_id = old.id
        _move(db, old_id, 10)

        new = allocate(med, 4)
        assert new.id != old_id
        assert db.get(IntentMedicine, old_id).quantity == 0

    def test_reclassified_row_cannot_be_edited_or_removed(self, db, make_medication, allocate):
        row = allocate(make_medication(), 5)
        row_id = row.id
        _move(db, row_id, 5)

        with pytest.raises(InvalidQuantity):
            with atomic(db):
                stock_ledger.adjust_allocation_quantity(db, row_id, 3)
        with pytest.raises(InvalidQuantity):
            with atomic(db):
                stock_ledger.remove_allocation(db, row_id)


class TestZeroQuantityMonitor:

    def test_edit_to_zero_is_flagged_then_reclassified(self, db, make_medication, allocate):
        med = make_medication()
        row = allocate(med, 8, department="nicu")
        row_id = row.id
        with atomic(db):
            stock_ledger.adjust_allocation_quantity(db, row_id, 0)

        flagged = intent_service.list_zero_quantity_allocations(db)
        assert [r.id for r in flagged] == [row_id]
        assert flagged[0].state == "zero"

        with atomic(db):
            row, mv = intent_service.reclassify_zero_allocation(db, row_id, actor="tester")
        assert row.state == "reclassified"
        assert mv.quantity == 0
        assert mv.from_department == IntentDepartment.NICU
        assert intent_service.list_zero_quantity_allocations(db) == []

        with pytest.raises(InvalidQuantity):
            with atomic(db):
                intent_service.reclassify_zero_allocation(db, row_id)

    def test_live_row_cannot_be_reclassified(self, db, make_medication, allocate):
        row = allocate(make_medication(), 3)
        with pytest.raises(InvalidQuantity):
            with atomic(db):
                intent_service.reclassify_zero_allocation(db, row.id)

    def test_department_filter(self, db, make_medication, allocate):
        med = make_medication()
        a = allocate(med, 2, department="icu")
        b = allocate(med, 2, department="causath")
        a_id, b_id = a.id, b.id
        with atomic(db):
            stock_ledger.adjust_allocation_quantity(db, a_id, 0)
            stock_ledger.adjust_allocation_quantity(db, b_id, 0)

        rows = intent_service.list_zero_quantity_allocations(db, "causath")
        assert [r.id for r in rows] == [b_id]


NOW = datetime(2026, 3, 15, 12, 0, 0)


@pytest.fixture
def icu_rows(db, make_medication, allocate):
    """Four ICU rows of different age / value, each on its own batch."""
    med = make_medication(name="Ceftriaxone 1g", manufacturer="Alkem", quantity=500)
    spec = [
        ("T1", 5, NOW - timedelta(hours=1)),
        ("T2", 200, NOW - timedelta(days=3)),
        ("T3", 50, NOW - timedelta(days=20)),
        ("T4", 20, NOW - timedelta(days=40)),
    ]
    rows = {}
    for batch, qty, created in spec:
        row = allocate(med, qty, batch_number=batch, unit_price=Decimal("10"))
        row.created_at = created
        rows[batch] = row
    db.commit()
    return rows


class TestDepartmentInventory:

    @pytest.mark.parametrize(
        "filter_type,expected",
        [
            ("all", ["T1", "T2", "T3", "T4"]),
            ("recent", ["T1", "T2"]),
            ("high-value", ["T2"]),
            ("low-stock", ["T1"]),
        ],
    )
    def test_filter_type(self, db, icu_rows, filter_type, expected):
        rows = intent_service.list_department_inventory(db, "icu", filter_type=filter_type, now=NOW)
        assert sorted(r.batch_number for r in rows) == expected

    @pytest.mark.parametrize(
        "date_range,expected",
        [
            ("all", ["T1", "T2", "T3", "T4"]),
            ("today", ["T1"]),
            ("week", ["T1", "T2"]),
            ("month", ["T1", "T2", "T3"]),
        ],
    )
    def test_date_range(self, db, icu_rows, date_range, expected):
        rows = intent_service.list_department_inventory(db, "icu", date_range=date_range, now=NOW)
        assert sorted(r.batch_number for r in rows) == expected

    def test_empty_and_reclassified_rows_are_hidden(self, db, icu_rows):
        _move(db, icu_rows["T1"].id, 5)
        rows = intent_service.list_department_inventory(db, "icu", now=NOW)
        assert sorted(r.batch_number for r in rows) == ["T2", "T3", "T4"]

    def test_unknown_filter_rejected(self, db, icu_rows):
        with pytest.raises(ValidationError) as exc:
            intent_service.list_department_inventory(db, "icu", filter_type="cheap")
        assert exc.value.fields == ["filter_type"]

    def test_search_by_name(self, db, icu_rows):
        assert len(intent_service.list_department_inventory(db, "icu", search="ceftri", now=NOW)) == 4
        assert intent_service.list_department_inventory(db, "icu", search="insulin", now=NOW) == []


class TestCrossDepartmentViews:

    def test_search_groups_per_medication(self, db, make_medication, allocate):
        para = make_medication(name="Paracetamol 500mg", manufacturer="ACME")
        amox = make_medication(name="Amoxicillin 250mg", manufacturer="Cipla")
        allocate(para, 10, department="icu")
        allocate(para, 5, department="nicu")
        allocate(amox, 7, department="icu")

        hits = intent_service.search_across_departments(db, "PARA")
        assert len(hits) == 1
        assert hits[0]["medication_id"] == para.id
        assert sorted(hits[0]["departments"]) == ["icu", "nicu"]
        assert hits[0]["total_quantity"] == 15
        assert intent_service.search_across_departments(db, "  ") == []

    def test_department_summary(self, db, make_medication, allocate):
        med = make_medication(quantity=300)
        allocate(med, 150, batch_number="S1", unit_price=Decimal("2"))
        allocate(med, 4, batch_number="S2", unit_price=Decimal("10"))
        empty = allocate(med, 6, batch_number="S3")
        with atomic(db):
            stock_ledger.adjust_allocation_quantity(db, empty.id, 0)

        summary = intent_service.get_department_summary(db, IntentDepartment.ICU)
        assert summary["label"] == "ICU"
        assert summary["item_count"] == 2
        assert summary["total_quantity"] == 154
        assert summary["total_value"] == Decimal("340.00")
        assert summary["low_stock_count"] == 1
        assert summary["zero_count"] == 1

    def test_department_catalog(self):
        keys = [d["key"] for d in intent_service.list_departments()]
        assert keys == ["injection room", "icu", "causath", "nicu", "labour word", "miones", "major ot"]
        assert "reclaim pool" not in keys
