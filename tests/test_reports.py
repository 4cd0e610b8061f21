"""
Read-only reporting queries.
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.db.session import atomic
from app.models.pharmacy_sales import SaleTransaction
from app.services import intent_service, ledger_reports, sales_ledger
from app.services.ledger_errors import NotFound
from app.utils.timezone import month_bounds_ist, now_ist


class TestInventoryValue:

    def test_central_and_department_value(self, db, make_medication, allocate):
        med = make_medication(quantity=100, mrp="10")
        allocate(med, 30, department="icu")
        allocate(med, 10, department="nicu", unit_price=Decimal("20"))

        report = ledger_reports.get_inventory_value(db)

        assert report["central_units"] == 60
        assert report["central_value"] == Decimal("600.00")
        assert report["department_units"] == 40
        assert report["department_value"] == Decimal("500.00")
        assert report["total_value"] == Decimal("1100.00")
        by_dept = {d["department"]: d for d in report["by_department"]}
        assert by_dept["icu"]["quantity"] == 30
        assert by_dept["nicu"]["value"] == Decimal("200.00")
        assert by_dept["miones"]["quantity"] == 0
        assert "reclaim pool" not in by_dept


class TestExpiryCounts:

    def test_counts_per_department(self, db, buy, allocate):
        today = date(2026, 6, 1)
        common = dict(name="Heparin 5000IU", manufacturer="Gland", mrp=Decimal("40"))
        buy(quantity=10, batch_number="SOON", expiry_date=today + timedelta(days=10), **common)
        buy(quantity=10, batch_number="GONE", expiry_date=today - timedelta(days=5), **common)
        res = buy(quantity=10, batch_number="LATER", expiry_date=today + timedelta(days=200), **common)
        med = res.medication

        allocate(med, 5, department="icu", batch_number="SOON")
        allocate(med, 3, department="icu", batch_number="GONE")
        allocate(med, 2, department="nicu", batch_number="LATER")

        counts = {c["department"]: c for c in ledger_reports.get_expiry_counts_by_department(db, days=30, today=today)}

        assert counts["icu"] == {
            "department": "icu",
            "expired": 1,
            "expiring_soon": 1,
            "expired_units": 3,
            "expiring_soon_units": 5,
        }
        assert counts["nicu"]["expired"] == 0
        assert counts["nicu"]["expiring_soon"] == 0


class TestBatchStockStats:

    def test_month_figures(self, db, buy):
        res = buy(name="Salbutamol Inhaler", manufacturer="GSK", quantity=40, mrp=Decimal("150"), batch_number="SB-1")
        med_id = res.medication.id
        with atomic(db):
            sales_ledger.record_sale(db, medication_id=med_id, quantity=15, unit_price=Decimal("150"), batch_number="SB-1")

        stats = ledger_reports.get_batch_stock_stats(db, med_id, "SB-1")
        assert stats["remaining_units"] == 25
        assert stats["sold_this_month"] == 15
        assert stats["purchased_this_month"] == 40

    def test_previous_month_sales_excluded(self, db, buy):
        res = buy(name="Salbutamol Inhaler", manufacturer="GSK", quantity=40, mrp=Decimal("150"), batch_number="SB-2")
        med_id = res.medication.id
        with atomic(db):
            sale, _ = sales_ledger.record_sale(
                db, medication_id=med_id, quantity=5, unit_price=Decimal("150"), batch_number="SB-2"
            )
        start, _ = month_bounds_ist(now_ist())
        db.get(SaleTransaction, sale.id).created_at = start - timedelta(days=1)
        db.commit()

        stats = ledger_reports.get_batch_stock_stats(db, med_id, "SB-2")
        assert stats["sold_this_month"] == 0
        assert stats["remaining_units"] == 35

    def test_unknown_batch(self, db, make_medication):
        med = make_medication()
        with pytest.raises(NotFound):
            ledger_reports.get_batch_stock_stats(db, med.id, "NOPE")


class TestMovementHistory:

    def test_filter_by_department(self, db, make_medication, allocate):
        med = make_medication()
        icu = allocate(med, 10, department="icu")
        ot = allocate(med, 10, department="major ot")
        with atomic(db):
            intent_service.move_medicine(db, allocation_id=icu.id, quantity=4, reason="damaged")
            intent_service.move_medicine(db, allocation_id=ot.id, quantity=10)

        rows = ledger_reports.list_movements(db, department="icu")
        assert [(m.quantity, m.reason) for m in rows] == [(4, "damaged")]
        assert len(ledger_reports.list_movements(db, medication_id=med.id)) == 2
