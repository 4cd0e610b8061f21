"""
HTTP surface: envelope, status codes and error codes.
"""
import pytest

API = "/api/pharmacy"
HEADERS = {"X-User": "pharmacist.anu"}


def _create(client, **overrides):
    body = {"name": "Paracetamol 500mg", "manufacturer": "ACME", "mrp": "10", "initial_quantity": 100}
    body.update(overrides)
    return client.post(f"{API}/medications", json=body, headers=HEADERS)


class TestMedicationRoutes:

    def test_create_and_fetch(self, client):
        r = _create(client)
        assert r.status_code == 201
        body = r.json()
        assert body["ok"] is True
        med = body["data"]
        assert med["available_stock"] == 100
        assert med["total_stock"] == 100
        assert med["status"] == "active"

        r = client.get(f"{API}/medications/{med['id']}")
        assert r.status_code == 200
        assert r.json()["data"]["name"] == "Paracetamol 500mg"

    def test_duplicate_is_409(self, client):
        _create(client)
        r = _create(client, name="PARACETAMOL 500MG")
        assert r.status_code == 409
        err = r.json()["error"]
        assert err["code"] == "DUPLICATE_MEDICATION"
        assert r.json()["ok"] is False

    def test_unknown_medication_is_404(self, client):
        r = client.get(f"{API}/medications/999")
        assert r.status_code == 404
        assert r.json()["error"]["code"] == "NOT_FOUND"

    def test_restock_zero_is_invalid_quantity(self, client):
        med_id = _create(client).json()["data"]["id"]
        r = client.post(f"{API}/medications/{med_id}/restock", json={"additional_quantity": 0}, headers=HEADERS)
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "INVALID_QUANTITY"


class TestBuyRoute:

    def test_buy_creates_then_restocks(self, client):
        body = {"name": "Amoxicillin 250mg", "manufacturer": "Cipla", "quantity": 30, "mrp": "12.5",
                "batch_number": "AMX-1", "expiry_date": "2027-06-30"}
        r1 = client.post(f"{API}/buy", json=body, headers=HEADERS)
        r2 = client.post(f"{API}/buy", json={**body, "quantity": 20}, headers=HEADERS)

        assert (r1.status_code, r2.status_code) == (201, 200)
        data = r2.json()["data"]
        assert data["created"] is False
        assert data["medication"]["available_stock"] == 50
        assert data["batch"]["current_quantity"] == 50

    def test_buy_validation_lists_all_fields(self, client):
        r = client.post(f"{API}/buy", json={"name": "A", "manufacturer": "", "quantity": 0, "mrp": "0"})
        assert r.status_code == 422
        err = r.json()["error"]
        assert err["code"] == "VALIDATION_ERROR"
        assert [v["field"] for v in err["details"]] == ["name", "manufacturer", "quantity", "mrp"]

    def test_import_reports_per_row(self, client):
        rows = [
            {"name": "Metformin 500mg", "manufacturer": "USV", "quantity": 10, "mrp": "4.5", "batch_number": "MF-1"},
            {"name": "Metformin 500mg", "manufacturer": "USV", "quantity": 10, "mrp": "4.5", "batch_number": "MF-1"},
        ]
        r = client.post(f"{API}/batches/import", json={"rows": rows}, headers=HEADERS)
        assert r.status_code == 200
        data = r.json()["data"]
        assert (data["created"], data["failed"]) == (1, 1)
        assert data["rows"][1]["error"]["code"] == "DUPLICATE_BATCH"


class TestWriteOffRoute:

    def test_expired_batch_written_off(self, client):
        body = {"name": "Cetirizine 10mg", "manufacturer": "Dr Reddy", "quantity": 10, "mrp": "2",
                "batch_number": "CZ-OLD", "expiry_date": "2020-01-31"}
        med_id = client.post(f"{API}/buy", json=body, headers=HEADERS).json()["data"]["medication"]["id"]

        r = client.post(f"{API}/medications/{med_id}/batches/CZ-OLD/write-off", json={}, headers=HEADERS)
        assert r.status_code == 201
        data = r.json()["data"]
        assert data["write_off"]["quantity"] == 10
        assert data["write_off"]["actor"] == "pharmacist.anu"
        assert (data["medication"]["available_stock"], data["medication"]["total_stock"]) == (0, 0)
        assert data["batch"]["status"] == "RETIRED"

        check = client.get(f"{API}/medications/{med_id}/verify").json()["data"]
        assert (check["written_off"], check["consistent"]) == (10, True)
        assert len(client.get(f"{API}/medications/{med_id}/write-offs").json()["data"]) == 1

        r = client.post(f"{API}/medications/{med_id}/batches/CZ-OLD/write-off", json={})
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "INVALID_QUANTITY"


class TestIntentRoutes:

    def test_allocate_move_sell_verify(self, client):
        med_id = _create(client).json()["data"]["id"]

        r = client.post(
            f"{API}/intent/allocations",
            json={"medication_id": med_id, "batch_number": "B1", "department": "icu", "quantity": 30},
            headers=HEADERS,
        )
        assert r.status_code == 201
        alloc = r.json()["data"]
        assert alloc["created_by"] == "pharmacist.anu"
        assert alloc["state"] == "active"

        r = client.post(f"{API}/intent/allocations/{alloc['id']}/move", json={"quantity": 30, "reason": "returned"})
        assert r.status_code == 200
        moved = r.json()["data"]
        assert moved["reclassified"] is True
        assert moved["allocation"]["department"] == "reclaim pool"
        assert moved["movement"]["to_department"] == "reclaim pool"

        r = client.post(f"{API}/intent/allocations/{alloc['id']}/move", json={"quantity": 1})
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "INVALID_QUANTITY"

        r = client.post(
            f"{API}/sales",
            json={"medication_id": med_id, "quantity": 20, "unit_price": "10", "idempotency_key": "INV-1/1"},
        )
        assert r.status_code == 201
        assert r.json()["meta"] == {"replayed": False}
        r = client.post(
            f"{API}/sales",
            json={"medication_id": med_id, "quantity": 20, "unit_price": "10", "idempotency_key": "INV-1/1"},
        )
        assert r.status_code == 200
        assert r.json()["meta"] == {"replayed": True}

        check = client.get(f"{API}/medications/{med_id}/verify").json()["data"]
        assert check["consistent"] is True
        assert (check["available_stock"], check["moved"], check["sold"]) == (50, 30, 20)

        r = client.post(f"{API}/medications/{med_id}/recompute-stock")
        assert r.json()["data"] == {"medication_id": med_id, "before": 50, "after": 50, "drift": 0}

    def test_over_allocation_is_409(self, client):
        med_id = _create(client, initial_quantity=5).json()["data"]["id"]
        r = client.post(
            f"{API}/intent/allocations",
            json={"medication_id": med_id, "batch_number": "B1", "department": "nicu", "quantity": 6},
        )
        assert r.status_code == 409
        assert r.json()["error"]["details"] == {"requested": 6, "available": 5, "scope": "available stock"}

    def test_unknown_department_is_422(self, client):
        med_id = _create(client).json()["data"]["id"]
        r = client.post(
            f"{API}/intent/allocations",
            json={"medication_id": med_id, "batch_number": "B1", "department": "pharmacy", "quantity": 1},
        )
        assert r.status_code == 422
        assert r.json()["error"]["code"] == "VALIDATION_ERROR"
        assert r.json()["error"]["details"][0]["field"] == "department"

    def test_remove_allocation(self, client):
        med_id = _create(client).json()["data"]["id"]
        alloc_id = client.post(
            f"{API}/intent/allocations",
            json={"medication_id": med_id, "batch_number": "B1", "department": "icu", "quantity": 30},
        ).json()["data"]["id"]

        r = client.delete(f"{API}/intent/allocations/{alloc_id}")
        assert r.json()["data"] == {
            "allocation_id": alloc_id,
            "medication_id": med_id,
            "returned_quantity": 30,
            "available_stock": 100,
        }
        assert client.get(f"{API}/intent/allocations/{alloc_id}").status_code == 404

    @pytest.mark.parametrize("path", ["/intent/departments", "/reports/inventory-value", "/reports/expiry-by-department"])
    def test_read_endpoints(self, client, path):
        r = client.get(f"{API}{path}")
        assert r.status_code == 200
        assert r.json()["ok"] is True

    def test_department_listing(self, client):
        med_id = _create(client).json()["data"]["id"]
        client.post(
            f"{API}/intent/allocations",
            json={"medication_id": med_id, "batch_number": "B1", "department": "labour word", "quantity": 3},
        )
        r = client.get(f"{API}/intent/departments/labour word/medicines", params={"filter_type": "low-stock"})
        assert r.status_code == 200
        assert [row["quantity"] for row in r.json()["data"]] == [3]

        summary = client.get(f"{API}/intent/departments/labour word/summary").json()["data"]
        assert summary["label"] == "Labour Word"
        assert summary["total_quantity"] == 3
