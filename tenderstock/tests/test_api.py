import pytest
from fastapi.testclient import TestClient

from tenderstock.app.api.deps import get_db
from tenderstock.app.main import app


@pytest.fixture
def client(db_session):
    def _db():
        yield db_session

    app.dependency_overrides[get_db] = _db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def post_delivery(client, tender_id, lines, **extra):
    payload = {"personnel": "R. Ahmed", "delivery_date": "2024-05-02", "lines": lines, **extra}
    return client.post(f"/v1/tenders/{tender_id}/deliveries", json=payload, headers={"X-Actor": "api-user"})


def test_health(client):
    assert client.get("/v1/health").json() == {"status": "ok"}


def test_acquisition_view(client, tender):
    post_delivery(client, tender.id, [{"item_master_id": "LAP-01", "delivered_qty": 40}])

    body = client.get(f"/v1/tenders/{tender.id}/acquisition").json()

    lap = next(i for i in body["items"] if i["item_master_id"] == "LAP-01")
    assert lap["delivered_qty"] == 40
    assert lap["remaining_qty"] == 60
    assert lap["status"] == "PARTIAL"
    assert body["status_counts"] == {"PENDING": 2, "PARTIAL": 1, "COMPLETE": 0}
    assert body["pricing_mode"] == "INDIVIDUAL"


def test_unknown_tender_is_404(client):
    resp = client.get("/v1/tenders/999/acquisition")

    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "tender_not_found"


def test_create_list_and_delete_delivery(client, tender):
    created = post_delivery(client, tender.id, [{"item_master_id": "MON-01", "delivered_qty": 5}], chalan_reference="CH-1")
    assert created.status_code == 200
    delivery = created.json()
    assert delivery["sequence_number"] == 1

    listed = client.get(f"/v1/tenders/{tender.id}/deliveries").json()
    assert [d["id"] for d in listed] == [delivery["id"]]

    assert client.delete(f"/v1/deliveries/{delivery['id']}").status_code == 400
    assert client.delete(f"/v1/deliveries/{delivery['id']}?confirm=true").json() == {"id": delivery["id"], "deleted": True}
    assert client.get(f"/v1/tenders/{tender.id}/deliveries").json() == []


def test_over_delivery_is_400(client, tender):
    resp = post_delivery(client, tender.id, [{"item_master_id": "KBD-01", "delivered_qty": 41}])

    assert resp.status_code == 400
    assert resp.json()["detail"]["field"] == "delivered_qty"


def test_serial_numbers_roundtrip_and_export(client, tender):
    delivery = post_delivery(client, tender.id, [{"item_master_id": "KBD-01", "delivered_qty": 2}]).json()
    url = f"/v1/deliveries/{delivery['id']}/items/KBD-01/serial-numbers"

    short = client.put(url, json={"serial_numbers": [{"serial_number": "K-1"}]})
    assert short.status_code == 422
    assert short.json()["detail"] == {
        "code": "quantity_mismatch",
        "message": "Serial numbers must match delivered quantity: expected 2, got 1",
        "expected": 2,
        "actual": 1,
    }

    saved = client.put(url, json={"serial_numbers": [{"serial_number": "K-1"}, {"serial_number": "K-2", "notes": "spare"}]})
    assert saved.status_code == 200
    assert [s["serial_number"] for s in client.get(url).json()] == ["K-1", "K-2"]

    export = client.get(f"{url}/export")
    assert export.headers["content-type"].startswith("text/csv")
    assert export.text == '"Serial Number","Notes"\n"K-1",""\n"K-2","spare"\n'


def test_total_pricing_and_finalize(client, tender):
    resp = client.put(f"/v1/tenders/{tender.id}/pricing", json={"mode": "TOTAL", "total_actual_price": "50000"})
    assert resp.status_code == 200
    assert float(resp.json()["tender_total"]) == 50000

    rejected = client.put(f"/v1/tenders/{tender.id}/items/LAP-01/actual-price", json={"actual_unit_price": "10"})
    assert rejected.status_code == 400

    finalized = client.post(f"/v1/tenders/{tender.id}/finalize", json={"finalized_by": "Auditor"})
    assert finalized.json()["is_finalized"] is True

    locked = client.post(f"/v1/tenders/{tender.id}/items/KBD-01/exclude")
    assert locked.status_code == 409
    assert locked.json()["detail"]["code"] == "tender_locked"


def test_failed_pricing_update_changes_nothing(client, tender, fail_commits, monkeypatch):
    tender_id = tender.id

    fail_commits()
    resp = client.put(f"/v1/tenders/{tender_id}/pricing", json={"mode": "TOTAL", "total_actual_price": "50000"})
    monkeypatch.undo()

    assert resp.status_code == 503
    assert resp.json()["detail"]["code"] == "persistence_failure"
    body = client.get(f"/v1/tenders/{tender_id}/acquisition").json()
    assert body["pricing_mode"] == "INDIVIDUAL"
    assert body["total_actual_price"] is None


def test_total_without_total_mode_is_rejected_whole(client, tender):
    resp = client.put(f"/v1/tenders/{tender.id}/pricing", json={"mode": "INDIVIDUAL", "total_actual_price": "10"})

    assert resp.status_code == 400
    assert client.get(f"/v1/tenders/{tender.id}/acquisition").json()["total_actual_price"] is None
