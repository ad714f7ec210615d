from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from rent_settle.config import Settings
from rent_settle.errors import StoreFailure
from rent_settle_web.app import create_app


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2024, 4, 1, 9, 0))


@pytest.fixture
def app(store, contract, clock):
    settings = Settings(secret_key="test", username="agent", password="s3cret", session_timeout_minutes=30)
    app = create_app(settings, store)
    app.config["RENT_SETTLE_CLOCK"] = clock
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    client = app.test_client()
    response = client.post("/login", json={"username": "agent", "password": "s3cret"})
    assert response.status_code == 200
    return client


def test_login_rejects_bad_credentials(app):
    client = app.test_client()
    assert client.post("/login", json={"username": "agent", "password": "nope"}).status_code == 401
    assert client.get("/contracts").status_code == 401


def test_session_expires_after_inactivity(client, clock):
    clock.now += timedelta(minutes=29)
    assert client.get("/contracts").status_code == 200
    clock.now += timedelta(minutes=31)
    response = client.get("/contracts")
    assert response.status_code == 401
    assert response.get_json()["error"] == "Session expired"
    clock.now += timedelta(minutes=1)
    assert client.get("/contracts").status_code == 401


def test_logout(client):
    client.post("/logout")
    assert client.get("/contracts").status_code == 401


def test_contracts(client, contract):
    data = client.get("/contracts").get_json()
    assert data[0]["id"] == contract.id
    assert data[0]["primary_tenant"] == "Joan Puig"
    assert data[0]["monthly_rent"] == 1000.0


def test_settle_unsettle_and_arrears(client, contract):
    response = client.post(f"/contracts/{contract.id}/settle", json={"period": "2024-01"})
    assert response.status_code == 200
    assert response.get_json()["amount"] == 1000.0

    arrears = client.get(f"/contracts/{contract.id}/arrears?as_of=2024-04-01").get_json()
    assert arrears["months_pending"] == 3
    assert arrears["total_owed"] == 3000.0

    response = client.post(f"/contracts/{contract.id}/unsettle", json={"period": "2024-01"})
    assert response.get_json()["removed"] is True
    assert client.get(f"/contracts/{contract.id}/settlements").get_json() == []


def test_settle_range(client, contract):
    response = client.post(
        f"/contracts/{contract.id}/settle-range", json={"from": "2024-03", "to": "2024-05", "amount": "100"}
    )
    data = response.get_json()
    assert [o["period"] for o in data["outcomes"]] == ["2024-03", "2024-04", "2024-05"]
    assert data["settled"] == 3 and data["failed"] == 0


def test_settle_range_reports_partial_failure(client, store, contract, monkeypatch):
    real_upsert = store.upsert_settlement

    def flaky(contract_id, month, year, *args):
        if month == 4:
            raise StoreFailure("locked")
        return real_upsert(contract_id, month, year, *args)

    monkeypatch.setattr(store, "upsert_settlement", flaky)
    data = client.post(f"/contracts/{contract.id}/settle-range", json={"from": "2024-03", "to": "2024-05"}).get_json()
    assert data["failed"] == 1
    assert data["outcomes"][1] == {"period": "2024-04", "month": 4, "year": 2024, "ok": False, "error": "locked"}


def test_error_mapping(client, store, contract, monkeypatch):
    assert client.post("/contracts/999/settle", json={"period": "2024-01", "amount": 5}).status_code == 404
    assert client.post(f"/contracts/{contract.id}/settle", json={"period": "2024-13"}).status_code == 400
    assert client.post(f"/contracts/{contract.id}/settle-range", json={"from": "2024-05", "to": "2024-01"}).status_code == 400

    def broken(*args):
        raise StoreFailure("connection refused")

    monkeypatch.setattr(store, "upsert_settlement", broken)
    response = client.post(f"/contracts/{contract.id}/settle", json={"period": "2024-01"})
    assert response.status_code == 503


def test_debts(client, contract):
    data = client.get("/debts?as_of=2024-04-01").get_json()
    assert data[0]["contract"]["id"] == contract.id
    assert data[0]["arrears"]["total_owed"] == 4000.0


def test_split(client, contract):
    assert client.get("/split?rent=1000&fee=10").get_json() == {"gross": 1000.0, "fee": 100.0, "vat": 21.0, "net": 879.0}
    assert client.get(f"/split?contract_id={contract.id}").get_json()["net"] == 879.0
    assert client.get("/split").status_code == 400


def test_receipts_flow(client, contract):
    response = client.post(
        "/receipts",
        json={
            "contract_id": contract.id,
            "from": "2024-03",
            "months": 2,
            "expenses": [{"concept": "Plumber", "amount": 60}, {"concept": "Cleaning", "amount": 20, "deductible": False}],
            "payment_method": "Bank transfer",
        },
    )
    assert response.status_code == 201
    receipt = response.get_json()
    assert receipt["number"] == "REC-2024-0001"
    assert receipt["late_months"] == 1
    assert receipt["totals"]["final_net"] == 1698.0

    listed = client.get(f"/receipts?contract_id={contract.id}").get_json()
    assert [r["id"] for r in listed] == [receipt["id"]]

    pdf = client.get(f"/receipts/{receipt['id']}/pdf")
    assert pdf.status_code == 200
    assert pdf.mimetype == "application/pdf"
    assert pdf.data.startswith(b"%PDF")

    assert client.delete(f"/receipts/{receipt['id']}").status_code == 200
    assert client.delete(f"/receipts/{receipt['id']}").status_code == 404


def test_receipt_rejects_unknown_payment_method(client, contract):
    response = client.post("/receipts", json={"contract_id": contract.id, "from": "2024-03", "payment_method": "Gold"})
    assert response.status_code == 400


def test_certificate(client, owner, contract, ledger):
    ledger.settle_range(contract.id, 1, 2024, 2, 2024, Decimal("1000"))
    data = client.get(f"/owners/{owner.id}/certificate/2024").get_json()
    assert data["totals"]["gross"] == 2000.0
    assert data["totals"]["properties"] == 1
    pdf = client.get(f"/owners/{owner.id}/certificate/2024?format=pdf")
    assert pdf.mimetype == "application/pdf"
    assert client.get("/owners/999/certificate/2024").status_code == 404


def test_expense_deductible_flag_parsing(client, contract):
    response = client.post(
        "/receipts",
        json={
            "contract_id": contract.id,
            "from": "2024-04",
            "expenses": [
                {"concept": "Cleaning", "amount": 20, "deductible": "false"},
                {"concept": "Plumber", "amount": 60, "deductible": "true"},
            ],
        },
    )
    assert response.status_code == 201
    receipt = response.get_json()
    assert [e["deductible"] for e in receipt["expenses"]] == [False, True]
    assert receipt["totals"]["final_net"] == 819.0

    response = client.post(
        "/receipts",
        json={"contract_id": contract.id, "from": "2024-04", "expenses": [{"concept": "x", "amount": 1, "deductible": "maybe"}]},
    )
    assert response.status_code == 400
