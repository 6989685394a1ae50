# Overview: HTTP-level coverage for the forecourt blueprints.

from decimal import Decimal


def test_health(client, db_session):
    res = client.get("/api/health")
    assert res.status_code == 200
    assert res.get_json()["status"] == "healthy"


def test_missing_caller_context_is_401(client, station):
    res = client.get("/api/assignments")
    assert res.status_code == 401


def test_unknown_role_is_401(client, station):
    res = client.get("/api/assignments", headers={"X-Tenant-Id": station.tenant_id, "X-Caller-Role": "owner"})
    assert res.status_code == 401


def test_full_shift_flow(client, station, attendant_ctx, manager_ctx, headers_for):
    res = client.post("/api/assignments", json={
        "nozzle_id": station.nozzle_id,
        "attendant_id": station.asha_id,
        "opening_reading": "12345.678",
        "unit_price": "95.50",
    }, headers=headers_for(attendant_ctx))
    assert res.status_code == 201
    assignment = res.get_json()["assignment"]
    assert assignment["status"] == "OPEN"
    assert assignment["opening_reading"] == "12345.678"

    res = client.post(f"/api/assignments/{assignment['id']}/close", json={
        "closing_reading": "12500.000",
        "successor_attendant_id": station.ravi_id,
    }, headers=headers_for(attendant_ctx))
    assert res.status_code == 200
    body = res.get_json()
    assert body["closed"]["dispensed_volume"] == "154.322"
    assert Decimal(body["closed"]["gross_value"]) == Decimal("14737.751")
    assert body["successor"]["opening_reading"] == "12500.000"
    assert body["successor"]["predecessor_id"] == assignment["id"]

    res = client.post("/api/accounting", json={
        "scope": "assignment",
        "scope_id": assignment["id"],
        "inputs": {
            "upi_amount": "5000",
            "card_amount": "3000",
            "credit_extended": "1000",
            "expenses": "200",
            "opening_cash_advance": "500",
            "denominations": {"notes_500": 13},
        },
    }, headers=headers_for(attendant_ctx))
    assert res.status_code == 201
    accounting = res.get_json()["accounting"]
    assert accounting["expected_cash_in_hand"] == "6037.75"
    assert accounting["variance_amount"] == "462.25"

    res = client.post("/api/distributions", json={
        "accounting_id": accounting["id"],
        "lines": [
            {"bank_account_id": station.bank_account_id, "amount": "4000.00"},
            {"bank_account_id": station.bank_account_2_id, "amount": "2500.00"},
        ],
    }, headers=headers_for(manager_ctx))
    assert res.status_code == 201
    entries = res.get_json()["distributions"]
    assert [e["amount"] for e in entries] == ["4000.00", "2500.00"]

    res = client.post("/api/distributions", json={
        "accounting_id": accounting["id"],
        "lines": [{"bank_account_id": station.bank_account_id, "amount": "0.01"}],
    }, headers=headers_for(manager_ctx))
    assert res.status_code == 409
    assert res.get_json()["entity_id"] == accounting["id"]

    res = client.get(f"/api/distributions?accounting_id={accounting['id']}", headers=headers_for(manager_ctx))
    assert res.status_code == 200
    assert res.get_json()["total_distributed"] == "6500.00"

    res = client.delete(f"/api/distributions/{entries[0]['id']}", headers=headers_for(manager_ctx))
    assert res.status_code == 200
    assert res.get_json()["reversed_amount"] == "4000.00"

    res = client.get(f"/api/accounting/{accounting['id']}", headers=headers_for(manager_ctx))
    assert res.status_code == 200
    assert res.get_json()["accounting"]["distributed_amount"] == "2500.00"


def test_second_open_is_409(client, station, admin_ctx, headers_for):
    payload = {"nozzle_id": station.nozzle_id, "attendant_id": station.asha_id, "opening_reading": "1"}
    assert client.post("/api/assignments", json=payload, headers=headers_for(admin_ctx)).status_code == 201

    payload["attendant_id"] = station.ravi_id
    res = client.post("/api/assignments", json=payload, headers=headers_for(admin_ctx))
    assert res.status_code == 409
    assert "open assignment" in res.get_json()["error"]


def test_bad_reading_is_400_with_field(client, station, attendant_ctx, headers_for):
    res = client.post("/api/assignments", json={
        "nozzle_id": station.nozzle_id,
        "attendant_id": station.asha_id,
        "opening_reading": "12.3456",
    }, headers=headers_for(attendant_ctx))
    assert res.status_code == 400
    assert res.get_json()["field"] == "opening_reading"


def test_unknown_assignment_is_404(client, station, admin_ctx, headers_for):
    res = client.get("/api/assignments/424242", headers=headers_for(admin_ctx))
    assert res.status_code == 404


def test_reconcile_open_assignment_is_409(client, station, attendant_ctx, headers_for):
    res = client.post("/api/assignments", json={
        "nozzle_id": station.nozzle_id,
        "attendant_id": station.asha_id,
        "opening_reading": "1",
    }, headers=headers_for(attendant_ctx))
    assignment_id = res.get_json()["assignment"]["id"]

    res = client.post("/api/accounting", json={
        "scope": "assignment", "scope_id": assignment_id, "inputs": {},
    }, headers=headers_for(attendant_ctx))
    assert res.status_code == 409


def test_attendant_distribution_is_403(client, station, attendant_ctx, headers_for):
    res = client.post("/api/distributions", json={
        "accounting_id": 1,
        "lines": [{"bank_account_id": station.bank_account_id, "amount": "1.00"}],
    }, headers=headers_for(attendant_ctx))
    assert res.status_code == 403


def test_attendant_shift_endpoints(client, station, attendant_ctx, headers_for):
    res = client.post("/api/attendant-shifts", json={
        "attendant_id": station.asha_id, "opening_cash": "250.00",
    }, headers=headers_for(attendant_ctx))
    assert res.status_code == 201
    shift = res.get_json()["attendant_shift"]
    assert shift["opening_cash"] == "250.00"

    res = client.post(f"/api/attendant-shifts/{shift['id']}/close", json={}, headers=headers_for(attendant_ctx))
    assert res.status_code == 200
    assert res.get_json()["attendant_shift"]["status"] == "CLOSED"

    res = client.get("/api/attendant-shifts?status=CLOSED", headers=headers_for(attendant_ctx))
    assert [s["id"] for s in res.get_json()["attendant_shifts"]] == [shift["id"]]


def test_update_accounting_via_put(client, station, admin_ctx, headers_for):
    res = client.post("/api/assignments", json={
        "nozzle_id": station.nozzle_id, "attendant_id": station.asha_id,
        "opening_reading": "0", "unit_price": "100.00",
    }, headers=headers_for(admin_ctx))
    assignment_id = res.get_json()["assignment"]["id"]
    client.post(f"/api/assignments/{assignment_id}/close", json={"closing_reading": "10"},
                headers=headers_for(admin_ctx))
    res = client.post("/api/accounting", json={
        "scope": "assignment", "scope_id": assignment_id,
        "inputs": {"upi_amount": "400", "denominations": {"notes_200": 3}},
    }, headers=headers_for(admin_ctx))
    accounting_id = res.get_json()["accounting"]["id"]

    res = client.put(f"/api/accounting/{accounting_id}", json={
        "inputs": {"denominations": {"notes_500": 2}},
    }, headers=headers_for(admin_ctx))
    assert res.status_code == 200
    data = res.get_json()["accounting"]
    assert data["upi_amount"] == "0.00"
    assert data["counted_cash"] == "1000.00"
    assert data["variance_amount"] == "0.00"


def test_admin_patch_rejects_derived_field(client, station, admin_ctx, headers_for):
    res = client.post("/api/assignments", json={
        "nozzle_id": station.nozzle_id, "attendant_id": station.asha_id, "opening_reading": "1",
    }, headers=headers_for(admin_ctx))
    assignment_id = res.get_json()["assignment"]["id"]

    res = client.patch(f"/api/assignments/{assignment_id}", json={"dispensed_volume": "5"},
                       headers=headers_for(admin_ctx))
    assert res.status_code == 400
    assert res.get_json()["field"] == "dispensed_volume"
