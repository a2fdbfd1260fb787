from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import (
    create_device,
    create_location,
    create_product,
    create_user,
    make_session_factory,
    make_sqlite_engine,
    put_stock,
)
from medstock import database
from medstock.apps.accounts import models as account_models
from medstock.database import get_db, get_read_db
from medstock.main import app
from medstock.security import create_access_token, get_current_active_user


@pytest.fixture()
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture()
def seeded(session_factory):
    db = session_factory()
    try:
        employee = create_user(db, email="employee@example.com")
        doctor = create_user(db, email="doctor@example.com", role=account_models.AccountRole.DOCTOR)
        manager = create_user(db, email="manager@example.com", role=account_models.AccountRole.MANAGER)
        warehouse = create_location(db, "Warehouse")
        clinic = create_location(db, "Clinic-A")
        widget = create_product(db, "WidgetX")
        put_stock(db, warehouse, widget, 5)
        create_device(db, "CPAP AirSense 10", clinic, serial_number="CP-001")
        return {
            "employee": employee,
            "doctor": doctor,
            "manager": manager,
            "warehouse": warehouse.id,
            "clinic": clinic.id,
            "widget": widget.id,
        }
    finally:
        db.close()


@pytest.fixture()
def client_as(session_factory):
    def _override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    def _client(user):
        app.dependency_overrides[get_db] = _override_db
        app.dependency_overrides[get_read_db] = _override_db
        app.dependency_overrides[get_current_active_user] = lambda: user
        return TestClient(app)

    yield _client
    app.dependency_overrides.clear()


def _transfer_body(seeded, quantity=2, **extra):
    body = {
        "from_location_id": seeded["warehouse"],
        "to_location_id": seeded["clinic"],
        "product_id": seeded["widget"],
        "quantity": quantity,
    }
    body.update(extra)
    return body


def test_health(client_as, seeded):
    response = client_as(seeded["employee"]).get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_transfer_returns_record(client_as, seeded):
    client = client_as(seeded["employee"])

    response = client.post("/stock/transfers", json=_transfer_body(seeded, new_status="RESERVED"))

    assert response.status_code == 201
    data = response.json()
    assert data["quantity"] == 2
    assert data["new_status"] == "RESERVED"
    assert data["from_location"]["name"] == "Warehouse"
    assert data["to_location"]["name"] == "Clinic-A"
    assert data["product"]["name"] == "WidgetX"
    assert data["transferred_by_user_id"] == seeded["employee"].id

    ledger = client.get("/stock/ledger", params={"product_id": seeded["widget"]}).json()
    quantities = {row["location"]["name"]: (row["quantity"], row["status"]) for row in ledger}
    assert quantities == {"Warehouse": (3, "FOR_SALE"), "Clinic-A": (2, "RESERVED")}

    detail = client.get(f"/stock/transfers/{data['id']}")
    assert detail.status_code == 200
    assert detail.json()["id"] == data["id"]

    history = client.get("/stock/transfers", params={"location_id": seeded["clinic"]})
    assert [row["id"] for row in history.json()] == [data["id"]]


@pytest.mark.parametrize(
    "body_changes,status_code,code",
    [
        ({"quantity": 6}, 409, "insufficient_stock"),
        ({"quantity": 0}, 400, "invalid_quantity"),
        ({"to_location_id": "same"}, 400, "same_location"),
        ({"product_id": "missing"}, 404, "not_found"),
    ],
)
def test_transfer_errors_map_to_structured_details(client_as, seeded, body_changes, status_code, code):
    body = _transfer_body(seeded)
    body.update(body_changes)
    if body["to_location_id"] == "same":
        body["to_location_id"] = body["from_location_id"]

    response = client_as(seeded["employee"]).post("/stock/transfers", json=body)

    assert response.status_code == status_code
    assert response.json()["detail"]["code"] == code


def test_insufficient_stock_detail_carries_quantities(client_as, seeded):
    response = client_as(seeded["employee"]).post("/stock/transfers", json=_transfer_body(seeded, quantity=6))

    detail = response.json()["detail"]
    assert detail["available"] == 5
    assert detail["requested"] == 6
    assert detail["location_name"] == "Warehouse"
    assert detail["product_name"] == "WidgetX"


def test_doctor_cannot_move_stock(client_as, seeded):
    response = client_as(seeded["doctor"]).post("/stock/transfers", json=_transfer_body(seeded))
    assert response.status_code == 403


def test_requests_without_token_are_rejected(seeded):
    app.dependency_overrides.clear()
    response = TestClient(app).get("/stock/inventory")
    assert response.status_code == 401


def test_check_availability(client_as, seeded):
    client = client_as(seeded["doctor"])

    ok = client.post(
        "/stock/check-availability",
        json={"from_location_id": seeded["warehouse"], "product_id": seeded["widget"], "quantity": 5},
    )
    short = client.post(
        "/stock/check-availability",
        json={"from_location_id": seeded["warehouse"], "product_id": seeded["widget"], "quantity": 8},
    )

    assert ok.status_code == 200
    assert ok.json()["available"] is True
    assert short.json()["available"] is False
    assert short.json()["available_quantity"] == 5
    assert short.json()["requested_quantity"] == 8


def test_inventory_endpoint_pages_and_summarises(client_as, seeded):
    response = client_as(seeded["doctor"]).get("/stock/inventory", params={"page_size": 1})

    assert response.status_code == 200
    data = response.json()
    assert data["pagination"] == {"total": 2, "page": 1, "page_size": 1, "total_pages": 2}
    assert data["summary"]["accessories"] == 1
    assert data["summary"]["medical_devices"] == 1
    assert data["items"][0]["kind"] == "device"

    assert client_as(seeded["doctor"]).get("/stock/inventory", params={"page": 0}).status_code == 422


def test_receive_stock_creates_entry(client_as, seeded):
    response = client_as(seeded["employee"]).post(
        "/stock/receive",
        json={"location_id": seeded["clinic"], "product_id": seeded["widget"], "quantity": 4},
    )

    assert response.status_code == 201
    assert response.json()["quantity"] == 4
    assert response.json()["status"] == "FOR_SALE"


def test_location_admin_flow(client_as, seeded):
    client = client_as(seeded["manager"])

    created = client.post("/stock/locations", json={"name": "Depot", "location_type": "VIRTUAL"})
    assert created.status_code == 201
    location_id = created.json()["id"]

    duplicate = client.post("/stock/locations", json={"name": "depot"})
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["code"] == "duplicate_name"

    renamed = client.patch(f"/stock/locations/{location_id}", json={"description": "Overflow"})
    assert renamed.status_code == 200
    assert renamed.json()["description"] == "Overflow"

    deactivated = client.post(f"/stock/locations/{location_id}/deactivate")
    assert deactivated.json()["is_active"] is False

    listed = client.get("/stock/locations").json()
    by_name = {row["name"]: row for row in listed}
    assert "Depot" not in by_name
    assert by_name["Warehouse"]["stock_count"] == 1
    assert by_name["Clinic-A"]["device_count"] == 1


def test_employee_cannot_create_locations(client_as, seeded):
    response = client_as(seeded["employee"]).post("/stock/locations", json={"name": "Depot"})
    assert response.status_code == 403


def test_product_create_and_list(client_as, seeded):
    client = client_as(seeded["employee"])

    created = client.post("/stock/products", json={"name": "Humidifier Chamber", "product_type": "SPARE_PART"})
    assert created.status_code == 201

    rejected = client.post("/stock/products", json={"name": "CPAP", "product_type": "MEDICAL_DEVICE"})
    assert rejected.status_code == 422

    names = [row["name"] for row in client.get("/stock/products", params={"search": "humid"}).json()]
    assert names == ["Humidifier Chamber"]


def test_audit_listing_is_restricted_to_managers(client_as, seeded):
    client_as(seeded["employee"]).post("/stock/transfers", json=_transfer_body(seeded))

    forbidden = client_as(seeded["employee"]).get("/audit/")
    assert forbidden.status_code == 403

    events = client_as(seeded["manager"]).get("/audit/", params={"entity_type": "StockTransfer"})
    assert events.status_code == 200
    assert [event["action"] for event in events.json()] == ["transfer"]


def test_bearer_token_resolves_user(session_factory, seeded):
    def _override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_read_db] = _override_db
    try:
        token = create_access_token(data={"sub": seeded["employee"].id})
        response = TestClient(app).post(
            "/stock/products",
            json={"name": "Tubing"},
            headers={"Authorization": f"Bearer {token}"},
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 201
    assert response.json()["product_type"] == "ACCESSORY"


@pytest.fixture()
def file_database(tmp_path, monkeypatch):
    engine = make_sqlite_engine(f"sqlite+pysqlite:///{tmp_path / 'api.db'}", busy_timeout=1)
    monkeypatch.setattr(database, "WriteSessionLocal", make_session_factory(engine))
    monkeypatch.setattr(database, "ReadSessionLocal", make_session_factory(engine))
    try:
        yield make_session_factory(engine)
    finally:
        engine.dispose()


def test_token_requests_read_and_write_a_file_database(file_database):
    db = file_database()
    try:
        manager = create_user(db, email="manager@example.com", role=account_models.AccountRole.MANAGER)
        warehouse = create_location(db, "Warehouse")
        clinic = create_location(db, "Clinic-A")
        widget = create_product(db, "WidgetX")
        put_stock(db, warehouse, widget, 5)
    finally:
        db.close()
    assert app.dependency_overrides == {}

    client = TestClient(app)
    headers = {"Authorization": f"Bearer {create_access_token(data={'sub': manager.id})}"}

    inventory = client.get("/stock/inventory", headers=headers)
    assert inventory.status_code == 200
    assert inventory.json()["pagination"]["total"] == 1

    moved = client.post(
        "/stock/transfers",
        json={
            "from_location_id": warehouse.id,
            "to_location_id": clinic.id,
            "product_id": widget.id,
            "quantity": 2,
        },
        headers=headers,
    )
    assert moved.status_code == 201

    history = client.get("/stock/transfers", headers=headers)
    assert history.status_code == 200
    assert [row["quantity"] for row in history.json()] == [2]

    audit = client.get("/audit/", params={"entity_type": "StockTransfer"}, headers=headers)
    assert audit.status_code == 200
    assert [event["action"] for event in audit.json()] == ["transfer"]
