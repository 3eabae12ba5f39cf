from datetime import date

import httpx
import pytest
from fastapi.testclient import TestClient

from clinicdesk.main import create_app
from clinicdesk.services.token_store import MemoryTokenStore

from conftest import TODAY


@pytest.fixture
def client(fake_api, settings):
    app = create_app(
        settings,
        transport=httpx.MockTransport(fake_api.handler),
        store=MemoryTokenStore(),
        today=lambda: TODAY,
    )
    with TestClient(app) as test_client:
        yield test_client


def _login(client):
    response = client.post(
        "/session/login", json={"username": "reception", "password": "pa55word"}
    )
    assert response.status_code == 200
    return response


def test_views_require_login(client):
    response = client.get("/views/patients")
    assert response.status_code == 401
    assert response.json() == {"detail": "Not logged in", "redirect": "/login"}


def test_login_and_logout(client):
    response = client.post("/session/login", json={"username": "reception", "password": "nope"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid username or password"

    assert _login(client).json() == {"status": "ok", "username": "reception"}
    assert client.get("/session").json() == {"active": True, "username": "reception"}

    response = client.post("/session/logout")
    assert response.json()["redirect"] == "/login"
    assert client.get("/session").json()["active"] is False


def test_patient_paging(client, fake_api):
    for index in range(25):
        fake_api.add_patient(f"Patient {index:02d}")
    _login(client)

    view = client.get("/views/patients").json()
    assert view["totalPages"] == 3
    assert view["showing"] == {"from": 1, "to": 10, "of": 25}

    response = client.post("/views/patients/page", json={"page": 3})
    body = response.json()
    assert body["accepted"] is True
    assert len(body["items"]) == 5
    assert body["showing"] == {"from": 21, "to": 25, "of": 25}

    body = client.post("/views/patients/page", json={"page": 4}).json()
    assert body["accepted"] is False
    assert body["page"] == 3

    body = client.post("/views/patients/page-size", json={"itemsPerPage": 20}).json()
    assert body["page"] == 1
    assert body["totalPages"] == 2

    response = client.post("/views/patients/page-size", json={"itemsPerPage": 7})
    assert response.status_code == 422


def test_search_is_accepted_for_later_fetch(client):
    _login(client)
    response = client.post("/views/patients/search", json={"term": "anita"})
    assert response.status_code == 202
    assert response.json()["search"] == "anita"


def test_patient_create_validation_and_success(client, fake_api):
    _login(client)
    response = client.post(
        "/patients",
        json={"name": "Anita Rao", "age": 34, "gender": "female", "phoneNumber": "12345", "address": "x"},
    )
    assert response.status_code == 422
    assert response.json()["errors"] == {"phoneNumber": "Phone number must be exactly 10 digits"}

    response = client.post(
        "/patients",
        json={
            "name": "Anita Rao",
            "age": 34,
            "gender": "female",
            "phoneNumber": "98765 43210",
            "address": "12 Lake Road",
        },
    )
    assert response.status_code == 201
    body = response.json()
    assert body["patient"]["name"] == "Anita Rao"
    assert body["patient"]["phoneNumber"] == "9876543210"
    assert [n["message"] for n in body["view"]["notifications"]] == [
        "Please enter a valid 10-digit phone number",
        "Patient added successfully!",
    ]


def test_appointment_lifecycle_keeps_balance_current(client, fake_api):
    patient_id = fake_api.add_patient("Anita Rao")
    fake_api.add_appointment(patient_id, date(2024, 3, 1), 500, 300)
    _login(client)

    view = client.post(f"/patients/{patient_id}/select").json()
    assert view["selectedPatientId"] == patient_id
    assert view["balance"]["amount"] == "200"
    assert view["balance"]["source"] == "ledger"

    form = client.get("/appointments/form").json()
    assert form["balance"] == "200"
    assert form["appointmentDate"] == "2024-03-15"

    checked = client.post(
        "/appointments/validate", json={"totalAmount": "500", "paidAmount": "750"}
    ).json()
    assert checked["errors"] == {"paidAmount": "Paid amount cannot exceed 700"}

    response = client.post(
        "/appointments",
        json={"patientId": patient_id, "totalAmount": "500", "paidAmount": "750"},
    )
    assert response.status_code == 422

    response = client.post(
        "/appointments",
        json={"patientId": patient_id, "totalAmount": "500", "paidAmount": "400"},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["balance"]["amount"] == "300"
    assert body["appointment"]["patientName"] == "Anita Rao"
    assert body["appointment"]["paymentStatus"] == "Pending"
    created_id = body["appointment"]["id"]

    response = client.delete(f"/appointments/{created_id}", params={"patientId": patient_id})
    assert response.status_code == 200
    assert response.json()["balance"]["amount"] == "200"
    assert response.json()["view"]["totalItems"] == 1


def test_filter_presets(client, fake_api):
    patient_id = fake_api.add_patient("Anita Rao")
    fake_api.add_appointment(patient_id, date(2024, 3, 15), 100, 100)
    fake_api.add_appointment(patient_id, date(2024, 3, 16), 100, 100)
    fake_api.add_appointment(patient_id, date(2024, 2, 1), 100, 100)
    _login(client)

    view = client.post("/views/appointments/filter", json={"preset": "today"}).json()
    assert view["filter"] == {"preset": "today", "start": "2024-03-15", "end": ""}
    assert view["totalItems"] == 1

    view = client.post("/views/appointments/filter", json={"preset": "this_month"}).json()
    assert view["filter"]["end"] == "2024-03-31"
    assert view["totalItems"] == 2

    view = client.post("/views/appointments/filter", json={"preset": "all"}).json()
    assert view["totalItems"] == 3

    response = client.post("/views/appointments/filter", json={"preset": "next_year"})
    assert response.status_code == 422


def test_expired_token_redirects_to_login(client, fake_api):
    _login(client)
    fake_api.token = "rotated"
    response = client.get("/views/patients", params={"refresh": True})
    assert response.status_code == 401
    assert response.json()["redirect"] == "/login"
    assert client.get("/session").json()["active"] is False


def test_upstream_failure_maps_to_bad_gateway(client, fake_api):
    patient_id = fake_api.add_patient("Anita Rao")
    _login(client)
    fake_api.failures.add("DELETE")
    response = client.delete(f"/patients/{patient_id}")
    assert response.status_code == 502
    assert response.json() == {"detail": "Failed to delete patient"}


def test_calendar_defaults_to_current_month(client):
    _login(client)
    body = client.get("/calendar").json()
    assert body["title"] == "March 2024"
    assert body["summary"]["pendingCount"] == 0


def test_deleting_last_row_moves_back_a_page(client, fake_api):
    ids = [fake_api.add_patient(f"Patient {index:02d}") for index in range(11)]
    _login(client)
    assert client.post("/views/patients/page", json={"page": 2}).json()["accepted"] is True

    view = client.delete(f"/patients/{ids[-1]}").json()["view"]
    assert view["page"] == 1
    assert view["totalPages"] == 1
    assert view["showing"] == {"from": 1, "to": 10, "of": 10}


def test_rows_keep_their_own_balance_after_selection(client, fake_api):
    patient_id = fake_api.add_patient("Anita Rao")
    fake_api.add_appointment(patient_id, date(2024, 3, 1), 500, 300)
    fake_api.add_appointment(patient_id, date(2024, 3, 8), 400, 100)
    _login(client)

    view = client.post(f"/patients/{patient_id}/select").json()
    assert view["balance"]["amount"] == "500"
    assert [(row["pendingBalance"], row["balanceSource"]) for row in view["items"]] == [
        ("0", "appointment"),
        ("200", "appointment"),
    ]


def test_patient_edit_form(client, fake_api):
    patient_id = fake_api.add_patient("Anita Rao", phoneNumber=9876543210, age=34)
    _login(client)
    assert client.get(f"/patients/{patient_id}/form").json() == {
        "id": patient_id,
        "name": "Anita Rao",
        "age": 34,
        "gender": "female",
        "phoneNumber": "9876543210",
        "email": "",
        "address": "12 Lake Road",
    }
