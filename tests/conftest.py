from __future__ import annotations

import itertools
import json
import math
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Callable

import httpx
import pytest

from clinicdesk.core.config import Settings
from clinicdesk.desk import ClinicDesk
from clinicdesk.services.token_store import MemoryTokenStore

TOKEN = "secret-token"
TODAY = date(2024, 3, 15)


def _number(value: Decimal) -> int | float:
    return int(value) if value == value.to_integral_value() else float(value)


class FakeClinicApi:
    """In-memory stand-in for the clinic REST API."""

    def __init__(self) -> None:
        self.token = TOKEN
        self.credentials = {"reception": "pa55word"}
        self.patients: dict[str, dict[str, Any]] = {}
        self.appointments: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.failures: set[str] = set()
        self._ids = itertools.count(1)

    # seeding

    def add_patient(self, name: str, **fields: Any) -> str:
        patient_id = f"p{next(self._ids)}"
        self.patients[patient_id] = {
            "_id": patient_id,
            "name": name,
            "age": fields.get("age", 40),
            "gender": fields.get("gender", "female"),
            "phoneNumber": fields.get("phoneNumber", "9876543210"),
            "email": fields.get("email", ""),
            "address": fields.get("address", "12 Lake Road"),
        }
        return patient_id

    def add_appointment(
        self, patient_id: str, day: date, total: Any, paid: Any, notes: str = ""
    ) -> str:
        appointment_id = f"a{next(self._ids)}"
        self.appointments[appointment_id] = {
            "_id": appointment_id,
            "patientId": patient_id,
            "appointmentDate": day,
            "totalAmount": Decimal(str(total)),
            "paidAmount": Decimal(str(paid)),
            "notes": notes,
            "previousBalance": self.balance(patient_id),
        }
        return appointment_id

    def balance(self, patient_id: str) -> Decimal:
        return sum(
            (
                item["totalAmount"] - item["paidAmount"]
                for item in self.appointments.values()
                if item["patientId"] == patient_id
            ),
            Decimal("0"),
        )

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    # rendering

    def _patient(self, patient_id: str) -> dict[str, Any]:
        record = dict(self.patients[patient_id])
        record["previousBalance"] = _number(self.balance(patient_id))
        record["totalAppointments"] = sum(
            1 for item in self.appointments.values() if item["patientId"] == patient_id
        )
        return record

    def _appointment(self, appointment_id: str) -> dict[str, Any]:
        record = dict(self.appointments[appointment_id])
        owner = self.patients.get(record["patientId"])
        if owner is not None:
            record["patientId"] = {"_id": owner["_id"], "name": owner["name"], "age": owner["age"]}
        record["appointmentDate"] = f"{record['appointmentDate'].isoformat()}T00:00:00.000Z"
        for key in ("totalAmount", "paidAmount", "previousBalance"):
            record[key] = _number(record[key])
        return record

    @staticmethod
    def _page(rows: list[Any], params: httpx.QueryParams, total_key: str) -> dict[str, Any]:
        page = int(params.get("page") or 1)
        limit = int(params.get("limit") or 10)
        start = (page - 1) * limit
        return {
            "data": rows[start : start + limit],
            "pagination": {
                "currentPage": page,
                "totalPages": max(1, math.ceil(len(rows) / limit)),
                total_key: len(rows),
            },
        }

    @staticmethod
    def _json(status_code: int, payload: Any) -> httpx.Response:
        return httpx.Response(status_code, json=payload)

    # routing

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path
        if f"{method} {path}" in self.failures or method in self.failures:
            return self._json(500, {"message": "Internal error"})

        if path == "/login" and method == "POST":
            body = json.loads(request.content)
            if self.credentials.get(body.get("username")) == body.get("password"):
                return self._json(200, {"data": self.token})
            return self._json(401, {"message": "Invalid credentials"})

        if request.headers.get("token") != self.token:
            return self._json(401, {"message": "Unauthorized"})

        parts = [part for part in path.split("/") if part]
        params = request.url.params
        body = json.loads(request.content) if request.content else {}

        if parts[0] == "patients":
            return self._patients_route(method, parts[1:], params, body)
        if parts[0] == "appointments":
            return self._appointments_route(method, parts[1:], params, body)
        return self._json(404, {"message": "Not found"})

    def _patients_route(
        self, method: str, rest: list[str], params: httpx.QueryParams, body: dict[str, Any]
    ) -> httpx.Response:
        if not rest and method == "GET":
            rows = [self._patient(pid) for pid in self.patients]
            return self._json(200, self._page(rows, params, "totalPatients"))
        if not rest and method == "POST":
            patient_id = self.add_patient(body["name"])
            self.patients[patient_id].update(body)
            return self._json(201, {"data": self._patient(patient_id)})
        if rest == ["search"]:
            needle = (params.get("query") or "").lower()
            rows = [
                self._patient(pid)
                for pid, row in self.patients.items()
                if needle in row["name"].lower() or needle in row["phoneNumber"]
            ]
            return self._json(200, self._page(rows, params, "totalPatients"))
        if rest == ["dashboard"]:
            today_count = sum(1 for a in self.appointments.values() if a["appointmentDate"] == TODAY)
            revenue = sum((a["paidAmount"] for a in self.appointments.values()), Decimal("0"))
            pending = sum(
                (a["totalAmount"] - a["paidAmount"] for a in self.appointments.values()),
                Decimal("0"),
            )
            return self._json(
                200,
                {
                    "data": {
                        "totalPatients": len(self.patients),
                        "todaysAppointments": today_count,
                        "totalRevenue": _number(revenue),
                        "pendingAmount": _number(pending),
                    }
                },
            )

        patient_id = rest[0]
        if patient_id not in self.patients:
            return self._json(404, {"message": "Patient not found"})
        if method == "GET":
            return self._json(200, {"data": self._patient(patient_id)})
        if method == "PUT":
            self.patients[patient_id].update(body)
            return self._json(200, {"data": self._patient(patient_id)})
        if method == "DELETE":
            del self.patients[patient_id]
            for appointment_id in [
                key for key, a in self.appointments.items() if a["patientId"] == patient_id
            ]:
                del self.appointments[appointment_id]
            return self._json(200, {"message": "Patient deleted"})
        return self._json(405, {"message": "Method not allowed"})

    def _appointments_route(
        self, method: str, rest: list[str], params: httpx.QueryParams, body: dict[str, Any]
    ) -> httpx.Response:
        if not rest and method == "GET":
            owner = params.get("id") or ""
            start = params.get("startDate") or ""
            end = params.get("endDate") or start
            rows = []
            for appointment_id, item in sorted(
                self.appointments.items(), key=lambda entry: entry[1]["appointmentDate"]
            ):
                day = item["appointmentDate"].isoformat()
                if owner and item["patientId"] != owner:
                    continue
                if start and day < start:
                    continue
                if end and day > end:
                    continue
                rows.append(self._appointment(appointment_id))
            return self._json(200, self._page(rows, params, "totalAppointments"))
        if not rest and method == "POST":
            patient_id = body["patientId"]
            total = Decimal(str(body["totalAmount"]))
            paid = Decimal(str(body["paidAmount"]))
            if paid > total + self.balance(patient_id):
                return self._json(400, {"message": "Paid amount exceeds balance"})
            appointment_id = self.add_appointment(
                patient_id,
                date.fromisoformat(body["appointmentDate"]),
                total,
                paid,
                body.get("notes", ""),
            )
            return self._json(201, {"data": self._appointment(appointment_id)})

        appointment_id = rest[0]
        if appointment_id not in self.appointments:
            return self._json(404, {"message": "Appointment not found"})
        if method == "PUT":
            item = self.appointments[appointment_id]
            item["totalAmount"] = Decimal(str(body["totalAmount"]))
            item["paidAmount"] = Decimal(str(body["paidAmount"]))
            item["appointmentDate"] = date.fromisoformat(body["appointmentDate"])
            item["notes"] = body.get("notes", "")
            return self._json(200, {"data": self._appointment(appointment_id)})
        if method == "DELETE":
            del self.appointments[appointment_id]
            return self._json(200, {"message": "Appointment deleted"})
        return self._json(405, {"message": "Method not allowed"})


@pytest.fixture
def fake_api() -> FakeClinicApi:
    return FakeClinicApi()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        api_base_url="http://clinic.test",
        search_debounce_seconds=0,
        token_store="memory",
    )


@pytest.fixture
def make_desk(
    fake_api: FakeClinicApi, settings: Settings
) -> Callable[..., Awaitable[ClinicDesk]]:
    """Build a desk wired to the fake API, signed in unless told otherwise."""

    async def factory(signed_in: bool = True, today: date = TODAY) -> ClinicDesk:
        store = (
            MemoryTokenStore(fake_api.token, "reception") if signed_in else MemoryTokenStore()
        )
        desk = ClinicDesk.from_settings(
            settings,
            transport=httpx.MockTransport(fake_api.handler),
            store=store,
            today=lambda: today,
        )
        await desk.session.restore()
        return desk

    return factory
