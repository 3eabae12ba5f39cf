from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, Field, field_validator, model_validator

from clinicdesk.models.base import ApiModel, Money
from clinicdesk.models.patient import _coerce_text


def _date_part(value: Any) -> Any:
    """Reduce datetimes and ISO datetime strings to their calendar date."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10 and value[10] in "T ":
        return value[:10]
    return value


class PatientSummary(ApiModel):
    """Patient object some ledger responses embed in ``patientId``."""

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    name: str | None = None
    age: int | None = None
    gender: str | None = None
    phone_number: str | None = None
    email: str | None = None
    address: str | None = None
    dob: date | None = None

    @field_validator("phone_number", mode="before")
    @classmethod
    def _phone_as_text(cls, value: Any) -> Any:
        return _coerce_text(value)

    @field_validator("dob", mode="before")
    @classmethod
    def _dob_date_part(cls, value: Any) -> Any:
        return _date_part(value) or None


class AppointmentFields(ApiModel):
    """Appointment fields sent on create and update."""

    patient_id: str
    appointment_date: date
    total_amount: Money
    paid_amount: Money
    notes: str = ""


class AppointmentInput(ApiModel):
    """Appointment form input; only the fields present are applied."""

    patient_id: str | None = None
    appointment_date: date | None = None
    total_amount: str | None = None
    paid_amount: str | None = None
    notes: str | None = None

    @field_validator("appointment_date", mode="before")
    @classmethod
    def _input_date_part(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return _date_part(value)

    @field_validator("total_amount", "paid_amount", mode="before")
    @classmethod
    def _amount_as_text(cls, value: Any) -> Any:
        # amount inputs arrive as typed text or as JSON numbers
        if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            return str(value)
        return value


class Appointment(ApiModel):
    """Appointment record as returned by the ledger service."""

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    patient_id: str
    patient: PatientSummary | None = None
    appointment_date: date
    total_amount: Money = Decimal("0")
    paid_amount: Money = Decimal("0")
    notes: str | None = None
    previous_balance: Money | None = None

    @model_validator(mode="before")
    @classmethod
    def _split_embedded_patient(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        owner = data.get("patientId", data.get("patient_id"))
        if isinstance(owner, dict):
            data = {k: v for k, v in data.items() if k not in ("patientId", "patient_id")}
            data["patient"] = owner
            data["patientId"] = owner.get("_id") or owner.get("id")
        return data

    @field_validator("appointment_date", mode="before")
    @classmethod
    def _appointment_date_part(cls, value: Any) -> Any:
        return _date_part(value)

    @property
    def outstanding(self) -> Decimal:
        """Charge left unpaid by this appointment alone."""

        return self.total_amount - self.paid_amount

    @property
    def patient_name(self) -> str:
        if self.patient and self.patient.name:
            return self.patient.name
        return "Unknown Patient"
