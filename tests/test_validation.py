from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from clinicdesk.errors import ValidationFailed
from clinicdesk.models import PatientFields, error_messages
from clinicdesk.services.balance import AppointmentForm
from clinicdesk.services.validation import (
    amount_error,
    filter_amount_input,
    format_amount,
    max_allowed_payment,
    parse_amount,
    payment_error,
)

GOOD_PATIENT = {
    "name": " Anita Rao ",
    "age": 34,
    "gender": "female",
    "phoneNumber": "98765 43210",
    "address": "12 Lake Road",
    "email": "",
}


def _form(total: str, paid: str, balance: str) -> AppointmentForm:
    form = AppointmentForm(
        patient_id="p1", appointment_date=date(2024, 3, 15), balance=Decimal(balance)
    )
    form.set_total(total)
    form.set_paid(paid)
    return form


def test_payment_may_cover_prior_debt():
    assert max_allowed_payment(Decimal("500"), Decimal("200")) == Decimal("700.00")
    assert payment_error("500", "700", "200") is None
    assert payment_error("500", "700.01", "200") == "Paid amount cannot exceed 700"


def test_overpayment_form_is_rejected_before_sending():
    form = _form("500", "750", "200")
    assert form.errors() == {"paidAmount": "Paid amount cannot exceed 700"}
    with pytest.raises(ValidationFailed) as excinfo:
        form.to_fields()
    assert excinfo.value.errors["paidAmount"] == "Paid amount cannot exceed 700"


def test_ceiling_is_exact_to_the_cent():
    # 0.1 + 0.2 must equal 0.3 exactly
    assert payment_error("0.1", "0.3", "0.2") is None
    assert payment_error(0.1, 0.3, 0.2) is None
    assert payment_error("0.1", "0.31", "0.2") == "Paid amount cannot exceed 0.30"


def test_negative_balance_does_not_raise_the_ceiling():
    assert max_allowed_payment(Decimal("100"), Decimal("-50")) == Decimal("100.00")


@pytest.mark.parametrize(
    "text, expected",
    [
        ("", "Total amount is required"),
        ("abc", "Total amount must be a number"),
        ("-5", "Total amount cannot be negative"),
        ("500000.01", "Total amount cannot exceed 500000"),
        ("500000", None),
        ("0", None),
    ],
)
def test_amount_error(text, expected):
    assert amount_error("Total amount", text) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("12a3", "123"),
        ("1.2.3", "1.23"),
        ("12.345", "12.34"),
        (".5", "0.5"),
        ("600000", "500000"),
        ("₹1,250.75", "1250.75"),
        ("", ""),
    ],
)
def test_filter_amount_input(raw, expected):
    assert filter_amount_input(raw) == expected


def test_parse_and_format_amounts():
    assert parse_amount("700.5") == Decimal("700.50")
    assert parse_amount(".") is None
    assert parse_amount("nan") is None
    assert format_amount(Decimal("700")) == "700"
    assert format_amount(Decimal("700.5")) == "700.50"


def test_to_fields_builds_wire_payload():
    form = _form("500", "300", "0")
    form.notes = "  follow-up  "
    fields = form.to_fields()
    assert fields.to_wire() == {
        "patientId": "p1",
        "appointmentDate": "2024-03-15",
        "totalAmount": 500,
        "paidAmount": 300,
        "notes": "follow-up",
    }


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("", "Phone number is required"),
        ("98765", "Phone number must be exactly 10 digits"),
        ("+91 98765 43210", "Phone number must be exactly 10 digits"),
    ],
)
def test_patient_phone_is_rejected(raw, expected):
    with pytest.raises(ValidationError) as excinfo:
        PatientFields.model_validate({**GOOD_PATIENT, "phoneNumber": raw})
    assert error_messages(excinfo.value.errors(), PatientFields) == {"phoneNumber": expected}


@pytest.mark.parametrize("raw", ["98765-43210", "(987) 654 3210", 9876543210])
def test_patient_phone_is_stripped_to_digits(raw):
    fields = PatientFields.model_validate({**GOOD_PATIENT, "phoneNumber": raw})
    assert fields.phone_number == "9876543210"


def test_patient_fields_validation():
    with pytest.raises(ValidationError) as excinfo:
        PatientFields.model_validate(
            {"name": " ", "age": 151, "gender": "unknown", "phoneNumber": "123", "address": ""}
        )
    errors = error_messages(excinfo.value.errors(), PatientFields)
    assert set(errors) == {"name", "age", "gender", "phoneNumber", "address"}

    with pytest.raises(ValidationError) as excinfo:
        PatientFields.model_validate({**GOOD_PATIENT, "email": "not-an-address"})
    assert set(error_messages(excinfo.value.errors(), PatientFields)) == {"email"}

    fields = PatientFields.model_validate({**GOOD_PATIENT, "age": "34", "gender": "Female"})
    assert fields.to_wire() == {
        "name": "Anita Rao",
        "age": 34,
        "gender": "female",
        "phoneNumber": "9876543210",
        "address": "12 Lake Road",
    }
