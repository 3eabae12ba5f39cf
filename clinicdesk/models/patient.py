from __future__ import annotations

import enum
import re
from typing import Annotated, Any

from pydantic import AliasChoices, EmailStr, Field, StringConstraints, field_validator

from clinicdesk.models.base import ApiModel, Money

PHONE_DIGITS = 10
MAX_AGE = 150

_NON_DIGIT = re.compile(r"\D")

RequiredText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


def _coerce_text(value: Any) -> Any:
    # the API has been seen returning phone numbers as integers
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def clean_phone(raw: Any) -> str:
    return _NON_DIGIT.sub("", str(_coerce_text(raw) or ""))


class PatientFields(ApiModel):
    """Editable patient fields, validated on input and sent on create and update."""

    name: RequiredText
    age: int = Field(ge=0, le=MAX_AGE)
    gender: Gender
    phone_number: str
    email: EmailStr | None = None
    address: RequiredText

    @field_validator("gender", mode="before")
    @classmethod
    def _lower_gender(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("phone_number", mode="before")
    @classmethod
    def _ten_digit_phone(cls, value: Any) -> str:
        digits = clean_phone(value)
        if not digits:
            raise ValueError("Phone number is required")
        if len(digits) != PHONE_DIGITS:
            raise ValueError(f"Phone number must be exactly {PHONE_DIGITS} digits")
        return digits

    @field_validator("email", mode="before")
    @classmethod
    def _blank_email(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value


class Patient(ApiModel):
    """Patient record as returned by the directory service."""

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    name: str
    age: int | None = None
    gender: str | None = None
    phone_number: str | None = None
    email: str | None = None
    address: str | None = None
    previous_balance: Money | None = None
    total_appointments: int = 0

    @field_validator("phone_number", mode="before")
    @classmethod
    def _phone_as_text(cls, value: Any) -> Any:
        return _coerce_text(value)

    @field_validator("gender", mode="before")
    @classmethod
    def _lower_gender(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() or None
        return value

    def editable_fields(self) -> dict[str, Any]:
        """Return the patient's fields in the shape the edit form expects."""

        return {
            "name": self.name,
            "age": self.age,
            "gender": self.gender,
            "phoneNumber": self.phone_number or "",
            "email": self.email or "",
            "address": self.address or "",
        }
