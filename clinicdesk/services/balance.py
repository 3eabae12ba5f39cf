"""Pending-balance tracking and appointment form validation.

The ledger service owns a patient's ``previousBalance``. This module always
reads it fresh from ``GET /patients/:id`` before it is shown or used to check
a payment, because the visible appointment page rarely holds all of a
patient's appointments. Summing ``totalAmount - paidAmount`` over loaded
appointments is only a display fallback for when no ledger value has been
fetched yet, and it is labelled as such.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

from clinicdesk.errors import ApiError, SessionExpiredError, ValidationFailed
from clinicdesk.models import Appointment, AppointmentFields, quantize_money
from clinicdesk.notifications import Notifier
from clinicdesk.services.pagination import PaginatedListController
from clinicdesk.services.patients import PatientDirectory
from clinicdesk.services.validation import (
    amount_error,
    filter_amount_input,
    format_amount,
    max_allowed_payment,
    parse_amount,
    payment_error,
    to_money,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class BalanceSource(str, enum.Enum):
    LEDGER = "ledger"
    APPOINTMENT = "appointment"
    DERIVED = "derived"


@dataclass(frozen=True)
class BalanceView:
    patient_id: str
    amount: Decimal
    source: BalanceSource
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict[str, Any]:
        return {
            "patientId": self.patient_id,
            "amount": format_amount(self.amount),
            "source": self.source.value,
            "fetchedAt": self.fetched_at.isoformat(),
        }


def derived_balance(appointments: Iterable[Appointment]) -> Decimal:
    """Sum of unpaid charges over the given appointments (fallback only)."""

    total = sum((appointment.outstanding for appointment in appointments), ZERO)
    return quantize_money(max(total, ZERO))


@dataclass
class AppointmentForm:
    """State of the add/edit appointment form, validated as the user types."""

    patient_id: str
    appointment_date: date
    balance: Decimal
    mode: str = "add"
    appointment_id: str | None = None
    display_balance: Decimal | None = None
    total_amount: str = ""
    paid_amount: str = ""
    notes: str = ""
    original_total: Decimal | None = None
    original_paid: Decimal | None = None
    balance_source: BalanceSource = BalanceSource.LEDGER

    def use_ledger_balance(self, amount: Decimal) -> None:
        """Validate against the patient's current ledger balance.

        When editing, the ledger balance already includes this appointment's
        own unpaid charge, which is taken out so it is not counted twice.
        """

        if self.mode == "edit":
            own = to_money(self.original_total) - to_money(self.original_paid)
            amount = max(amount - own, ZERO)
        self.balance = quantize_money(amount)
        self.balance_source = BalanceSource.LEDGER

    def set_total(self, raw: str) -> str:
        self.total_amount = filter_amount_input(raw)
        return self.total_amount

    def set_paid(self, raw: str) -> str:
        self.paid_amount = filter_amount_input(raw)
        return self.paid_amount

    @property
    def amounts_changed(self) -> bool:
        if self.mode != "edit":
            return True
        return (
            parse_amount(self.total_amount) != self.original_total
            or parse_amount(self.paid_amount) != self.original_paid
        )

    @property
    def max_payment(self) -> Decimal:
        return max_allowed_payment(to_money(self.total_amount), self.balance)

    def errors(self) -> dict[str, str]:
        errors: dict[str, str] = {}
        if not self.patient_id:
            errors["patientId"] = "Patient is required"
        total_message = amount_error("Total amount", self.total_amount)
        if total_message:
            errors["totalAmount"] = total_message
        paid_message = amount_error("Paid amount", self.paid_amount) or payment_error(
            self.total_amount, self.paid_amount, self.balance
        )
        if paid_message:
            errors["paidAmount"] = paid_message
        return errors

    def to_fields(self) -> AppointmentFields:
        errors = self.errors()
        if errors:
            raise ValidationFailed(errors)
        return AppointmentFields(
            patient_id=self.patient_id,
            appointment_date=self.appointment_date,
            total_amount=to_money(self.total_amount),
            paid_amount=to_money(self.paid_amount),
            notes=self.notes.strip(),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "appointmentId": self.appointment_id,
            "patientId": self.patient_id,
            "appointmentDate": self.appointment_date.isoformat(),
            "totalAmount": self.total_amount,
            "paidAmount": self.paid_amount,
            "notes": self.notes,
            "balance": format_amount(self.balance),
            "balanceSource": self.balance_source.value,
            "displayBalance": (
                format_amount(self.display_balance) if self.display_balance is not None else None
            ),
            "maxPayment": format_amount(self.max_payment),
            "errors": self.errors(),
        }


@dataclass
class RefreshOutcome:
    list_refreshed: bool
    balance: BalanceView | None


class BalanceLedger:
    """Fetch, cache and display patients' pending balances."""

    def __init__(self, directory: PatientDirectory, notifier: Notifier | None = None) -> None:
        self._directory = directory
        self._notifier = notifier
        self._balances: dict[str, BalanceView] = {}

    async def fetch(self, patient_id: str) -> BalanceView:
        """Read the authoritative balance from the patient record."""

        patient = await self._directory.get(patient_id)
        view = BalanceView(
            patient_id=patient_id,
            amount=patient.previous_balance if patient.previous_balance is not None else ZERO,
            source=BalanceSource.LEDGER,
        )
        self._balances[patient_id] = view
        logger.debug("fetched balance", extra={"patient_id": patient_id, "amount": str(view.amount)})
        return view

    def cached(self, patient_id: str) -> BalanceView | None:
        return self._balances.get(patient_id)

    def invalidate(self, patient_id: str) -> None:
        self._balances.pop(patient_id, None)

    def clear(self) -> None:
        self._balances.clear()

    def display_for(
        self, patient_id: str, appointments: Iterable[Appointment] = ()
    ) -> BalanceView | None:
        """Balance to show for a patient, naming where the number came from."""

        cached = self._balances.get(patient_id)
        if cached is not None:
            return cached
        owned = [item for item in appointments if item.patient_id == patient_id]
        if not owned:
            return None
        return BalanceView(patient_id, derived_balance(owned), BalanceSource.DERIVED)

    async def fetch_reported(self, patient_id: str) -> BalanceView | None:
        try:
            return await self.fetch(patient_id)
        except SessionExpiredError:
            raise
        except ApiError as exc:
            logger.warning(
                "balance fetch failed", extra={"patient_id": patient_id, "error": exc.message}
            )
            if self._notifier is not None:
                self._notifier.error("Failed to load patient balance")
            return None

    async def open_add_form(self, patient_id: str, today: date) -> AppointmentForm:
        view = await self.fetch_reported(patient_id)
        if view is None:
            # unknown balance: validate as if there were no prior debt
            return AppointmentForm(
                patient_id=patient_id,
                appointment_date=today,
                balance=ZERO,
                balance_source=BalanceSource.DERIVED,
            )
        return AppointmentForm(
            patient_id=patient_id,
            appointment_date=today,
            balance=view.amount,
            display_balance=view.amount,
        )

    async def open_edit_form(self, appointment: Appointment) -> AppointmentForm:
        stored = appointment.previous_balance
        form = AppointmentForm(
            patient_id=appointment.patient_id,
            appointment_date=appointment.appointment_date,
            mode="edit",
            appointment_id=appointment.id,
            display_balance=stored,
            balance=stored if stored is not None else ZERO,
            balance_source=BalanceSource.APPOINTMENT,
            total_amount=format_amount(appointment.total_amount),
            paid_amount=format_amount(appointment.paid_amount),
            notes=appointment.notes or "",
            original_total=appointment.total_amount,
            original_paid=appointment.paid_amount,
        )
        view = await self.fetch_reported(appointment.patient_id)
        if view is not None:
            form.use_ledger_balance(view.amount)
        return form

    async def prepare_submission(self, form: AppointmentForm) -> AppointmentFields:
        """Validate a form against the freshest balance and build its payload."""

        if form.mode == "edit" and form.amounts_changed:
            view = await self.fetch(form.patient_id)
            form.use_ledger_balance(view.amount)
        return form.to_fields()

    async def refresh_after_mutation(
        self, patient_id: str, appointments: PaginatedListController[Appointment]
    ) -> RefreshOutcome:
        """Refresh the appointment page and the owner's balance independently."""

        self.invalidate(patient_id)
        list_result, balance_result = await asyncio.gather(
            appointments.refresh(),
            self.fetch_reported(patient_id),
            return_exceptions=True,
        )
        for result in (list_result, balance_result):
            if isinstance(result, SessionExpiredError):
                raise result
        for result in (list_result, balance_result):
            if isinstance(result, BaseException):
                raise result
        return RefreshOutcome(list_refreshed=bool(list_result), balance=balance_result)
