"""View-model for one clinic workstation.

``ClinicDesk`` owns the patient and appointment list controllers, the balance
ledger and the session, and implements every user action on top of them.
The HTTP layer in ``clinicdesk.main`` only translates requests into calls on
this object and renders its state.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Callable, Mapping, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from clinicdesk.core.config import Settings
from clinicdesk.errors import (
    ApiError,
    MutationFailed,
    NotFound,
    SessionExpiredError,
    ValidationFailed,
)
from clinicdesk.models import (
    Appointment,
    AppointmentInput,
    DashboardStats,
    Patient,
    PatientFields,
    error_messages,
)
from clinicdesk.notifications import Notifier
from clinicdesk.services import auth
from clinicdesk.services.appointments import AppointmentLedger
from clinicdesk.services.balance import (
    AppointmentForm,
    BalanceLedger,
    BalanceSource,
    BalanceView,
    RefreshOutcome,
)
from clinicdesk.services.calendar import CalendarMonth, load_month, payment_status
from clinicdesk.services.date_range import DatePreset, FilterState, local_today
from clinicdesk.services.http import ApiClient
from clinicdesk.services.pagination import PaginatedListController
from clinicdesk.services.patients import PatientDirectory
from clinicdesk.services.session import SessionContext
from clinicdesk.services.token_store import TokenStore, build_token_store
from clinicdesk.services.validation import format_amount

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")
FormT = TypeVar("FormT", bound=BaseModel)


class ClinicDesk:
    def __init__(
        self,
        api: ApiClient,
        session: SessionContext,
        settings: Settings,
        *,
        notifier: Notifier | None = None,
        today: Callable[[], date] | None = None,
    ) -> None:
        self.api = api
        self.session = session
        self.settings = settings
        self.notifier = notifier or Notifier()
        self.directory = PatientDirectory(api)
        self.ledger = AppointmentLedger(api)
        self.balances = BalanceLedger(self.directory, self.notifier)
        self._today = today or (lambda: local_today(settings.timezone))
        self.selected_patient_id: str | None = None

        list_options = {
            "items_per_page": settings.default_items_per_page,
            "page_size_options": settings.page_size_options,
            "debounce_seconds": settings.search_debounce_seconds,
            "notifier": self.notifier,
        }
        self.patients: PaginatedListController[Patient] = PaginatedListController(
            self.directory.fetch_page, name="patients", **list_options
        )
        self.appointments: PaginatedListController[Appointment] = PaginatedListController(
            self.ledger.fetch_page,
            name="appointments",
            filter_state=FilterState(),
            **list_options,
        )
        self._unsubscribe = session.on_expired(self._on_session_expired)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        store: TokenStore | None = None,
        today: Callable[[], date] | None = None,
    ) -> "ClinicDesk":
        session = SessionContext(store or build_token_store(settings))
        api = ApiClient.from_settings(settings, session, transport=transport)
        return cls(api, session, settings, today=today)

    def today(self) -> date:
        return self._today()

    # session

    async def login(self, username: str, password: str) -> None:
        await auth.login(self.api, self.session, username, password)
        await self.load_views()

    async def load_views(self) -> None:
        """Fetch the first page of both lists side by side."""

        await asyncio.gather(self.patients.refresh(), self.appointments.refresh())

    async def logout(self) -> None:
        await auth.logout(self.session)
        self._reset_views()

    def _on_session_expired(self) -> None:
        self._reset_views()
        self.notifier.error("Session expired, please log in again")

    def _reset_views(self) -> None:
        self.patients.clear()
        self.patients.search_term = ""
        self.appointments.clear()
        self.appointments.owner_id = None
        self.balances.clear()
        self.selected_patient_id = None

    async def aclose(self) -> None:
        self._unsubscribe()
        self.patients.close()
        self.appointments.close()
        await self.api.aclose()
        await self.session.aclose()

    # patients

    async def _mutate(self, action: str, call: Awaitable[ResultT]) -> ResultT:
        try:
            return await call
        except SessionExpiredError:
            raise
        except ApiError as exc:
            logger.warning("mutation failed", extra={"action": action, "error": exc.message})
            self.notifier.error(f"Failed to {action}")
            raise MutationFailed(action, exc) from exc

    def report_invalid(self, errors: Mapping[str, str]) -> None:
        """Raise the notifications a rejected form shows besides its inline errors."""

        if "phoneNumber" in errors:
            self.notifier.error("Please enter a valid 10-digit phone number")

    def _validated(self, model: type[FormT], data: FormT | Mapping[str, Any]) -> FormT:
        if isinstance(data, model):
            return data
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            errors = error_messages(exc.errors(), model)
            self.report_invalid(errors)
            raise ValidationFailed(errors) from exc

    async def add_patient(self, data: PatientFields | Mapping[str, Any]) -> Patient:
        fields = self._validated(PatientFields, data)
        patient = await self._mutate("add patient", self.directory.create(fields))
        self.notifier.success("Patient added successfully!")
        self.patients.page = 1
        await self.patients.refresh()
        return patient

    async def open_edit_patient(self, patient_id: str) -> dict[str, Any]:
        patient = await self.directory.get(patient_id)
        return {"id": patient.id, **patient.editable_fields()}

    async def update_patient(
        self, patient_id: str, data: PatientFields | Mapping[str, Any]
    ) -> Patient:
        fields = self._validated(PatientFields, data)
        patient = await self._mutate("update patient", self.directory.update(patient_id, fields))
        self.notifier.success("Patient updated successfully!")
        await self.patients.refresh()
        return patient

    async def delete_patient(self, patient_id: str) -> None:
        await self._mutate("delete patient", self.directory.delete(patient_id))
        self.notifier.success("Patient deleted successfully!")
        self.balances.invalidate(patient_id)
        # the directory deletes the patient's appointments with it
        if self.selected_patient_id == patient_id:
            self.selected_patient_id = None
            self.appointments.owner_id = None
            self.appointments.page = 1
        await self.patients.refresh()
        await self.appointments.refresh()

    async def select_patient(self, patient_id: str | None) -> BalanceView | None:
        """Show a patient's appointments and their freshly fetched balance."""

        self.selected_patient_id = patient_id
        balance = await self.balances.fetch_reported(patient_id) if patient_id else None
        await self.appointments.set_owner(patient_id)
        return balance

    async def apply_preset(self, preset: DatePreset | str) -> FilterState:
        filter_state = FilterState.from_preset(preset, self.today())
        await self.appointments.set_filter(filter_state)
        return filter_state

    # appointments

    def find_appointment(self, appointment_id: str) -> Appointment:
        for appointment in self.appointments.items:
            if appointment.id == appointment_id:
                return appointment
        raise NotFound(f"Appointment {appointment_id} is not on the current page")

    async def open_add_appointment(self, patient_id: str | None = None) -> AppointmentForm:
        owner = patient_id or self.selected_patient_id
        if not owner:
            raise ValidationFailed({"patientId": "Patient is required"})
        return await self.balances.open_add_form(owner, self.today())

    async def open_edit_appointment(self, appointment_id: str) -> AppointmentForm:
        return await self.balances.open_edit_form(self.find_appointment(appointment_id))

    def check_appointment(self, data: AppointmentInput | Mapping[str, Any]) -> AppointmentForm:
        """Validate form input as typed, against the last fetched balance."""

        data = self._validated(AppointmentInput, data)
        patient_id = data.patient_id or self.selected_patient_id or ""
        cached = self.balances.cached(patient_id) if patient_id else None
        form = AppointmentForm(
            patient_id=patient_id,
            appointment_date=data.appointment_date or self.today(),
            balance=cached.amount if cached else self._fallback_balance(patient_id),
            balance_source=BalanceSource.LEDGER if cached else BalanceSource.DERIVED,
        )
        form.set_total(data.total_amount or "")
        form.set_paid(data.paid_amount or "")
        return form

    def _fallback_balance(self, patient_id: str) -> Decimal:
        view = self.balances.display_for(patient_id, self.appointments.items)
        return view.amount if view else Decimal("0.00")

    @staticmethod
    def _fill_form(form: AppointmentForm, data: AppointmentInput) -> None:
        given = data.model_fields_set
        if data.appointment_date is not None:
            form.appointment_date = data.appointment_date
        if "total_amount" in given:
            form.total_amount = data.total_amount or ""
        if "paid_amount" in given:
            form.paid_amount = data.paid_amount or ""
        if "notes" in given:
            form.notes = data.notes or ""

    async def add_appointment(
        self, data: AppointmentInput | Mapping[str, Any]
    ) -> tuple[Appointment, RefreshOutcome]:
        data = self._validated(AppointmentInput, data)
        form = await self.open_add_appointment(data.patient_id)
        self._fill_form(form, data)
        fields = await self._mutate("add appointment", self.balances.prepare_submission(form))
        created = await self._mutate("add appointment", self.ledger.create(fields))
        self.notifier.success("Appointment added successfully!")
        outcome = await self.balances.refresh_after_mutation(form.patient_id, self.appointments)
        return created, outcome

    async def update_appointment(
        self, appointment_id: str, data: AppointmentInput | Mapping[str, Any]
    ) -> tuple[Appointment, RefreshOutcome]:
        data = self._validated(AppointmentInput, data)
        form = await self.open_edit_appointment(appointment_id)
        self._fill_form(form, data)
        fields = await self._mutate("update appointment", self.balances.prepare_submission(form))
        updated = await self._mutate(
            "update appointment", self.ledger.update(appointment_id, fields)
        )
        self.notifier.success("Appointment updated successfully!")
        outcome = await self.balances.refresh_after_mutation(form.patient_id, self.appointments)
        return updated, outcome

    async def delete_appointment(
        self, appointment_id: str, patient_id: str | None = None
    ) -> RefreshOutcome:
        if patient_id is None:
            patient_id = self.find_appointment(appointment_id).patient_id
        await self._mutate("delete appointment", self.ledger.delete(appointment_id))
        self.notifier.success("Appointment deleted successfully!")
        return await self.balances.refresh_after_mutation(patient_id, self.appointments)

    # read-only views

    async def dashboard(self) -> DashboardStats | None:
        try:
            return await self.directory.dashboard()
        except SessionExpiredError:
            raise
        except ApiError:
            self.notifier.error("Failed to load dashboard")
            return None

    async def calendar(self, year: int, month: int) -> CalendarMonth:
        view = await load_month(
            self.ledger, year, month, self.settings.calendar_fetch_limit, today=self.today()
        )
        if view.error:
            self.notifier.error("Failed to load calendar")
        return view

    # rendering

    def serialize_patient(self, patient: Patient) -> dict[str, Any]:
        row = patient.to_wire()
        cached = self.balances.cached(patient.id)
        if cached is not None:
            row["previousBalance"] = format_amount(cached.amount)
        return row

    def serialize_appointment(self, appointment: Appointment) -> dict[str, Any]:
        row = appointment.to_wire()
        row["patientName"] = appointment.patient_name
        row["paymentStatus"] = payment_status(appointment.total_amount, appointment.paid_amount)
        # rows carry their own as-of balance; the current ledger figure is view-level
        if appointment.previous_balance is not None:
            row["pendingBalance"] = format_amount(appointment.previous_balance)
            row["balanceSource"] = BalanceSource.APPOINTMENT.value
        else:
            row["pendingBalance"] = format_amount(appointment.outstanding)
            row["balanceSource"] = BalanceSource.DERIVED.value
        return row

    def patients_view(self) -> dict[str, Any]:
        view = self.patients.snapshot(self.serialize_patient)
        view["notifications"] = [item.as_dict() for item in self.notifier.drain()]
        return view

    def appointments_view(self) -> dict[str, Any]:
        view = self.appointments.snapshot(self.serialize_appointment)
        balance = (
            self.balances.display_for(self.selected_patient_id, self.appointments.items)
            if self.selected_patient_id
            else None
        )
        view["selectedPatientId"] = self.selected_patient_id
        view["balance"] = balance.as_dict() if balance else None
        view["notifications"] = [item.as_dict() for item in self.notifier.drain()]
        return view
