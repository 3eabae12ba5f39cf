"""Service layer utilities for the clinic desk."""

from clinicdesk.services.appointments import AppointmentLedger
from clinicdesk.services.balance import AppointmentForm, BalanceLedger, BalanceSource, BalanceView
from clinicdesk.services.date_range import DatePreset, DateRange, FilterState, resolve_preset
from clinicdesk.services.pagination import PaginatedListController, build_query, visible_pages
from clinicdesk.services.patients import PatientDirectory
from clinicdesk.services.session import SessionContext

__all__ = [
    "AppointmentForm",
    "AppointmentLedger",
    "BalanceLedger",
    "BalanceSource",
    "BalanceView",
    "DatePreset",
    "DateRange",
    "FilterState",
    "PaginatedListController",
    "PatientDirectory",
    "SessionContext",
    "build_query",
    "resolve_preset",
    "visible_pages",
]
