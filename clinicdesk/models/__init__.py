"""Wire models for the clinic API."""

from clinicdesk.models.appointment import (
    Appointment,
    AppointmentFields,
    AppointmentInput,
    PatientSummary,
)
from clinicdesk.models.base import ApiModel, Money, error_messages, quantize_money
from clinicdesk.models.dashboard import DashboardStats
from clinicdesk.models.page import PageResult
from clinicdesk.models.patient import Gender, Patient, PatientFields

__all__ = [
    "ApiModel",
    "Appointment",
    "AppointmentFields",
    "AppointmentInput",
    "DashboardStats",
    "Gender",
    "Money",
    "PageResult",
    "Patient",
    "PatientFields",
    "PatientSummary",
    "error_messages",
    "quantize_money",
]
