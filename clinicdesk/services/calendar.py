"""Month calendar of appointments with payment statistics."""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Sequence

from clinicdesk.errors import ApiError, SessionExpiredError
from clinicdesk.models import Appointment, quantize_money
from clinicdesk.services.appointments import AppointmentLedger
from clinicdesk.services.date_range import format_date, month_bounds
from clinicdesk.services.validation import format_amount

logger = logging.getLogger(__name__)

FULLY_PAID = "Fully Paid"
PENDING = "Pending"
DAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


def month_grid(year: int, month: int) -> list[int | None]:
    """Day cells for a Sunday-first month view, padded with leading ``None``."""

    first_weekday, days_in_month = calendar.monthrange(year, month)
    leading = (first_weekday + 1) % 7
    return [None] * leading + list(range(1, days_in_month + 1))


def shift_month(year: int, month: int, direction: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + direction
    return index // 12, index % 12 + 1


def appointments_on(appointments: Iterable[Appointment], day: date) -> list[Appointment]:
    return [item for item in appointments if item.appointment_date == day]


def payment_status(total: Decimal, paid: Decimal) -> str:
    return FULLY_PAID if total - paid <= 0 else PENDING


def calculate_age(dob: date | None, today: date) -> int | None:
    if dob is None:
        return None
    age = today.year - dob.year
    if (today.month, today.day) < (dob.month, dob.day):
        age -= 1
    return age if age >= 0 else None


@dataclass
class MonthSummary:
    total_revenue: Decimal = Decimal("0.00")
    total_paid: Decimal = Decimal("0.00")
    pending_amount: Decimal = Decimal("0.00")
    fully_paid_count: int = 0
    pending_count: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "totalRevenue": format_amount(self.total_revenue),
            "totalPaid": format_amount(self.total_paid),
            "pendingAmount": format_amount(self.pending_amount),
            "fullyPaidCount": self.fully_paid_count,
            "pendingCount": self.pending_count,
        }


def summarize(appointments: Sequence[Appointment]) -> MonthSummary:
    revenue = sum((item.total_amount for item in appointments), Decimal("0"))
    paid = sum((item.paid_amount for item in appointments), Decimal("0"))
    fully_paid = sum(
        1 for item in appointments if payment_status(item.total_amount, item.paid_amount) == FULLY_PAID
    )
    return MonthSummary(
        total_revenue=quantize_money(revenue),
        total_paid=quantize_money(paid),
        pending_amount=quantize_money(revenue - paid),
        fully_paid_count=fully_paid,
        pending_count=len(appointments) - fully_paid,
    )


@dataclass
class CalendarMonth:
    year: int
    month: int
    appointments: list[Appointment] = field(default_factory=list)
    error: str | None = None
    today: date | None = None

    @property
    def title(self) -> str:
        return f"{calendar.month_name[self.month]} {self.year}"

    def days(self) -> list[dict[str, Any]]:
        cells: list[dict[str, Any]] = []
        for day in month_grid(self.year, self.month):
            if day is None:
                cells.append({"day": None, "appointments": []})
                continue
            booked = appointments_on(self.appointments, date(self.year, self.month, day))
            cells.append(
                {
                    "day": day,
                    "appointments": [
                        {
                            "id": item.id,
                            "patientName": item.patient_name,
                            "patientAge": self._patient_age(item),
                            "totalAmount": format_amount(item.total_amount),
                            "status": payment_status(item.total_amount, item.paid_amount),
                        }
                        for item in booked
                    ],
                }
            )
        return cells

    def _patient_age(self, appointment: Appointment) -> int | None:
        patient = appointment.patient
        if patient is None:
            return None
        if patient.dob is not None and self.today is not None:
            return calculate_age(patient.dob, self.today)
        return patient.age

    def as_dict(self) -> dict[str, Any]:
        bounds = month_bounds(self.year, self.month)
        previous = shift_month(self.year, self.month, -1)
        following = shift_month(self.year, self.month, 1)
        return {
            "year": self.year,
            "month": self.month,
            "title": self.title,
            "start": format_date(bounds.start),
            "end": format_date(bounds.end),
            "dayNames": list(DAY_NAMES),
            "days": self.days(),
            "summary": summarize(self.appointments).as_dict(),
            "previous": {"year": previous[0], "month": previous[1]},
            "next": {"year": following[0], "month": following[1]},
            "error": self.error,
        }


async def load_month(
    ledger: AppointmentLedger,
    year: int,
    month: int,
    limit: int = 500,
    *,
    today: date | None = None,
) -> CalendarMonth:
    """Fetch every appointment of a month across all patients."""

    bounds = month_bounds(year, month)
    try:
        page = await ledger.list_appointments(None, 1, limit, bounds)
    except SessionExpiredError:
        raise
    except ApiError as exc:
        logger.warning("calendar fetch failed", extra={"year": year, "month": month})
        return CalendarMonth(year, month, error=exc.message, today=today)
    if page.total_pages > 1:
        logger.warning(
            "calendar month truncated",
            extra={"year": year, "month": month, "limit": limit, "total_items": page.total_items},
        )
    return CalendarMonth(year, month, appointments=page.items, today=today)
