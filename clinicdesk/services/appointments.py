"""Client for the appointment ledger service."""

from __future__ import annotations

import logging

from clinicdesk.models import Appointment, AppointmentFields, PageResult
from clinicdesk.services.date_range import DateRange
from clinicdesk.services.http import ApiClient, parse_model, unwrap
from clinicdesk.services.pagination import ListQuery
from clinicdesk.services.patients import parse_page

logger = logging.getLogger(__name__)

_TOTAL_KEYS = ("totalAppointments", "totalItems", "total")


class AppointmentLedger:
    def __init__(self, api: ApiClient) -> None:
        self._api = api

    async def list_appointments(
        self,
        patient_id: str | None = None,
        page: int = 1,
        limit: int = 10,
        date_range: DateRange | None = None,
    ) -> PageResult[Appointment]:
        """List appointments; an empty ``patient_id`` means every patient."""

        params = {"id": patient_id or "", "page": page, "limit": limit}
        params.update((date_range or DateRange()).as_params())
        payload = await self._api.get("/appointments", **params)
        return parse_page(payload, Appointment, _TOTAL_KEYS)

    async def fetch_page(self, query: ListQuery) -> PageResult[Appointment]:
        return await self.list_appointments(
            query.owner_id, query.page, query.limit, query.date_range
        )

    async def create(self, fields: AppointmentFields) -> Appointment:
        payload = await self._api.post("/appointments", json=fields.to_wire())
        appointment = parse_model(Appointment, unwrap(payload))
        logger.info(
            "appointment created",
            extra={"appointment_id": appointment.id, "patient_id": fields.patient_id},
        )
        return appointment

    async def update(self, appointment_id: str, fields: AppointmentFields) -> Appointment:
        payload = await self._api.put(f"/appointments/{appointment_id}", json=fields.to_wire())
        appointment = parse_model(Appointment, unwrap(payload))
        logger.info("appointment updated", extra={"appointment_id": appointment_id})
        return appointment

    async def delete(self, appointment_id: str) -> None:
        await self._api.delete(f"/appointments/{appointment_id}")
        logger.info("appointment deleted", extra={"appointment_id": appointment_id})
