"""Client for the patient directory service."""

from __future__ import annotations

import logging
from typing import Any

from clinicdesk.errors import ApiError
from clinicdesk.models import DashboardStats, PageResult, Patient, PatientFields
from clinicdesk.services.http import ApiClient, parse_model, unwrap
from clinicdesk.services.pagination import ListQuery

logger = logging.getLogger(__name__)

_TOTAL_KEYS = ("totalPatients", "totalItems", "total")


def parse_page(payload: Any, model: type, total_keys: tuple[str, ...]) -> PageResult:
    """Build a ``PageResult`` from ``{data: [...], pagination: {...}}``."""

    if not isinstance(payload, dict):
        raise ApiError("The clinic API returned an unexpected list payload")
    rows = payload.get("data") or []
    pagination = payload.get("pagination") or {}
    items = [parse_model(model, row) for row in rows]
    try:
        total_items = next(
            (int(pagination[key]) for key in total_keys if pagination.get(key) is not None),
            len(items),
        )
        total_pages = int(pagination.get("totalPages") or 1)
    except (TypeError, ValueError) as exc:
        logger.warning("unexpected pagination block", extra={"pagination": pagination})
        raise ApiError("The clinic API returned invalid pagination totals") from exc
    return PageResult(items=items, total_pages=max(1, total_pages), total_items=total_items)


class PatientDirectory:
    def __init__(self, api: ApiClient) -> None:
        self._api = api

    async def list_patients(self, page: int = 1, limit: int = 10) -> PageResult[Patient]:
        payload = await self._api.get("/patients", page=page, limit=limit)
        return parse_page(payload, Patient, _TOTAL_KEYS)

    async def search(self, query: str, page: int = 1, limit: int = 10) -> PageResult[Patient]:
        payload = await self._api.get("/patients/search", query=query, page=page, limit=limit)
        return parse_page(payload, Patient, _TOTAL_KEYS)

    async def fetch_page(self, query: ListQuery) -> PageResult[Patient]:
        if query.search:
            return await self.search(query.search, query.page, query.limit)
        return await self.list_patients(query.page, query.limit)

    async def get(self, patient_id: str) -> Patient:
        payload = await self._api.get(f"/patients/{patient_id}")
        return parse_model(Patient, unwrap(payload))

    async def create(self, fields: PatientFields) -> Patient:
        payload = await self._api.post("/patients", json=fields.to_wire())
        patient = parse_model(Patient, unwrap(payload))
        logger.info("patient created", extra={"patient_id": patient.id})
        return patient

    async def update(self, patient_id: str, fields: PatientFields) -> Patient:
        payload = await self._api.put(f"/patients/{patient_id}", json=fields.to_wire())
        patient = parse_model(Patient, unwrap(payload))
        logger.info("patient updated", extra={"patient_id": patient_id})
        return patient

    async def delete(self, patient_id: str) -> None:
        await self._api.delete(f"/patients/{patient_id}")
        logger.info("patient deleted", extra={"patient_id": patient_id})

    async def dashboard(self) -> DashboardStats:
        payload = await self._api.get("/patients/dashboard")
        return parse_model(DashboardStats, unwrap(payload) or {})
