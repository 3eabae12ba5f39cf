from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Callable

import httpx
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from pydantic import BaseModel, ConfigDict, Field
from starlette.middleware.base import BaseHTTPMiddleware

from clinicdesk import __version__
from clinicdesk.core.config import Settings, get_settings
from clinicdesk.desk import ClinicDesk
from clinicdesk.errors import (
    ApiError,
    MutationFailed,
    NotFound,
    SessionExpiredError,
    ValidationFailed,
)
from clinicdesk.logging_utils import (
    configure_logging,
    get_current_user,
    _request_id_ctx_var,
    _username_ctx_var,
)
from clinicdesk.models import AppointmentInput, PatientFields, error_messages
from clinicdesk.services.date_range import DatePreset
from clinicdesk.services.token_store import TokenStore

configure_logging()

logger = logging.getLogger(__name__)

REQUEST_COUNTER = Counter(
    "clinicdesk_requests_total",
    "Total number of processed HTTP requests.",
    ["method", "path", "status", "user"],
)
REQUEST_LATENCY = Histogram(
    "clinicdesk_request_duration_seconds",
    "HTTP request latency in seconds.",
    ["method", "path"],
)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Populate request and user context for logging."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        desk: ClinicDesk | None = getattr(request.app.state, "desk", None)
        username = desk.session.username if desk is not None else None

        request.state.request_id = request_id
        request_id_token = _request_id_ctx_var.set(request_id)
        username_token = _username_ctx_var.set(username)

        try:
            response = await call_next(request)
        finally:
            _request_id_ctx_var.reset(request_id_token)
            _username_ctx_var.reset(username_token)

        response.headers["X-Request-ID"] = request_id
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Emit structured access logs and feed metrics."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start_time = time.perf_counter()
        path = request.scope.get("root_path", "") + request.scope.get("path", request.url.path)
        method = request.method

        try:
            response = await call_next(request)
        except Exception:
            elapsed = time.perf_counter() - start_time
            REQUEST_COUNTER.labels(
                method=method, path=path, status="500", user=get_current_user()
            ).inc()
            REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)
            logger.exception(
                "request failed",
                extra={
                    "method": method,
                    "path": path,
                    "duration_ms": round(elapsed * 1000, 2),
                },
            )
            raise

        elapsed = time.perf_counter() - start_time
        status_code = response.status_code

        REQUEST_COUNTER.labels(
            method=method,
            path=path,
            status=str(status_code),
            user=get_current_user(),
        ).inc()
        REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)

        logger.info(
            "request completed",
            extra={
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(elapsed * 1000, 2),
            },
        )

        return response


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginRequest(CamelModel):
    username: str
    password: str


class PageRequest(CamelModel):
    page: int


class PageSizeRequest(CamelModel):
    items_per_page: int = Field(alias="itemsPerPage")


class SearchRequest(CamelModel):
    term: str = ""


class FilterRequest(CamelModel):
    preset: DatePreset


def get_desk(request: Request) -> ClinicDesk:
    return request.app.state.desk


def require_session(desk: ClinicDesk = Depends(get_desk)) -> ClinicDesk:
    """Reject calls made without a live session."""

    if not desk.session.active:
        raise SessionExpiredError("Not logged in")
    return desk


router = APIRouter()


@router.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus metrics for scraping."""

    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint used by infrastructure checks."""

    return {"status": "ok"}


@router.post("/session/login")
async def login(payload: LoginRequest, desk: ClinicDesk = Depends(get_desk)) -> dict[str, Any]:
    """Sign in against the auth service and load the first pages."""

    try:
        await desk.login(payload.username, payload.password)
    except ApiError as exc:
        if exc.status_code in (400, 401, 403):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid username or password",
            ) from exc
        raise
    return {"status": "ok", "username": desk.session.username}


@router.post("/session/logout")
async def logout(desk: ClinicDesk = Depends(get_desk)) -> dict[str, Any]:
    await desk.logout()
    return {"status": "ok", "redirect": "/login"}


@router.get("/session")
def session_state(desk: ClinicDesk = Depends(get_desk)) -> dict[str, Any]:
    return {"active": desk.session.active, "username": desk.session.username}


@router.get("/dashboard")
async def dashboard(desk: ClinicDesk = Depends(require_session)) -> dict[str, Any]:
    stats = await desk.dashboard()
    return {
        "stats": stats.to_wire() if stats else None,
        "notifications": [item.as_dict() for item in desk.notifier.drain()],
    }


@router.get("/views/patients")
async def patients_view(
    refresh: bool = False, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    if refresh:
        await desk.patients.refresh()
    return desk.patients_view()


@router.post("/views/patients/page")
async def patients_page(
    payload: PageRequest, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    accepted = await desk.patients.set_page(payload.page)
    return {"accepted": accepted, **desk.patients_view()}


@router.post("/views/patients/page-size")
async def patients_page_size(
    payload: PageSizeRequest, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    await _change_page_size(desk.patients.set_items_per_page, payload.items_per_page)
    return desk.patients_view()


@router.post("/views/patients/search", status_code=status.HTTP_202_ACCEPTED)
async def patients_search(
    payload: SearchRequest, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    """Record the search term; the fetch runs after the quiet period."""

    desk.patients.set_search_term(payload.term)
    return {"searchPending": desk.patients.search_pending, **desk.patients_view()}


@router.post("/patients", status_code=status.HTTP_201_CREATED)
async def create_patient(
    payload: PatientFields, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    patient = await desk.add_patient(payload)
    return {"patient": desk.serialize_patient(patient), "view": desk.patients_view()}


@router.get("/patients/{patient_id}/form")
async def edit_patient_form(
    patient_id: str, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    return await desk.open_edit_patient(patient_id)


@router.put("/patients/{patient_id}")
async def update_patient(
    patient_id: str, payload: PatientFields, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    patient = await desk.update_patient(patient_id, payload)
    return {"patient": desk.serialize_patient(patient), "view": desk.patients_view()}


@router.delete("/patients/{patient_id}")
async def delete_patient(
    patient_id: str, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    await desk.delete_patient(patient_id)
    return {"status": "deleted", "view": desk.patients_view()}


@router.post("/patients/{patient_id}/select")
async def select_patient(
    patient_id: str, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    await desk.select_patient(patient_id)
    return desk.appointments_view()


@router.post("/views/appointments/all")
async def all_appointments(desk: ClinicDesk = Depends(require_session)) -> dict[str, Any]:
    await desk.select_patient(None)
    return desk.appointments_view()


@router.get("/views/appointments")
async def appointments_view(
    refresh: bool = False, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    if refresh:
        await desk.appointments.refresh()
    return desk.appointments_view()


@router.post("/views/appointments/page")
async def appointments_page(
    payload: PageRequest, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    accepted = await desk.appointments.set_page(payload.page)
    return {"accepted": accepted, **desk.appointments_view()}


@router.post("/views/appointments/page-size")
async def appointments_page_size(
    payload: PageSizeRequest, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    await _change_page_size(desk.appointments.set_items_per_page, payload.items_per_page)
    return desk.appointments_view()


@router.post("/views/appointments/filter")
async def appointments_filter(
    payload: FilterRequest, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    await desk.apply_preset(payload.preset)
    return desk.appointments_view()


@router.get("/appointments/form")
async def new_appointment_form(
    patient_id: str | None = Query(default=None, alias="patientId"),
    desk: ClinicDesk = Depends(require_session),
) -> dict[str, Any]:
    form = await desk.open_add_appointment(patient_id)
    return form.as_dict()


@router.get("/appointments/{appointment_id}/form")
async def edit_appointment_form(
    appointment_id: str, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    form = await desk.open_edit_appointment(appointment_id)
    return form.as_dict()


@router.post("/appointments/validate")
async def validate_appointment(
    payload: AppointmentInput, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    """Reactive validation of amounts as the user types."""

    return desk.check_appointment(payload).as_dict()


@router.post("/appointments", status_code=status.HTTP_201_CREATED)
async def create_appointment(
    payload: AppointmentInput, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    appointment, outcome = await desk.add_appointment(payload)
    return {
        "appointment": desk.serialize_appointment(appointment),
        "balance": outcome.balance.as_dict() if outcome.balance else None,
        "view": desk.appointments_view(),
    }


@router.put("/appointments/{appointment_id}")
async def update_appointment(
    appointment_id: str, payload: AppointmentInput, desk: ClinicDesk = Depends(require_session)
) -> dict[str, Any]:
    appointment, outcome = await desk.update_appointment(appointment_id, payload)
    return {
        "appointment": desk.serialize_appointment(appointment),
        "balance": outcome.balance.as_dict() if outcome.balance else None,
        "view": desk.appointments_view(),
    }


@router.delete("/appointments/{appointment_id}")
async def delete_appointment(
    appointment_id: str,
    patient_id: str | None = Query(default=None, alias="patientId"),
    desk: ClinicDesk = Depends(require_session),
) -> dict[str, Any]:
    outcome = await desk.delete_appointment(appointment_id, patient_id)
    return {
        "status": "deleted",
        "balance": outcome.balance.as_dict() if outcome.balance else None,
        "view": desk.appointments_view(),
    }


@router.get("/calendar")
async def calendar_month(
    year: int | None = Query(default=None, ge=1900, le=9999),
    month: int | None = Query(default=None, ge=1, le=12),
    desk: ClinicDesk = Depends(require_session),
) -> dict[str, Any]:
    today = desk.today()
    view = await desk.calendar(year or today.year, month or today.month)
    return {
        **view.as_dict(),
        "notifications": [item.as_dict() for item in desk.notifier.drain()],
    }


async def _change_page_size(setter, items_per_page: int) -> None:
    try:
        await setter(items_per_page)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(SessionExpiredError)
    async def session_expired(request: Request, exc: SessionExpiredError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": exc.message, "redirect": "/login"},
        )

    @app.exception_handler(RequestValidationError)
    async def request_invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = error_messages(exc.errors())
        desk: ClinicDesk | None = getattr(request.app.state, "desk", None)
        if desk is not None:
            desk.report_invalid(errors)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": "Validation failed", "errors": errors},
        )

    @app.exception_handler(ValidationFailed)
    async def validation_failed(request: Request, exc: ValidationFailed) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": "Validation failed", "errors": exc.errors},
        )

    @app.exception_handler(MutationFailed)
    async def mutation_failed(request: Request, exc: MutationFailed) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})

    @app.exception_handler(ApiError)
    async def api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": exc.message})

    @app.exception_handler(NotFound)
    async def not_found(request: Request, exc: NotFound) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    store: TokenStore | None = None,
    today: Callable[[], date] | None = None,
) -> FastAPI:
    """Build the desk application around one workstation's state."""

    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        desk = ClinicDesk.from_settings(settings, transport=transport, store=store, today=today)
        app.state.desk = desk
        await desk.session.restore()
        logger.info("desk started", extra={"api_base_url": settings.api_base_url})
        try:
            yield
        finally:
            await desk.aclose()

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AccessLogMiddleware)
    _register_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()
