"""Async HTTP client for the clinic API with the shared auth interceptor."""

from __future__ import annotations

import logging
from typing import Any, AsyncGenerator, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from clinicdesk.core.config import Settings
from clinicdesk.errors import ApiError, SessionExpiredError
from clinicdesk.services.session import SessionContext

logger = logging.getLogger(__name__)


class SessionTokenAuth(httpx.Auth):
    """Attach the session credential and tear the session down on a 401."""

    def __init__(self, session: SessionContext, header: str = "token", prefix: str = "") -> None:
        self._session = session
        self._header = header
        self._prefix = prefix

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = self._session.credential
        if token:
            request.headers[self._header] = f"{self._prefix}{token}"
        response = yield request
        if response.status_code == httpx.codes.UNAUTHORIZED:
            logger.warning(
                "unauthorized response, logging out",
                extra={"method": request.method, "url": str(request.url)},
            )
            await self._session.expire()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return f"Request failed with status {response.status_code}"


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_model(model: type[ModelT], data: Any) -> ModelT:
    """Validate a response body, reporting schema mismatches as API errors."""

    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning("unexpected response shape", extra={"model": model.__name__})
        raise ApiError(f"The clinic API returned an invalid {model.__name__}") from exc


def unwrap(payload: Any) -> Any:
    """Return the ``data`` member of the API's response envelope, if any."""

    if isinstance(payload, dict) and "data" in payload and "pagination" not in payload:
        return payload["data"]
    return payload


class ApiClient:
    """Thin JSON wrapper around an ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session: SessionContext,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ApiClient":
        timeout = httpx.Timeout(
            connect=5.0,
            read=settings.api_timeout_seconds,
            write=settings.api_timeout_seconds,
            pool=5.0,
        )
        client = httpx.AsyncClient(
            base_url=settings.api_base_url.rstrip("/"),
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            auth=SessionTokenAuth(session, settings.token_header, settings.token_prefix),
            transport=transport,
        )
        return cls(client)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            logger.warning("request transport error", extra={"method": method, "path": path})
            raise ApiError(f"Could not reach the clinic API: {exc}") from exc

        if response.status_code == httpx.codes.UNAUTHORIZED:
            raise SessionExpiredError()
        if response.is_error:
            message = _error_message(response)
            logger.warning(
                "request failed",
                extra={"method": method, "path": path, "status_code": response.status_code},
            )
            raise ApiError(message, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError("The clinic API returned a malformed response") from exc

    async def get(self, path: str, **params: Any) -> Any:
        return await self.request("GET", path, params=params or None)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self.request("POST", path, json=json)

    async def put(self, path: str, json: Any = None) -> Any:
        return await self.request("PUT", path, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    async def aclose(self) -> None:
        await self._client.aclose()
