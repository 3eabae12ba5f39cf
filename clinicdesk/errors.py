"""Error taxonomy shared by the services and the HTTP layer."""

from __future__ import annotations


class ClinicDeskError(Exception):
    """Base class for every error raised by the desk."""


class ValidationFailed(ClinicDeskError):
    """Client-side validation rejected a form; nothing was sent."""

    def __init__(self, errors: dict[str, str]) -> None:
        super().__init__("; ".join(f"{field}: {message}" for field, message in errors.items()))
        self.errors = dict(errors)


class ApiError(ClinicDeskError):
    """A request to the clinic API failed or returned a non-success status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SessionExpiredError(ApiError):
    """The clinic API rejected the credential; the session is gone."""

    def __init__(self, message: str = "Session expired") -> None:
        super().__init__(message, status_code=401)


class MutationFailed(ClinicDeskError):
    """A create, update or delete call failed."""

    def __init__(self, action: str, cause: Exception | None = None) -> None:
        super().__init__(f"Failed to {action}")
        self.action = action
        self.cause = cause


class NotFound(ClinicDeskError):
    """The requested record is not available to the current view."""
