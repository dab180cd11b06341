"""
Error types shared by the reconciliation engine and the web layer.
Each error knows the HTTP status it maps to.
"""
from typing import Any

# Control plane failure codes
CONFIG_APPLY_ERROR = "CONFIG_APPLY_ERROR"
CONTROL_PLANE_UNREACHABLE = "CONTROL_PLANE_UNREACHABLE"


class AppError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code: int = 500

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(AppError):
    """Invalid input, raised before any record is touched."""
    status_code = 400

    def __init__(self, message: str, errors: dict[str, str] | None = None):
        super().__init__(message)
        self.errors = errors or {}


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class ControlPlaneError(AppError):
    """
    Reading or applying configuration on the Caddy admin API failed.
    `code` tells a rejected document apart from an unreachable server.
    """
    status_code = 503

    def __init__(self, message: str, code: str = CONFIG_APPLY_ERROR,
                 remote_status: int | None = None, detail: str | None = None):
        super().__init__(message, detail)
        self.code = code
        self.remote_status = remote_status


class InternalError(AppError):
    status_code = 500

    def __init__(self, message: str = "Internal server error", cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


def to_response_body(error: AppError) -> dict[str, Any]:
    """Format an error for the JSON API. Internal errors never leak their cause."""
    if isinstance(error, InternalError):
        return {"error": "Internal server error"}

    body: dict[str, Any] = {"error": error.message}
    if error.detail:
        body["detail"] = error.detail
    if isinstance(error, ValidationError) and error.errors:
        body["errors"] = error.errors
    if isinstance(error, ControlPlaneError):
        body["code"] = error.code
    return body
