"""Envelope and error payloads shared by every route."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Successful responses are wrapped as ``{"data": ...}``."""

    data: T


class ErrorDetail(BaseModel):
    """Shape of ``detail`` in error responses; only ``message`` is always set."""

    message: str
    hint: str | None = None
    bootstrap_sql: str | None = None
    ssot_version_hash: str | None = None
    error: str | None = None
    code: str | None = None


class ErrorResponse(BaseModel):
    detail: ErrorDetail


ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse, "description": "Request rejected before any SQL ran."},
    403: {"model": ErrorResponse, "description": "Plan belongs to another tenant."},
    404: {"model": ErrorResponse, "description": "Plan not found."},
    409: {"model": ErrorResponse, "description": "Plan is no longer planned."},
    412: {"model": ErrorResponse, "description": "No connection settings for the tenant."},
    424: {"model": ErrorResponse, "description": "Schema procedures are not installed on the tenant database."},
    502: {"model": ErrorResponse, "description": "Tenant database call failed."},
}
