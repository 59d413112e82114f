"""Error vocabulary of the chat pipeline and the mapping to HTTP responses.

Pipeline stages raise the typed errors below; :func:`to_proxy_error` is the
only place they become a caller-visible status code and body.
"""

from __future__ import annotations

import enum
from typing import Any

from fastapi import HTTPException
from fastapi.responses import JSONResponse

STATUS_CLIENT_CLOSED_REQUEST = 499
UPSTREAM_CONNECT_FAILED = "Failed to connect to upstream server"
REQUEST_CANCELED = "request canceled"


class ErrorKind(str, enum.Enum):
    MALFORMED_JSON = "malformed_json"
    MISSING_FIELD = "missing_field"
    INVALID_ROLE = "invalid_role"
    UNKNOWN_MODEL = "unknown_model"
    CANCELED = "canceled"
    BAD_GATEWAY = "bad_gateway"
    WRITE_FAILED = "write_failed"


class PipelineError(Exception):
    kind: ErrorKind

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class ValidationError(PipelineError):
    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        field: str | None = None,
        index: int | None = None,
        model: str | None = None,
    ):
        super().__init__(kind, message)
        self.field = field
        self.index = index
        self.model = model


class GatewayError(PipelineError):
    pass


class RelayError(PipelineError):
    pass


class ProxyError(HTTPException):
    def __init__(self, status_code: int, message: str):
        super().__init__(status_code=status_code, detail={"error": message})
        self.message = message


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.MALFORMED_JSON: 400,
    ErrorKind.MISSING_FIELD: 400,
    ErrorKind.INVALID_ROLE: 400,
    ErrorKind.UNKNOWN_MODEL: 404,
    ErrorKind.CANCELED: STATUS_CLIENT_CLOSED_REQUEST,
    ErrorKind.BAD_GATEWAY: 502,
    ErrorKind.WRITE_FAILED: STATUS_CLIENT_CLOSED_REQUEST,
}


def err_malformed_json(detail: str) -> ValidationError:
    return ValidationError(ErrorKind.MALFORMED_JSON, f"Invalid JSON: {detail}")


def err_missing_field(field: str) -> ValidationError:
    if field == "messages":
        message = "messages is required and must be non-empty"
    else:
        message = f"{field} is required"
    return ValidationError(ErrorKind.MISSING_FIELD, message, field=field)


def err_message_not_object(index: int) -> ValidationError:
    return ValidationError(
        ErrorKind.MISSING_FIELD,
        f"message {index} must be an object",
        field="messages",
        index=index,
    )


def err_missing_role(index: int) -> ValidationError:
    return ValidationError(
        ErrorKind.MISSING_FIELD,
        f"message {index} requires a role",
        field="role",
        index=index,
    )


def err_invalid_role(index: int, role: Any) -> ValidationError:
    return ValidationError(
        ErrorKind.INVALID_ROLE,
        f"message {index} has invalid role: {role}",
        field="role",
        index=index,
    )


def err_unknown_model(model: str) -> ValidationError:
    return ValidationError(
        ErrorKind.UNKNOWN_MODEL, f"model '{model}' not found", model=model
    )


def err_gateway_canceled() -> GatewayError:
    return GatewayError(ErrorKind.CANCELED, REQUEST_CANCELED)


def err_bad_gateway() -> GatewayError:
    return GatewayError(ErrorKind.BAD_GATEWAY, UPSTREAM_CONNECT_FAILED)


def to_proxy_error(exc: Exception) -> ProxyError:
    """Classify any pipeline failure into the external error vocabulary."""

    if isinstance(exc, ProxyError):
        return exc
    if isinstance(exc, PipelineError):
        message = REQUEST_CANCELED if exc.kind is ErrorKind.CANCELED else exc.message
        return ProxyError(_STATUS_BY_KIND[exc.kind], message)
    return ProxyError(500, str(exc) or exc.__class__.__name__)


def error_response(exc: Exception) -> JSONResponse:
    err = to_proxy_error(exc)
    return JSONResponse(status_code=err.status_code, content=err.detail)
