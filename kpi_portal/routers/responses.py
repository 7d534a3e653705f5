"""
Turn service results into HTTP responses.

A failed ``ServiceResult`` becomes the matching ``AppException`` and is
rendered by the app-level handler; a successful one is wrapped in the
``{success, message, data}`` envelope.
"""
from typing import Any

from kpi_portal.core.exceptions import (
    AppException, ValidationFailed, NotFoundError, ConflictError, AccessDeniedError,
)
from kpi_portal.core.schemas import ApiResponse
from kpi_portal.services.results import ServiceResult, ResultCode

_MISSING = object()


def raise_for_result(result: ServiceResult) -> ServiceResult:
    if result:
        return result
    errors = result.errors or [result.message]
    code = result.code
    if code == ResultCode.NOT_FOUND.value:
        exc = NotFoundError(result.message)
    elif code == ResultCode.FORBIDDEN.value:
        exc = AccessDeniedError(result.message)
        exc.error_code = code
    elif code in (ResultCode.ALREADY_PROCESSED.value, ResultCode.CONFLICT.value):
        exc = ConflictError(result.message, error_code=code)
    elif code == ResultCode.VALIDATION_ERROR.value:
        exc = ValidationFailed(result.message, errors)
    else:
        exc = AppException(result.message, status_code=400, error_code=code or "BUSINESS_ERROR")
    exc.details = {"errors": errors}
    raise exc


def respond(result: ServiceResult, data: Any = _MISSING) -> ApiResponse:
    """Envelope for ``result``; ``data`` replaces the raw service payload when given."""
    raise_for_result(result)
    return ApiResponse.ok(result.data if data is _MISSING else data, message=result.message)
