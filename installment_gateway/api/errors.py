"""Translate domain exceptions into HTTP errors"""

from typing import Any, Dict

from fastapi import HTTPException

from installment_gateway.domain.exceptions import (
    ConflictError,
    DomainException,
    IntegrityWarning,
    NotFoundError,
    StoreError,
    StoreUnavailableError,
    ValidationError,
)

STATUS_CODES = {
    ValidationError: 422,
    NotFoundError: 404,
    ConflictError: 409,
    IntegrityWarning: 409,
    StoreUnavailableError: 503,
    StoreError: 500,
}


def error_detail(error: DomainException) -> Dict[str, Any]:
    """Message plus the context (slot, reference, line) needed to correct and retry"""
    detail: Dict[str, Any] = {"error": type(error).__name__, "message": error.message, **error.details}
    if isinstance(error, IntegrityWarning):
        detail["requires_confirmation"] = True
    if isinstance(error, ConflictError):
        detail["retry"] = True
    return detail


def to_http_exception(error: DomainException) -> HTTPException:
    status_code = next((code for cls, code in STATUS_CODES.items() if isinstance(error, cls)), 500)
    return HTTPException(status_code=status_code, detail=error_detail(error))
