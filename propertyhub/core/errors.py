import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import settings

logger = logging.getLogger(__name__)


class ErrorCodes:
    AUTH_UNAUTHORIZED = "AUTH_UNAUTHORIZED"
    ACC_ACCESS_DENIED = "ACC_ACCESS_DENIED"
    ACC_ROLE_REQUIRED = "ACC_ROLE_REQUIRED"
    ACC_PROPERTY_ACCESS_DENIED = "ACC_PROPERTY_ACCESS_DENIED"
    RES_NOT_FOUND = "RES_NOT_FOUND"
    RES_PROPERTY_NOT_FOUND = "RES_PROPERTY_NOT_FOUND"
    RES_USER_NOT_FOUND = "RES_USER_NOT_FOUND"
    RES_ALREADY_EXISTS = "RES_ALREADY_EXISTS"
    VAL_VALIDATION_ERROR = "VAL_VALIDATION_ERROR"
    BIZ_OPERATION_NOT_ALLOWED = "BIZ_OPERATION_NOT_ALLOWED"
    BIZ_CONCURRENT_MODIFICATION = "BIZ_CONCURRENT_MODIFICATION"
    SUB_SUBSCRIPTION_REQUIRED = "SUB_SUBSCRIPTION_REQUIRED"
    SUB_TRIAL_EXPIRED = "SUB_TRIAL_EXPIRED"
    SUB_USAGE_LIMIT_REACHED = "SUB_USAGE_LIMIT_REACHED"
    EXT_SERVICE_UNAVAILABLE = "EXT_SERVICE_UNAVAILABLE"
    FILE_UPLOAD_FAILED = "FILE_UPLOAD_FAILED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    ERR_INTERNAL_SERVER = "ERR_INTERNAL_SERVER"


_STATUS_CODES = {
    400: ErrorCodes.VAL_VALIDATION_ERROR,
    401: ErrorCodes.AUTH_UNAUTHORIZED,
    403: ErrorCodes.ACC_ACCESS_DENIED,
    404: ErrorCodes.RES_NOT_FOUND,
    409: ErrorCodes.BIZ_OPERATION_NOT_ALLOWED,
    429: ErrorCodes.RATE_LIMIT_EXCEEDED,
    503: ErrorCodes.EXT_SERVICE_UNAVAILABLE,
}


class ApiError(HTTPException):
    """HTTPException carrying a stable error code for clients."""

    def __init__(
        self,
        status_code: int,
        message: str,
        code: str,
        details: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code = code
        self.details = details


class TransactionConflictError(Exception):
    """A serializable transaction lost to a concurrent writer and retries ran out."""


def error_payload(message: str, code: str, details: Any = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"success": False, "error": message, "message": message, "code": code}
    if details is not None:
        payload["details"] = details
    return payload


def _field_name(loc: tuple) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path", "form")]
    return ".".join(parts)


def flatten_validation_errors(errors: List[Dict[str, Any]]) -> Dict[str, Any]:
    field_errors: Dict[str, List[str]] = {}
    form_errors: List[str] = []
    for error in errors:
        message = str(error.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        field = _field_name(tuple(error.get("loc", ())))
        if field:
            field_errors.setdefault(field, []).append(message)
        else:
            form_errors.append(message)
    return {"fieldErrors": field_errors, "formErrors": form_errors}


def validation_error_response(errors: List[Dict[str, Any]]) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=error_payload("Validation error", ErrorCodes.VAL_VALIDATION_ERROR, flatten_validation_errors(errors)),
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # type: ignore[override]
        return validation_error_response(list(exc.errors()))

    @app.exception_handler(ValidationError)
    async def model_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:  # type: ignore[override]
        return validation_error_response(exc.errors())

    @app.exception_handler(TransactionConflictError)
    async def conflict_handler(request: Request, exc: TransactionConflictError) -> JSONResponse:  # type: ignore[override]
        logger.warning("Transaction conflict on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=409,
            content=error_payload(
                "The resource was modified by another request. Please retry.",
                ErrorCodes.BIZ_CONCURRENT_MODIFICATION,
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # type: ignore[override]
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        details = None if settings.is_production else {"exception": str(exc)}
        return JSONResponse(
            status_code=500,
            content=error_payload("Internal server error.", ErrorCodes.ERR_INTERNAL_SERVER, details),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:  # type: ignore[override]
        code = getattr(exc, "code", None) or _STATUS_CODES.get(exc.status_code, ErrorCodes.ERR_INTERNAL_SERVER)
        message = exc.detail if isinstance(exc.detail, str) else "Request failed."
        details = getattr(exc, "details", None)
        if details is None and not isinstance(exc.detail, str):
            details = exc.detail
        return JSONResponse(
            status_code=exc.status_code,
            content=error_payload(message, code, details),
            headers=exc.headers,
        )
