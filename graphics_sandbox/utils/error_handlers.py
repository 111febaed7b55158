"""Global error handlers for the Graphics Sandbox API.

Every handler renders an ``ErrorResponse`` (``success: false``) so the
browser client can treat all failures alike. Expired-session and compile
failures carry the ``output``/``expired`` fields the console expects.
"""

import traceback
from typing import Any, Dict, List, Union

import structlog
from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from ..models.errors import (
    ErrorDetail,
    ErrorResponse,
    ErrorType,
    SandboxException,
    SessionNotFoundError,
)
from .id_generator import generate_request_id
from .request_helpers import get_client_ip, short_id

logger = structlog.get_logger(__name__)

# Error categories for framework-raised HTTP errors
STATUS_ERROR_TYPES: Dict[int, ErrorType] = {
    400: ErrorType.VALIDATION,
    404: ErrorType.RESOURCE_NOT_FOUND,
    405: ErrorType.VALIDATION,
    413: ErrorType.RESOURCE_EXHAUSTED,
    415: ErrorType.VALIDATION,
    422: ErrorType.VALIDATION,
    502: ErrorType.EXTERNAL_SERVICE,
    503: ErrorType.SERVICE_UNAVAILABLE,
    504: ErrorType.TIMEOUT,
}


def _respond(
    request: Request, body: ErrorResponse, status_code: int, event: str, **fields: Any
) -> JSONResponse:
    """Log one handled error and render it."""
    context = {
        "status_code": status_code,
        "error_type": body.error_type.value,
        "request_id": body.request_id,
        "path": request.url.path,
        "method": request.method,
        "client_ip": get_client_ip(request),
        **fields,
    }
    if status_code >= 500:
        logger.error(event, **context)
    elif status_code == 404 or status_code < 400:
        # Expired sessions and compile failures are routine for the client
        logger.info(event, **context)
    else:
        logger.warning(event, **context)

    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _details_for_log(details: List[ErrorDetail]) -> List[Dict[str, Any]]:
    return [d.model_dump(exclude_none=True) for d in details]


async def sandbox_exception_handler(request: Request, exc: SandboxException) -> JSONResponse:
    """Render a SandboxException with its own status code and extras."""
    exc.request_id = exc.request_id or generate_request_id()

    fields: Dict[str, Any] = {"message": exc.message}
    session_id = getattr(exc, "session_id", None)
    if session_id:
        fields["session_id"] = short_id(session_id)
    if exc.details:
        fields["details"] = _details_for_log(exc.details)

    event = "Session lookup failed" if isinstance(exc, SessionNotFoundError) else "Request failed"
    return _respond(request, exc.to_response(), exc.status_code, event, **fields)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render framework HTTP errors (unknown routes, bad media type)."""
    body = ErrorResponse(
        error=str(exc.detail),
        error_type=STATUS_ERROR_TYPES.get(exc.status_code, ErrorType.INTERNAL_SERVER),
        request_id=generate_request_id(),
    )
    response = _respond(request, body, exc.status_code, "HTTP error", detail=exc.detail)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, PydanticValidationError]
) -> JSONResponse:
    """Render malformed request bodies as 422 with per-field details."""
    details = [
        ErrorDetail(
            field=".".join(str(part) for part in error["loc"] if part != "body"),
            message=error["msg"],
            code=error["type"],
        )
        for error in exc.errors()
    ]
    body = ErrorResponse(
        error="Request validation failed",
        error_type=ErrorType.VALIDATION,
        details=details,
        request_id=generate_request_id(),
    )
    return _respond(
        request, body, 422, "Invalid request body", validation_errors=_details_for_log(details)
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: log the traceback, return a generic 500."""
    body = ErrorResponse(
        error="An unexpected error occurred",
        error_type=ErrorType.INTERNAL_SERVER,
        request_id=generate_request_id(),
    )
    return _respond(
        request,
        body,
        500,
        "Unhandled exception",
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        traceback=traceback.format_exc(),
    )
