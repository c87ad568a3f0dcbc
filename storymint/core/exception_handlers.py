import logging
import uuid
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder

from storymint.core.errors import ServiceError

log = logging.getLogger("storymint.api")


# Generate a clean request id for every response
def _rid():
    """Generates a unique request ID for tracing."""
    return uuid.uuid4().hex


def _error_body(code: str, message, details=None) -> dict:
    body = {
        "success": False,
        "error": {
            "code": code,
            "message": message,
        },
        "request_id": _rid(),
    }
    if details is not None:
        body["error"]["details"] = jsonable_encoder(details)
    return body


# ----------- Exception Handlers (called by FastAPI) -----------

def service_error_handler(request: Request, exc: ServiceError):
    """Handles classified service errors; the status code comes from the error kind."""
    if exc.status_code >= 500:
        log.error(f"{exc.kind.name} on path {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.kind.value, exc.message, exc.details),
    )


def http_exception_handler(request: Request, exc: HTTPException):
    """Handles exceptions raised by HTTPException (e.g., 404, 400)."""
    return JSONResponse(status_code=exc.status_code, content=_error_body("http_error", exc.detail))


def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handles malformed request bodies and parameters as 400 Bad Request."""
    return JSONResponse(
        status_code=400,
        content=_error_body("validation_error", "Invalid input data", exc.errors()),
    )


def generic_exception_handler(request: Request, exc: Exception):
    """Handles all unhandled exceptions (500 Internal Server Error)."""
    log.exception(f"Unhandled exception on path: {request.url.path}")
    return JSONResponse(status_code=500, content=_error_body("server_error", "Internal Server Error"))


# ----------- Registration Function -----------

def setup_exception_handlers(app: FastAPI):
    """Registers all custom exception handlers with the FastAPI application."""
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    return app
