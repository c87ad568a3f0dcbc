from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Every failure the service reports falls into one of these kinds."""
    VALIDATION = "validation_error"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TRANSIENT = "transient_error"          # DB unavailable, chain RPC timeout, tx still pending
    ON_CHAIN_REVERTED = "on_chain_reverted"
    INTERNAL = "server_error"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.TRANSIENT, ErrorKind.INTERNAL)


_STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.TRANSIENT: 503,
    ErrorKind.ON_CHAIN_REVERTED: 502,
    ErrorKind.INTERNAL: 500,
}


class ServiceError(Exception):
    """
    Single error type carried across the service. Callers branch on `kind`;
    `details` holds optional structured context for the response body.
    """

    def __init__(self, kind: ErrorKind, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __repr__(self):
        return f"ServiceError({self.kind.name}, {self.message!r})"


def validation_error(message: str, details: Optional[Any] = None) -> ServiceError:
    return ServiceError(ErrorKind.VALIDATION, message, details)


def not_found(message: str) -> ServiceError:
    return ServiceError(ErrorKind.NOT_FOUND, message)


def is_retryable(exc: BaseException) -> bool:
    """Anything that is not a classified ServiceError is assumed transient."""
    if isinstance(exc, ServiceError):
        return exc.retryable
    return True
